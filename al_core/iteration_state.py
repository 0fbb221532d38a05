"""
Immutable values threaded through the active learning loop.
"""

from dataclasses import dataclass, replace
from enum import Enum

from al_core.data_loader import Case, LabelledSet
from al_core.metrics_calculator import Evaluation
from al_core.predictor_trainer import Model
from al_core.query_strategies import SelectionBatch


class LoopPhase(str, Enum):
    """Phases of an active learning run."""

    INITIALIZING = "initializing"
    TRAINING = "training"
    SELECTING = "selecting"
    LABELLING = "labelling"
    MERGED = "merged"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class IterationResult:
    """
    Snapshot of one round.

    Attributes:
        iteration: Round index, starting at 0
        model: Model trained at the start of the round
        batch: Cases selected with that model
        evaluation: Test-set evaluation of the model
        training_size: Number of labelled cases the model was trained on
        labelled_size: Size of the labelled set after merging the batch
    """

    iteration: int
    model: Model
    batch: SelectionBatch
    evaluation: Evaluation
    training_size: int
    labelled_size: int


@dataclass(frozen=True)
class IterationState:
    """
    Training set, evaluated identifiers and results after a number of rounds.

    Every transition returns a new state; nothing is modified in place.
    """

    labelled: LabelledSet
    evaluated: frozenset[str] = frozenset()
    results: tuple[IterationResult, ...] = ()
    phase: LoopPhase = LoopPhase.INITIALIZING

    @property
    def iteration(self) -> int:
        """Index of the next round to run."""
        return len(self.results)

    def enter(self, phase: LoopPhase) -> "IterationState":
        return replace(self, phase=phase)

    def merge(
        self, labelled_cases: list[Case], result: IterationResult
    ) -> "IterationState":
        """Append a labelled batch and the result of the round that selected it."""
        return IterationState(
            labelled=self.labelled.extend(labelled_cases),
            evaluated=self.evaluated | {case.case_id for case in labelled_cases},
            results=self.results + (result,),
            phase=LoopPhase.MERGED,
        )


@dataclass(frozen=True)
class LoopOutcome:
    """
    Terminal value of a run.

    Attributes:
        state: Final iteration state
        seed_set: Labelled set the first round was trained on
        test_set: Frozen held-out test set used for every evaluation
        final_model: Model trained on the final labelled set
        final_evaluation: Test-set evaluation of ``final_model``
    """

    state: IterationState
    seed_set: LabelledSet
    test_set: LabelledSet
    final_model: Model
    final_evaluation: Evaluation

    @property
    def results(self) -> tuple[IterationResult, ...]:
        return self.state.results

    @property
    def labelled(self) -> LabelledSet:
        return self.state.labelled

    @property
    def selected_count(self) -> int:
        return sum(len(result.batch) for result in self.results)
