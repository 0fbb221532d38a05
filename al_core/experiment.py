"""
ActiveLearningLoop class.

This class orchestrates the active learning rounds using composed components:
train on the labelled set, evaluate on the frozen test set, select a batch from
the remaining pool, pseudolabel it and merge it into the labelled set.
"""

import logging
from typing import Optional

from al_core.data_loader import LabelledSet, UnlabelledPool
from al_core.errors import ActiveLearningError, ExhaustionError, ValidationError
from al_core.initial_selection_strategies import InitialSelectionStrategy
from al_core.iteration_state import (
    IterationResult,
    IterationState,
    LoopOutcome,
    LoopPhase,
)
from al_core.metrics_calculator import Evaluator
from al_core.predictor_trainer import ClassifierTrainer
from al_core.pseudolabeller import PseudoLabeller
from al_core.query_strategies import (
    DiversitySelector,
    QueryStrategyBase,
    SelectionBatch,
)
from al_core.round_tracker import PerformanceTracker

logger = logging.getLogger(__name__)


class ActiveLearningLoop:
    """
    Active learning loop for multi-class image classification.

    Rounds are strictly sequential: the batch of round ``i`` is selected with
    the model trained in round ``i``. All round state lives in the
    ``IterationState`` values returned by ``run_round``; the loop itself only
    keeps the seed set, the frozen test set and the unlabelled universe.
    """

    def __init__(
        self,
        classifier: ClassifierTrainer,
        labeller: PseudoLabeller,
        selector: Optional[QueryStrategyBase] = None,
        evaluator: Optional[Evaluator] = None,
        batch_size: int = 12,
        n_rounds: int = 15,
    ) -> None:
        """
        Initialize the loop.

        Args:
            classifier: Trains models and predicts class probabilities
            labeller: Oracle that labels selected cases
            selector: Query strategy, defaults to diversity-aware entropy sampling
            evaluator: Test-set evaluator, defaults to one built on ``classifier``
            batch_size: Number of cases to label per round
            n_rounds: Number of rounds to run
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if n_rounds < 0:
            raise ValueError("n_rounds must be >= 0")

        self.classifier = classifier
        self.labeller = labeller
        self.selector = selector or DiversitySelector(classifier)
        self.evaluator = evaluator or Evaluator(classifier)
        self.batch_size = batch_size
        self.n_rounds = n_rounds

        self.seed_set: Optional[LabelledSet] = None
        self.test_set: Optional[LabelledSet] = None
        self.unlabelled_pool: Optional[UnlabelledPool] = None
        self.tracker = PerformanceTracker()

    def initialize(
        self,
        labelled_pool: LabelledSet,
        unlabelled_pool: UnlabelledPool,
        seed_selection: InitialSelectionStrategy,
    ) -> IterationState:
        """
        Split the labelled pool into seed and test set and return the first state.

        Raises:
            ValidationError: if the test set or seed set overlaps the unlabelled pool.
        """
        seed_set, test_set = seed_selection.split(labelled_pool)
        overlap = (test_set.ids | seed_set.ids) & unlabelled_pool.ids
        if overlap:
            raise ValidationError(
                f"{len(overlap)} labelled case(s) also appear in the unlabelled "
                f"pool, e.g. {sorted(overlap)[:5]}"
            )

        self.seed_set = seed_set
        self.test_set = test_set
        self.unlabelled_pool = unlabelled_pool
        self.tracker = PerformanceTracker()
        logger.info(
            f"Initialized with {len(seed_set)} seed cases via {seed_selection.name}, "
            f"{len(test_set)} test cases and {len(unlabelled_pool)} unlabelled cases"
        )
        return IterationState(labelled=seed_set)

    def run(
        self,
        labelled_pool: LabelledSet,
        unlabelled_pool: UnlabelledPool,
        seed_selection: InitialSelectionStrategy,
    ) -> LoopOutcome:
        """
        Run all configured rounds and train a final model on the result.

        Raises:
            ActiveLearningError: from the first failing round, with ``iteration`` set.
        """
        state = self.initialize(labelled_pool, unlabelled_pool, seed_selection)
        logger.info(
            f"Starting active learning run: {self.n_rounds} rounds of "
            f"{self.batch_size} cases with {self.selector.name}"
        )

        try:
            while state.iteration < self.n_rounds:
                state = self.run_round(state)
            return self.finish(state)
        except ActiveLearningError as exc:
            exc.iteration = state.iteration
            logger.error("Round %d failed: %s", state.iteration, exc)
            raise

    def run_round(self, state: IterationState) -> IterationState:
        """
        Run one train -> select -> label -> merge round and return the new state.
        """
        if self.test_set is None or self.unlabelled_pool is None:
            raise RuntimeError("ActiveLearningLoop.initialize must be called first.")

        iteration = state.iteration
        logger.info(f"--- Round {iteration} ---")

        state = self._transition(state, LoopPhase.TRAINING)
        model = self.classifier.train(state.labelled)
        evaluation = self.evaluator.evaluate(model, self.test_set)
        logger.info(
            "Round %d: trained on %d cases, accuracy=%.3f macro_auc=%.3f",
            iteration,
            len(state.labelled),
            evaluation.summary["accuracy"],
            evaluation.summary["macro_auc"],
        )

        state = self._transition(state, LoopPhase.SELECTING)
        candidates = self.unlabelled_pool.candidates(state.evaluated)
        logger.info(
            "Candidate pool size: %d (labelled=%d evaluated=%d)",
            len(candidates),
            len(state.labelled),
            len(state.evaluated),
        )
        if len(candidates) == 0:
            raise ExhaustionError(
                f"Candidate pool exhausted before round {iteration} of {self.n_rounds}"
            )
        batch = self.selector.select(model, candidates, self.batch_size)
        self._check_batch(batch, candidates, state)

        state = self._transition(state, LoopPhase.LABELLING)
        labelled_cases = self.labeller.label(batch.cases)

        result = IterationResult(
            iteration=iteration,
            model=model,
            batch=batch,
            evaluation=evaluation,
            training_size=len(state.labelled),
            labelled_size=len(state.labelled) + len(labelled_cases),
        )
        self.tracker.track_round(
            iteration=iteration,
            training_size=result.training_size,
            selected_ids=batch.case_ids,
            metrics=evaluation.summary,
        )
        new_state = state.merge(labelled_cases, result)
        logger.info("Phase %s -> %s", state.phase.value, new_state.phase.value)
        return new_state

    def finish(self, state: IterationState) -> LoopOutcome:
        """Train and evaluate a model on the final labelled set."""
        final_model = self.classifier.train(state.labelled)
        final_evaluation = self.evaluator.evaluate(final_model, self.test_set)
        state = self._transition(state, LoopPhase.TERMINAL)
        logger.info(
            "Finished %d rounds; final labelled set %d cases, accuracy=%.3f",
            len(state.results),
            len(state.labelled),
            final_evaluation.summary["accuracy"],
        )
        return LoopOutcome(
            state=state,
            seed_set=self.seed_set,
            test_set=self.test_set,
            final_model=final_model,
            final_evaluation=final_evaluation,
        )

    def _transition(self, state: IterationState, phase: LoopPhase) -> IterationState:
        logger.info("Phase %s -> %s", state.phase.value, phase.value)
        return state.enter(phase)

    def _check_batch(
        self,
        batch: SelectionBatch,
        candidates: UnlabelledPool,
        state: IterationState,
    ) -> None:
        ids = batch.case_ids
        if len(set(ids)) != len(ids):
            raise ValidationError(f"{self.selector.name} selected duplicate cases")
        foreign = set(ids) - candidates.ids
        if foreign or state.evaluated & set(ids):
            raise ValidationError(
                f"{self.selector.name} selected cases outside the candidate pool: "
                f"{sorted(foreign)[:5]}"
            )
