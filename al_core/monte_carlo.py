"""
Monte Carlo comparison of active learning against random selection.

Each trial draws a random sample of the same size as the actively selected
cases, trains on the seed set plus that sample and evaluates on the frozen
test set. The distribution of trial metrics gives an empirical P-value for
the metric reached by the active learning run.
"""

import logging
import os
import threading
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from tqdm import tqdm

from al_core.data_loader import LabelledSet, UnlabelledPool
from al_core.errors import ActiveLearningError, ExhaustionError
from al_core.metrics_calculator import Evaluator
from al_core.predictor_trainer import ClassifierTrainer
from al_core.pseudolabeller import PseudoLabeller
from al_core.query_strategies import RandomSelector
from al_core.round_tracker import PerformanceRecord

logger = logging.getLogger(__name__)


def empirical_p_value(trial_values: Sequence[float], active_value: float) -> float:
    """
    Fraction of trials whose value is greater than or equal to ``active_value``.

    Low values mean random selection rarely matches the active learning run.
    """
    values = np.asarray(trial_values, dtype=float)
    if values.size == 0:
        raise ValueError("Cannot compute a P-value without completed trials.")
    return float(np.count_nonzero(values >= active_value)) / values.size


@dataclass(frozen=True)
class MonteCarloResult:
    """
    Trial records of a Monte Carlo run.

    Attributes:
        records: One performance record per completed trial, ordered by trial index
        requested_trials: Number of trials the run was asked for
        cancelled: True when the run was stopped before every trial completed
    """

    records: tuple[PerformanceRecord, ...]
    requested_trials: int
    cancelled: bool = False

    @property
    def completed_trials(self) -> int:
        return len(self.records)

    def values(self, metric: str) -> np.ndarray:
        missing = [record["trial"] for record in self.records if metric not in record]
        if missing:
            raise ValueError(f"Metric '{metric}' not found in trials {missing[:5]}")
        return np.array([record[metric] for record in self.records], dtype=float)

    def p_value(self, metric: str, active_value: float) -> float:
        return empirical_p_value(self.values(metric), active_value)

    def p_values(self, active_metrics: Dict[str, float]) -> Dict[str, float]:
        """P-value for every metric in ``active_metrics``."""
        return {
            metric: self.p_value(metric, value)
            for metric, value in active_metrics.items()
        }

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(list(self.records))


def run_trial(
    trial: int,
    seed_sequence: np.random.SeedSequence,
    sample_size: int,
    initial_labelled_set: LabelledSet,
    candidates: UnlabelledPool,
    classifier: ClassifierTrainer,
    labeller: PseudoLabeller,
    evaluator: Evaluator,
    test_set: LabelledSet,
) -> PerformanceRecord:
    """
    Run a single random-selection trial.

    Module-level so it can be sent to worker processes. The trial builds its
    own training set and random generator; nothing passed in is modified.
    """
    try:
        selector = RandomSelector(np.random.default_rng(seed_sequence))
        batch = selector.select(None, candidates, sample_size)
        sample = labeller.label(batch.cases)
        training_set = initial_labelled_set.extend(sample)
        model = classifier.train(training_set)
        evaluation = evaluator.evaluate(model, test_set)
    except ActiveLearningError as exc:
        exc.trial = trial
        raise
    return {
        "trial": trial,
        "sample_size": len(sample),
        "training_size": len(training_set),
        **evaluation.summary,
    }


class MonteCarloEvaluator:
    """
    Repeats random selection of a fixed size to build a null distribution.

    Trials are independent and run in a process pool when ``max_workers`` is
    not 1. Results are merged only after the pool is drained. ``cancel`` may
    be called from another thread to stop collecting; trials that already
    finished are kept and the result is flagged as cancelled.
    """

    def __init__(
        self,
        classifier: ClassifierTrainer,
        labeller: PseudoLabeller,
        test_set: LabelledSet,
        evaluator: Optional[Evaluator] = None,
        seed: int = 0,
        max_workers: Optional[int] = 1,
        show_progress: bool = True,
    ) -> None:
        """
        Initialize the evaluator.

        Args:
            classifier: Trains one model per trial
            labeller: Oracle that labels the random samples
            test_set: Frozen test set shared (read-only) with the active learning run
            evaluator: Test-set evaluator, defaults to one built on ``classifier``
            seed: Root seed; each trial gets its own spawned generator
            max_workers: Worker processes; None uses every available CPU
            show_progress: Display a tqdm progress bar
        """
        self.classifier = classifier
        self.labeller = labeller
        self.test_set = test_set
        self.evaluator = evaluator or Evaluator(classifier)
        self.seed = seed
        self.max_workers = max_workers
        self.show_progress = show_progress
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Stop the current run after the trials already completed."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(
        self,
        trials: int,
        sample_size: int,
        initial_labelled_set: LabelledSet,
        unlabelled_universe: UnlabelledPool,
    ) -> MonteCarloResult:
        """
        Run ``trials`` random-selection trials of ``sample_size`` cases each.

        Raises:
            ExhaustionError: if the universe holds fewer than ``sample_size``
                cases outside the initial labelled set.
            ActiveLearningError: from the first failing trial, with ``trial`` set.
        """
        if trials < 1:
            raise ValueError("trials must be >= 1")
        if sample_size < 1:
            raise ValueError("sample_size must be >= 1")

        candidates = unlabelled_universe.candidates(initial_labelled_set.ids)
        if len(candidates) < sample_size:
            raise ExhaustionError(
                f"Cannot draw {sample_size} cases from {len(candidates)} candidates"
            )

        self._cancel_event.clear()
        seed_sequences = np.random.SeedSequence(self.seed).spawn(trials)
        common = dict(
            sample_size=sample_size,
            initial_labelled_set=initial_labelled_set,
            candidates=candidates,
            classifier=self.classifier,
            labeller=self.labeller,
            evaluator=self.evaluator,
            test_set=self.test_set,
        )
        workers = self._max_workers(trials)
        logger.info(
            f"Starting {trials} Monte Carlo trials of {sample_size} random cases "
            f"on top of {len(initial_labelled_set)} seed cases (workers={workers})"
        )

        if workers == 1:
            records, cancelled = self._run_serial(seed_sequences, common)
        else:
            records, cancelled = self._run_parallel(seed_sequences, common, workers)

        records.sort(key=lambda record: record["trial"])
        if cancelled:
            logger.warning(
                "Monte Carlo run cancelled after %d of %d trials", len(records), trials
            )
        return MonteCarloResult(
            records=tuple(records), requested_trials=trials, cancelled=cancelled
        )

    def _run_serial(
        self, seed_sequences: List[np.random.SeedSequence], common: dict
    ) -> tuple[List[PerformanceRecord], bool]:
        records: List[PerformanceRecord] = []
        with tqdm(
            total=len(seed_sequences),
            desc="Monte Carlo trials",
            disable=not self.show_progress,
        ) as pbar:
            for trial, seed_sequence in enumerate(seed_sequences):
                if self.cancelled:
                    return records, True
                records.append(run_trial(trial, seed_sequence, **common))
                pbar.update(1)
        return records, False

    def _run_parallel(
        self,
        seed_sequences: List[np.random.SeedSequence],
        common: dict,
        workers: int,
    ) -> tuple[List[PerformanceRecord], bool]:
        records: List[PerformanceRecord] = []
        cancelled = False
        with ProcessPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(run_trial, trial, seed_sequence, **common): trial
                for trial, seed_sequence in enumerate(seed_sequences)
            }
            try:
                with tqdm(
                    total=len(futures),
                    desc="Monte Carlo trials",
                    disable=not self.show_progress,
                ) as pbar:
                    for future in as_completed(futures):
                        records.append(future.result())
                        pbar.update(1)
                        if self.cancelled:
                            cancelled = True
                            break
            except ActiveLearningError as exc:
                logger.error("Monte Carlo trial %s failed: %s", exc.trial, exc)
                raise
            finally:
                for future in futures:
                    future.cancel()
        return records, cancelled

    def _max_workers(self, num_tasks: int) -> int:
        """Decide max workers based on the configured value and available CPUs."""
        if self.max_workers is not None:
            return max(1, min(self.max_workers, num_tasks))
        available = os.cpu_count() or 1
        return max(1, min(available, num_tasks))
