"""
Query strategy implementations.

The diversity-aware strategy clusters the candidate pool in feature space and
keeps the most uncertain case of every cluster, so a batch is both
representative of the pool and informative for the current model. A seeded
random strategy provides the baseline used by the Monte Carlo evaluator.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import numpy as np
from sklearn.cluster import AgglomerativeClustering
from sklearn.metrics import pairwise_distances

from al_core.data_loader import Case, UnlabelledPool
from al_core.errors import ValidationError
from al_core.predictor_trainer import ClassifierTrainer, Model
from al_core.uncertainty import ClassProbabilities, EntropyScorer

logger = logging.getLogger(__name__)

PROBABILITY_TOLERANCE = 1e-6
LINKAGES = ("ward", "average", "complete", "single")


@dataclass(frozen=True)
class ScoredCase:
    """A selected case together with the evidence it was selected on."""

    case: Case
    probabilities: Optional[ClassProbabilities] = None
    cluster_id: Optional[int] = None
    entropy: Optional[float] = None

    @property
    def case_id(self) -> str:
        return self.case.case_id


@dataclass(frozen=True)
class SelectionBatch:
    """Cases chosen in one round."""

    items: tuple[ScoredCase, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def cases(self) -> List[Case]:
        return [item.case for item in self.items]

    @property
    def case_ids(self) -> List[str]:
        return [item.case_id for item in self.items]


def validate_probabilities(
    probabilities: np.ndarray,
    classes: Sequence[str],
    tolerance: float = PROBABILITY_TOLERANCE,
) -> None:
    """
    Check a predicted probability matrix against the model contract.

    Raises:
        ValidationError: on wrong shape, values outside [0, 1] or rows not summing to 1.
    """
    if probabilities.ndim != 2 or probabilities.shape[1] != len(classes):
        raise ValidationError(
            f"Expected probabilities for {len(classes)} classes, "
            f"got array of shape {probabilities.shape}"
        )
    if not np.all(np.isfinite(probabilities)):
        raise ValidationError("Predicted probabilities contain non-finite values")
    if np.any(probabilities < -tolerance) or np.any(probabilities > 1 + tolerance):
        raise ValidationError("Predicted probabilities fall outside [0, 1]")
    row_sums = probabilities.sum(axis=1)
    bad_rows = np.flatnonzero(np.abs(row_sums - 1.0) > tolerance)
    if bad_rows.size:
        raise ValidationError(
            f"{bad_rows.size} prediction(s) do not sum to 1, "
            f"e.g. row {int(bad_rows[0])} sums to {row_sums[bad_rows[0]]:.6f}"
        )


class QueryStrategyBase(ABC):
    """
    Abstract base class for query strategies.

    Each concrete strategy implements ``_select_batch`` to choose the next
    batch from the candidate pool.
    """

    requires_model: bool = True

    def __init__(self, name: Optional[str] = None):
        self.name = name or self.__class__.__name__

    def select(
        self, model: Optional[Model], candidate_pool: UnlabelledPool, k: int
    ) -> SelectionBatch:
        """
        Select the next batch of cases (template method).

        Handles the empty pool and clamps ``k`` to the pool size before
        delegating to ``_select_batch``.
        """
        if k < 1:
            raise ValueError(f"Batch size must be >= 1, got {k}")
        if len(candidate_pool) == 0:
            logger.info("%s: candidate pool is empty, nothing to select.", self.name)
            return SelectionBatch()
        if self.requires_model and model is None:
            raise ValueError(f"{self.name} requires a trained model to select.")

        batch_size = min(k, len(candidate_pool))
        batch = self._select_batch(model, candidate_pool, batch_size)
        self._log_round(batch)
        return batch

    @abstractmethod
    def _select_batch(
        self, model: Optional[Model], candidate_pool: UnlabelledPool, batch_size: int
    ) -> SelectionBatch:
        """
        Strategy-specific batch selection logic.

        Args:
            model: Model trained in the current round
            candidate_pool: Non-empty pool of selectable cases
            batch_size: Number of cases to select (1 <= batch_size <= len(pool))
        """

    def _log_round(self, batch: SelectionBatch, extra_info: Optional[str] = None) -> None:
        log_msg = f"{self.name} selected {len(batch)} cases: {batch.case_ids}"
        if extra_info:
            log_msg += f" {extra_info}"
        logger.info(log_msg)


class RandomSelector(QueryStrategyBase):
    """Strategy that selects cases uniformly at random without replacement."""

    requires_model = False

    def __init__(self, rng: np.random.Generator) -> None:
        super().__init__("RANDOM")
        self.rng = rng

    def _select_batch(
        self, model: Optional[Model], candidate_pool: UnlabelledPool, batch_size: int
    ) -> SelectionBatch:
        chosen = self.rng.choice(len(candidate_pool), size=batch_size, replace=False)
        return SelectionBatch(
            tuple(ScoredCase(candidate_pool.cases[int(idx)]) for idx in sorted(chosen))
        )


class DiversitySelector(QueryStrategyBase):
    """
    Cluster candidates on their raw features and keep the most uncertain
    case of each cluster.

    Diversity is measured with Euclidean distances in input space, so it does
    not depend on how confident the current model is. Agglomerative
    clustering is cut to exactly ``batch_size`` clusters; ``ward`` clusters
    the features directly, the other linkages use the precomputed distance
    matrix.
    """

    def __init__(
        self,
        classifier: ClassifierTrainer,
        scorer: Optional[EntropyScorer] = None,
        linkage: str = "ward",
        n_jobs: Optional[int] = None,
    ) -> None:
        super().__init__("DIVERSITY_ENTROPY")
        if linkage not in LINKAGES:
            raise ValueError(f"Unsupported linkage '{linkage}'. Use one of {LINKAGES}.")
        self.classifier = classifier
        self.scorer = scorer or EntropyScorer()
        self.linkage = linkage
        self.n_jobs = n_jobs

    def _select_batch(
        self, model: Model, candidate_pool: UnlabelledPool, batch_size: int
    ) -> SelectionBatch:
        cases = candidate_pool.cases
        probabilities = self.classifier.predict_matrix(model, cases)
        validate_probabilities(probabilities, model.classes)
        entropies = self.scorer.score_matrix(probabilities, class_names=model.classes)

        features = np.vstack([case.features for case in cases])
        cluster_ids = self.cluster(features, batch_size)

        selected: List[ScoredCase] = []
        for cluster_id in range(batch_size):
            members = np.flatnonzero(cluster_ids == cluster_id)
            # argmax keeps the first of tied members, i.e. pool order
            best = int(members[np.argmax(entropies[members])])
            selected.append(
                ScoredCase(
                    case=cases[best],
                    probabilities=dict(zip(model.classes, probabilities[best].tolist())),
                    cluster_id=cluster_id,
                    entropy=float(entropies[best]),
                )
            )

        mean_entropy = float(np.mean([item.entropy for item in selected]))
        logger.debug(
            "Pool entropy mean=%.4f max=%.4f; selected mean=%.4f",
            float(entropies.mean()),
            float(entropies.max()),
            mean_entropy,
        )
        return SelectionBatch(tuple(selected))

    def cluster(self, features: np.ndarray, n_clusters: int) -> np.ndarray:
        """
        Assign every row of ``features`` to one of exactly ``n_clusters`` clusters.

        Cluster ids are renumbered in order of first appearance so that the
        output does not depend on the ids chosen by the clustering backend.
        """
        num_cases = features.shape[0]
        n_clusters = min(n_clusters, num_cases)
        if n_clusters == num_cases:
            return np.arange(num_cases)
        if n_clusters == 1:
            return np.zeros(num_cases, dtype=int)

        if self.linkage == "ward":
            clustering = AgglomerativeClustering(n_clusters=n_clusters, linkage="ward")
            raw_ids = clustering.fit_predict(features)
        else:
            distances = pairwise_distances(
                features, metric="euclidean", n_jobs=self.n_jobs
            )
            clustering = AgglomerativeClustering(
                n_clusters=n_clusters, metric="precomputed", linkage=self.linkage
            )
            raw_ids = clustering.fit_predict(distances)
        return _renumber_by_first_occurrence(raw_ids)


def _renumber_by_first_occurrence(labels: np.ndarray) -> np.ndarray:
    mapping: dict[Any, int] = {}
    for label in labels:
        if label not in mapping:
            mapping[label] = len(mapping)
    return np.array([mapping[label] for label in labels], dtype=int)
