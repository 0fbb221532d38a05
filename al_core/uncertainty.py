"""
Entropy-based uncertainty scoring for class probability predictions.
"""

import logging
from typing import Mapping, Optional, Sequence

import numpy as np
from scipy.special import entr

from al_core.errors import ValidationError

logger = logging.getLogger(__name__)

ClassProbabilities = Mapping[str, float]


class EntropyScorer:
    """
    Shannon entropy of predicted class probabilities.

    The score is 0 when all probability mass sits on one class and maximal
    (``log(C)``) for the uniform distribution over the scored classes.

    When ``classes`` is given, only those classes are scored and their
    probabilities are renormalized to sum to one first. This is how the
    binary-focused variant (entropy over two of three classes) is expressed.
    A subset carrying no probability mass scores 0.
    """

    def __init__(
        self, classes: Optional[Sequence[str]] = None, base: Optional[float] = None
    ) -> None:
        if classes is not None and len(classes) < 2:
            raise ValueError("Entropy needs at least two classes to score.")
        if base is not None and base <= 1:
            raise ValueError("Logarithm base must be greater than 1.")
        self.classes = list(classes) if classes is not None else None
        self.base = base

    def score(self, probabilities: ClassProbabilities) -> float:
        """Return the entropy of a single prediction."""
        row = self._as_row(probabilities)
        return float(self.score_matrix(row, class_names=self.classes)[0])

    def score_matrix(
        self, probabilities: np.ndarray, class_names: Optional[Sequence[str]] = None
    ) -> np.ndarray:
        """
        Score a (n_cases, n_classes) probability matrix row by row.

        Args:
            probabilities: Probability matrix, columns ordered as ``class_names``
            class_names: Column names; required when a class subset is configured
        """
        probs = np.atleast_2d(np.asarray(probabilities, dtype=float))
        if self.classes is not None:
            if class_names is None:
                raise ValueError("class_names are required when scoring a subset.")
            probs = probs[:, self._subset_columns(class_names)]

        totals = probs.sum(axis=1, keepdims=True)
        normalized = np.divide(
            probs, totals, out=np.zeros_like(probs), where=totals > 0
        )
        scores = entr(normalized).sum(axis=1)
        if self.base is not None:
            scores = scores / np.log(self.base)
        return scores

    def _subset_columns(self, class_names: Sequence[str]) -> list[int]:
        names = list(class_names)
        unknown = [name for name in self.classes if name not in names]
        if unknown:
            raise ValidationError(
                f"Entropy classes {unknown} are not among the model classes {names}"
            )
        return [names.index(name) for name in self.classes]

    def _as_row(self, probabilities: ClassProbabilities) -> np.ndarray:
        if self.classes is None:
            return np.array([list(probabilities.values())], dtype=float)
        missing = [name for name in self.classes if name not in probabilities]
        if missing:
            raise ValidationError(f"Probabilities are missing classes {missing}")
        return np.array([[probabilities[name] for name in self.classes]], dtype=float)
