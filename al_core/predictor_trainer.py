"""
Classifier training and prediction for active learning rounds.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

import numpy as np
from sklearn.base import ClassifierMixin, clone
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline

from al_core.data_loader import Case, LabelledSet
from al_core.errors import PredictionError, TrainingError
from al_core.uncertainty import ClassProbabilities

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Model:
    """
    A fitted classifier.

    Attributes:
        estimator: Fitted sklearn estimator (or pipeline) exposing predict_proba
        classes: Class names, in the column order of predict_proba
        n_features: Input dimensionality the estimator was fitted on
    """

    estimator: Any
    classes: Tuple[str, ...]
    n_features: int


class ClassifierTrainer:
    """
    Fits a fresh probabilistic classifier on each labelled set.
    """

    def __init__(
        self,
        classifier: Optional[ClassifierMixin] = None,
        feature_transform: Optional[List[Tuple[str, Any]]] = None,
    ) -> None:
        """
        Initialize the classifier trainer.

        Args:
            classifier: Scikit-learn compatible classifier with predict_proba.
                Defaults to a multinomial LogisticRegression.
            feature_transform: List of (name, transformer) steps to apply to the
                features before the classifier, e.g. [("scaler", StandardScaler())]
        """
        self.base_classifier = (
            classifier if classifier is not None else LogisticRegression(max_iter=1000)
        )
        self.feature_transform = feature_transform

        if feature_transform:
            logger.info(
                f"ClassifierTrainer initialized with feature_transform={self.feature_transform}"
            )

    def _build_estimator(self) -> Any:
        """Create an unfitted estimator, wrapped in a Pipeline when transforms are set."""
        if self.feature_transform:
            steps = [(name, clone(step)) for name, step in self.feature_transform]
            return Pipeline(steps + [("classifier", clone(self.base_classifier))])
        return clone(self.base_classifier)

    def train(self, labelled_set: LabelledSet) -> Model:
        """
        Train a fresh model on the labelled set.

        Raises:
            TrainingError: if the set is empty, has fewer than two classes,
                or the estimator fails to fit.
        """
        if len(labelled_set) == 0:
            raise TrainingError("Training requires at least one labelled case.")
        class_counts = labelled_set.class_counts()
        if len(class_counts) < 2:
            raise TrainingError(
                f"Training requires at least two distinct classes, got {class_counts}"
            )

        X_train = labelled_set.features
        y_train = labelled_set.labels.astype(str)
        logger.info(f"Total training cases: {len(X_train)} ({class_counts})")

        estimator = self._build_estimator()
        try:
            estimator.fit(X_train, y_train)
        except ValueError as exc:
            raise TrainingError(f"Classifier failed to fit: {exc}") from exc

        return Model(
            estimator=estimator,
            classes=tuple(str(name) for name in estimator.classes_),
            n_features=X_train.shape[1],
        )

    def predict_matrix(self, model: Model, cases: Iterable[Case]) -> np.ndarray:
        """
        Return a (n_cases, n_classes) probability matrix ordered as model.classes.

        Raises:
            PredictionError: if a feature vector does not match the model input size.
        """
        cases = list(cases)
        if not cases:
            return np.empty((0, len(model.classes)))
        mismatched = [
            case.case_id for case in cases if case.features.shape[0] != model.n_features
        ]
        if mismatched:
            raise PredictionError(
                f"{len(mismatched)} case(s) do not have {model.n_features} features, "
                f"e.g. {mismatched[0]}"
            )
        X = np.vstack([case.features for case in cases])
        return np.asarray(model.estimator.predict_proba(X), dtype=float)

    def predict(self, model: Model, cases: Iterable[Case]) -> List[ClassProbabilities]:
        """Return one class -> probability mapping per case."""
        probabilities = self.predict_matrix(model, cases)
        return [dict(zip(model.classes, row.tolist())) for row in probabilities]
