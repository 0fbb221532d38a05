"""
Test-set evaluation for active learning rounds.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    balanced_accuracy_score,
    cohen_kappa_score,
    confusion_matrix,
    log_loss,
    roc_auc_score,
    roc_curve,
)

from al_core.data_loader import LabelledSet
from al_core.predictor_trainer import ClassifierTrainer, Model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RocCurve:
    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray


@dataclass(frozen=True)
class Evaluation:
    """
    Performance of a model on the held-out test set.

    Attributes:
        confusion: Confusion matrix, rows = true class, columns = predicted class
        roc_curves: One-vs-rest ROC curve per class
        auc: One-vs-rest AUC per class (NaN when undefined)
        summary: Scalar metrics used for trend tracking and Monte Carlo comparison
    """

    confusion: pd.DataFrame
    roc_curves: Dict[str, RocCurve] = field(default_factory=dict)
    auc: Dict[str, float] = field(default_factory=dict)
    summary: Dict[str, float] = field(default_factory=dict)


class Evaluator:
    """
    Computes confusion matrix, one-vs-rest ROC/AUC and summary statistics.

    Evaluation is read-only: neither the model nor the test set is modified.
    """

    def __init__(self, classifier: ClassifierTrainer) -> None:
        self.classifier = classifier

    def evaluate(self, model: Model, test_set: LabelledSet) -> Evaluation:
        if len(test_set) == 0:
            raise ValueError("Cannot evaluate on an empty test set.")

        classes = list(model.classes)
        y_true = test_set.labels.astype(str)
        probabilities = self.classifier.predict_matrix(model, test_set.cases)
        y_pred = np.asarray(classes)[np.argmax(probabilities, axis=1)]

        confusion = pd.DataFrame(
            confusion_matrix(y_true, y_pred, labels=classes),
            index=pd.Index(classes, name="true"),
            columns=pd.Index(classes, name="predicted"),
        )

        roc_curves: Dict[str, RocCurve] = {}
        auc: Dict[str, float] = {}
        for column, name in enumerate(classes):
            is_positive = y_true == name
            if is_positive.all() or not is_positive.any():
                logger.warning(
                    "Class '%s' has %s test cases; AUC is undefined.",
                    name,
                    "only" if is_positive.all() else "no",
                )
                auc[name] = float("nan")
                continue
            fpr, tpr, thresholds = roc_curve(is_positive, probabilities[:, column])
            roc_curves[name] = RocCurve(fpr=fpr, tpr=tpr, thresholds=thresholds)
            auc[name] = float(roc_auc_score(is_positive, probabilities[:, column]))

        summary = {
            "accuracy": self._round_metric(accuracy_score(y_true, y_pred)),
            "balanced_accuracy": self._round_metric(
                balanced_accuracy_score(y_true, y_pred)
            ),
            "kappa": self._round_metric(cohen_kappa_score(y_true, y_pred)),
            "log_loss": self._round_metric(
                log_loss(y_true, probabilities, labels=classes)
            ),
            "macro_auc": self._round_metric(self._nanmean(list(auc.values()))),
        }
        for name, value in auc.items():
            summary[f"auc_{name}"] = self._round_metric(value)

        return Evaluation(
            confusion=confusion, roc_curves=roc_curves, auc=auc, summary=summary
        )

    @staticmethod
    def _nanmean(values: list[float]) -> float:
        finite = [value for value in values if not np.isnan(value)]
        return float(np.mean(finite)) if finite else float("nan")

    def _round_metric(self, value: float, digits: int = 6) -> float:
        if np.isnan(value):
            return float(value)
        return round(float(value), digits)
