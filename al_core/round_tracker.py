"""
Per-round performance tracking for active learning runs.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

PerformanceRecord = Dict[str, Any]

SUMMARY_METRIC_RULES = {
    "initial_accuracy": ("first", "accuracy"),
    "final_accuracy": ("last", "accuracy"),
    "max_accuracy": ("max_overall", "accuracy"),
    "learning_curve_accuracy": ("mean", "accuracy"),
    "initial_macro_auc": ("first", "macro_auc"),
    "final_macro_auc": ("last", "macro_auc"),
    "learning_curve_macro_auc": ("mean", "macro_auc"),
}


class PerformanceTracker:
    """
    Collects one performance record per round.
    """

    def __init__(self) -> None:
        self.rounds: List[PerformanceRecord] = []

    def track_round(
        self,
        iteration: int,
        training_size: int,
        selected_ids: List[str],
        metrics: Dict[str, float],
    ) -> PerformanceRecord:
        """
        Record the metrics of a model trained in a round.

        Args:
            iteration: Round index
            training_size: Number of labelled cases the model was trained on
            selected_ids: Identifiers selected after training in this round
            metrics: Scalar evaluation metrics for the round
        """
        record: PerformanceRecord = {
            "iteration": iteration,
            "training_size": training_size,
            "batch_size": len(selected_ids),
            "selected_ids": list(selected_ids),
            **metrics,
        }
        self.rounds.append(record)
        return record

    def compute_summary_metrics(self) -> Dict[str, float]:
        """
        Compute summary metrics defined by `SUMMARY_METRIC_RULES`.
        """
        if not self.rounds:
            raise ValueError(
                "Cannot compute summary metrics: no rounds have been tracked yet"
            )

        summary_values: Dict[str, float] = {}
        for metric_name, (rule, metric_column) in SUMMARY_METRIC_RULES.items():
            if metric_column not in self.rounds[0]:
                raise ValueError(f"Metric column {metric_column} not found in rounds")

            values = np.array([round_[metric_column] for round_ in self.rounds], dtype=float)
            if rule == "first":
                summary_values[metric_name] = float(values[0])
            elif rule == "last":
                summary_values[metric_name] = float(values[-1])
            elif rule == "max_overall":
                summary_values[metric_name] = float(np.nanmax(values))
            elif rule == "mean":
                summary_values[metric_name] = float(np.nanmean(values))
            else:
                raise ValueError(
                    f"Unknown summary metric rule '{rule}' for {metric_name}"
                )
        return summary_values

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rounds)

    def save_to_csv(self, output_path: Path) -> None:
        """
        Save rounds to CSV file.

        Args:
            output_path: Path to save rounds
        """
        df = self.to_frame()
        if "selected_ids" in df.columns:
            df["selected_ids"] = df["selected_ids"].apply(";".join)
        df.to_csv(output_path, index=False)
        logger.info(f"Rounds saved to {output_path}")
