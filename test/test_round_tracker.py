"""
Unit tests for PerformanceTracker class.
"""

import pandas as pd
import pytest

from al_core.round_tracker import PerformanceTracker

DUMMY_METRICS = {
    "accuracy": 0.5,
    "balanced_accuracy": 0.5,
    "macro_auc": 0.6,
}


class TestPerformanceTracker:
    def test_initialization(self):
        tracker = PerformanceTracker()
        assert tracker.rounds == []

    def test_track_round_basic(self):
        tracker = PerformanceTracker()

        record = tracker.track_round(
            iteration=0,
            training_size=18,
            selected_ids=["a.png", "b.png"],
            metrics=DUMMY_METRICS,
        )

        assert tracker.rounds == [record]
        assert record["iteration"] == 0
        assert record["training_size"] == 18
        assert record["batch_size"] == 2
        assert record["accuracy"] == 0.5

    def test_compute_summary_metrics_with_no_rounds(self):
        tracker = PerformanceTracker()

        with pytest.raises(
            ValueError,
            match="Cannot compute summary metrics: no rounds have been tracked yet",
        ):
            tracker.compute_summary_metrics()

    def test_compute_summary_metrics_returns_expected_values(self):
        tracker = PerformanceTracker()
        for iteration, (accuracy, auc) in enumerate([(0.5, 0.6), (0.7, 0.8), (0.6, 0.9)]):
            tracker.track_round(
                iteration=iteration,
                training_size=18 + 12 * iteration,
                selected_ids=["x"],
                metrics={"accuracy": accuracy, "macro_auc": auc},
            )

        metrics = tracker.compute_summary_metrics()
        assert metrics["initial_accuracy"] == pytest.approx(0.5)
        assert metrics["final_accuracy"] == pytest.approx(0.6)
        assert metrics["max_accuracy"] == pytest.approx(0.7)
        assert metrics["learning_curve_accuracy"] == pytest.approx(0.6)
        assert metrics["initial_macro_auc"] == pytest.approx(0.6)
        assert metrics["final_macro_auc"] == pytest.approx(0.9)
        assert metrics["learning_curve_macro_auc"] == pytest.approx(2.3 / 3)

    def test_compute_summary_metrics_missing_required_column(self):
        tracker = PerformanceTracker()
        tracker.track_round(0, 18, ["x"], {"accuracy": 0.2})

        with pytest.raises(ValueError, match="Metric column"):
            tracker.compute_summary_metrics()

    def test_save_to_csv(self, tmp_path):
        tracker = PerformanceTracker()
        tracker.track_round(0, 18, ["a.png", "b.png"], DUMMY_METRICS)

        output_path = tmp_path / "rounds.csv"
        tracker.save_to_csv(output_path)

        assert output_path.exists()
        df = pd.read_csv(output_path)
        assert df.loc[0, "selected_ids"] == "a.png;b.png"
        assert df.loc[0, "macro_auc"] == pytest.approx(0.6)
