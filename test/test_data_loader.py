"""
Tests for case collections and the startup data loader.
"""

import numpy as np
import pandas as pd
import pytest

from al_core.data_loader import Case, DataLoader, LabelledSet, UnlabelledPool
from al_core.errors import ValidationError


class TestCase:
    def test_features_are_read_only_copies(self):
        raw = np.array([1.0, 2.0])
        case = Case("img_0.png", raw)
        raw[0] = 99.0

        assert case.features[0] == 1.0
        with pytest.raises(ValueError):
            case.features[0] = 5.0

    def test_with_label_returns_new_case(self):
        case = Case("img_0.png", [0.0, 1.0])
        labelled = case.with_label("benign")

        assert labelled.label == "benign"
        assert labelled.is_labelled
        assert case.label is None
        assert labelled is not case


class TestLabelledSet:
    def test_extend_is_append_only(self):
        first = LabelledSet((Case("a", [0.0], "x"),))
        second = first.extend([Case("b", [1.0], "y")])

        assert len(first) == 1
        assert len(second) == 2
        assert [case.case_id for case in second] == ["a", "b"]
        assert "b" in second and "b" not in first

    def test_rejects_unlabelled_cases(self):
        with pytest.raises(ValidationError, match="unlabelled"):
            LabelledSet((Case("a", [0.0]),))

    def test_rejects_duplicate_ids(self):
        base = LabelledSet((Case("a", [0.0], "x"),))
        with pytest.raises(ValidationError, match="Duplicate"):
            base.extend([Case("a", [1.0], "y")])

    def test_features_labels_and_counts(self):
        labelled = LabelledSet(
            (
                Case("a", [0.0, 1.0], "x"),
                Case("b", [2.0, 3.0], "y"),
                Case("c", [4.0, 5.0], "x"),
            )
        )

        assert labelled.features.shape == (3, 2)
        assert list(labelled.labels) == ["x", "y", "x"]
        assert labelled.class_counts() == {"x": 2, "y": 1}


class TestUnlabelledPool:
    def test_candidates_exclude_evaluated_ids_and_keep_order(self):
        pool = UnlabelledPool(tuple(Case(f"img_{i}", [float(i)]) for i in range(5)))

        candidates = pool.candidates({"img_1", "img_3"})

        assert [case.case_id for case in candidates] == ["img_0", "img_2", "img_4"]
        assert len(pool) == 5

    def test_rejects_duplicate_ids(self):
        with pytest.raises(ValidationError):
            UnlabelledPool((Case("a", [0.0]), Case("a", [1.0])))


def _write_inputs(tmp_path, n_cases=6, dim=3):
    ids = np.array([f"images/img_{i}.png" for i in range(n_cases)])
    features = np.arange(n_cases * dim, dtype=float).reshape(n_cases, dim)
    features_path = tmp_path / "features.npz"
    np.savez_compressed(features_path, features=features, ids=ids)

    labels_path = tmp_path / "labels.csv"
    pd.DataFrame(
        {"case_id": ids[:2], "label": ["benign", "malignant"]}
    ).to_csv(labels_path, index=False)

    pseudolabels_path = tmp_path / "pseudolabels.csv"
    pd.DataFrame(
        {"case_id": ids[2:], "label": ["normal", "benign", "normal", "malignant"]}
    ).to_csv(pseudolabels_path, index=False)
    return str(features_path), str(labels_path), str(pseudolabels_path)


class TestDataLoader:
    def test_load_splits_labelled_and_unlabelled(self, tmp_path):
        features_path, labels_path, pseudolabels_path = _write_inputs(tmp_path)

        data = DataLoader(features_path, labels_path, pseudolabels_path).load()

        assert len(data.labelled_pool) == 2
        assert len(data.unlabelled_pool) == 4
        assert data.labelled_pool.class_counts() == {"benign": 1, "malignant": 1}
        assert all(not case.is_labelled for case in data.unlabelled_pool)
        assert data.pseudolabels["images/img_5.png"] == "malignant"
        np.testing.assert_array_equal(
            data.unlabelled_pool.cases[0].features, [6.0, 7.0, 8.0]
        )

    def test_missing_features_key_raises(self, tmp_path):
        _, labels_path, pseudolabels_path = _write_inputs(tmp_path)
        bad_path = tmp_path / "bad.npz"
        np.savez_compressed(bad_path, embeddings=np.zeros((2, 2)), ids=np.array(["a", "b"]))

        loader = DataLoader(str(bad_path), labels_path, pseudolabels_path)
        with pytest.raises(ValueError, match="'features' array not found"):
            loader.load()

    def test_missing_label_column_raises(self, tmp_path):
        features_path, labels_path, pseudolabels_path = _write_inputs(tmp_path)

        loader = DataLoader(
            features_path, labels_path, pseudolabels_path, label_key="diagnosis"
        )
        with pytest.raises(ValueError, match="Column 'diagnosis' not found"):
            loader.load()
