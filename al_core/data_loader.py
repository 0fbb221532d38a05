"""
Case collections and startup data loading for active learning runs.

The loader pairs a features NPZ (``features`` and ``ids`` arrays) with two CSV
tables: the labels of the initially labelled pool and the pseudolabel lookup
used to "label" selected cases. Everything is read once; the engine itself
only ever sees the in-memory collections defined here.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Iterable, Iterator, Optional

import numpy as np
import pandas as pd

from al_core.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Case:
    """
    A single image case.

    Attributes:
        case_id: Unique key (usually the image path)
        features: Fixed-length feature vector
        label: True class once labelled, otherwise None
    """

    case_id: str
    features: np.ndarray
    label: Optional[str] = None

    def __post_init__(self) -> None:
        features = np.array(self.features, dtype=float).reshape(-1)
        features.setflags(write=False)
        object.__setattr__(self, "features", features)

    @property
    def is_labelled(self) -> bool:
        return self.label is not None

    def with_label(self, label: str) -> "Case":
        """Return a labelled copy of this case."""
        return replace(self, label=str(label))


def _stack_features(cases: tuple[Case, ...]) -> np.ndarray:
    if not cases:
        return np.empty((0, 0))
    return np.vstack([case.features for case in cases])


@dataclass(frozen=True)
class LabelledSet:
    """Append-only collection of labelled cases."""

    cases: tuple[Case, ...] = ()
    _ids: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        cases = tuple(self.cases)
        unlabelled = [case.case_id for case in cases if not case.is_labelled]
        if unlabelled:
            raise ValidationError(
                f"LabelledSet received {len(unlabelled)} unlabelled case(s), "
                f"e.g. {unlabelled[0]}"
            )
        ids = [case.case_id for case in cases]
        if len(set(ids)) != len(ids):
            duplicates = sorted(cid for cid, n in Counter(ids).items() if n > 1)
            raise ValidationError(f"Duplicate case identifiers: {duplicates[:5]}")
        object.__setattr__(self, "cases", cases)
        object.__setattr__(self, "_ids", frozenset(ids))

    def __len__(self) -> int:
        return len(self.cases)

    def __iter__(self) -> Iterator[Case]:
        return iter(self.cases)

    def __contains__(self, case_id: object) -> bool:
        return case_id in self._ids

    @property
    def ids(self) -> frozenset[str]:
        return self._ids

    @property
    def features(self) -> np.ndarray:
        return _stack_features(self.cases)

    @property
    def labels(self) -> np.ndarray:
        return np.array([case.label for case in self.cases], dtype=object)

    def class_counts(self) -> dict[str, int]:
        return dict(sorted(Counter(case.label for case in self.cases).items()))

    def extend(self, cases: Iterable[Case]) -> "LabelledSet":
        """Return a new set holding the current cases followed by ``cases``."""
        return LabelledSet(self.cases + tuple(cases))


@dataclass(frozen=True)
class UnlabelledPool:
    """Fixed universe of cases awaiting labels."""

    cases: tuple[Case, ...] = ()

    def __post_init__(self) -> None:
        cases = tuple(self.cases)
        ids = [case.case_id for case in cases]
        if len(set(ids)) != len(ids):
            raise ValidationError("UnlabelledPool contains duplicate case identifiers")
        object.__setattr__(self, "cases", cases)

    def __len__(self) -> int:
        return len(self.cases)

    def __iter__(self) -> Iterator[Case]:
        return iter(self.cases)

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(case.case_id for case in self.cases)

    def candidates(self, evaluated: Iterable[str]) -> "UnlabelledPool":
        """Return the cases whose identifiers are not in ``evaluated``, in pool order."""
        excluded = set(evaluated)
        return UnlabelledPool(
            tuple(case for case in self.cases if case.case_id not in excluded)
        )


@dataclass
class LoadedData:
    """
    Container for everything read at startup.

    Attributes:
        labelled_pool: Cases with known labels (split into seed and test set later)
        unlabelled_pool: Cases available for selection
        pseudolabels: Lookup from case identifier to class used by the oracle
    """

    labelled_pool: LabelledSet
    unlabelled_pool: UnlabelledPool
    pseudolabels: dict[str, str]


class DataLoader:
    """
    Load cached features from NPZ and labels from paired CSV tables.
    """

    def __init__(
        self,
        features_path: str,
        labels_path: str,
        pseudolabels_path: str,
        id_key: str = "case_id",
        label_key: str = "label",
    ) -> None:
        """
        Initialize the data loader.

        Args:
            features_path: NPZ file with ``features`` (n x d) and ``ids`` (n,) arrays.
            labels_path: CSV with the labels of the initially labelled pool.
            pseudolabels_path: CSV with the pseudolabel lookup for the unlabelled pool.
            id_key: Column holding case identifiers in both CSV files.
            label_key: Column holding class names in both CSV files.
        """
        self.features_path = features_path
        self.labels_path = labels_path
        self.pseudolabels_path = pseudolabels_path
        self.id_key = id_key
        self.label_key = label_key

    def load(self) -> LoadedData:
        logger.info(
            f"Loading features from {self.features_path}, labels from "
            f"{self.labels_path} and pseudolabels from {self.pseudolabels_path}"
        )
        features, ids = self._load_features()
        labels = self._load_label_table(self.labels_path)
        pseudolabels = self._load_label_table(self.pseudolabels_path)

        missing = sorted(set(labels) - set(ids))
        if missing:
            logger.warning(
                "Label table references %d ids without features; ignoring e.g. %s",
                len(missing),
                missing[:5],
            )

        labelled: list[Case] = []
        unlabelled: list[Case] = []
        for case_id, row in zip(ids, features):
            if case_id in labels:
                labelled.append(Case(case_id, row, labels[case_id]))
            else:
                unlabelled.append(Case(case_id, row))

        data = LoadedData(
            labelled_pool=LabelledSet(tuple(labelled)),
            unlabelled_pool=UnlabelledPool(tuple(unlabelled)),
            pseudolabels=pseudolabels,
        )
        logger.info(
            f"Loaded {len(data.labelled_pool)} labelled and "
            f"{len(data.unlabelled_pool)} unlabelled cases; "
            f"feature dimension {features.shape[1]}. "
            f"Class counts: {data.labelled_pool.class_counts()}"
        )
        return data

    def _load_features(self) -> tuple[np.ndarray, list[str]]:
        data = np.load(self.features_path, allow_pickle=True)
        for key in ("features", "ids"):
            if key not in data:
                raise ValueError(
                    f"'{key}' array not found in {self.features_path}. "
                    f"Available keys: {list(data.keys())}"
                )
        features = np.asarray(data["features"], dtype=float)
        ids = [str(value) for value in data["ids"]]
        if features.ndim != 2 or len(features) != len(ids):
            raise ValueError(
                f"Features ({features.shape}) and ids ({len(ids)}) are not aligned"
            )
        return features, ids

    def _load_label_table(self, path: str) -> dict[str, str]:
        df = pd.read_csv(path, dtype=str)
        for column in (self.id_key, self.label_key):
            if column not in df.columns:
                raise ValueError(f"Column '{column}' not found in {path}")
        df = df.dropna(subset=[self.label_key])
        if df[self.id_key].duplicated().any():
            raise ValueError(f"Duplicate case identifiers in {path}")
        return dict(zip(df[self.id_key], df[self.label_key]))
