"""
Initial selection strategies for choosing the seed training set.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from al_core.data_loader import LabelledSet
from al_core.errors import ValidationError

logger = logging.getLogger(__name__)


class InitialSelectionStrategy(ABC):
    """Interface for splitting the labelled pool into a seed set and a test set."""

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name or self.__class__.__name__

    @abstractmethod
    def split(self, labelled_pool: LabelledSet) -> tuple[LabelledSet, LabelledSet]:
        """Return (seed_set, test_set)."""


class StratifiedSeedSelection(InitialSelectionStrategy):
    """
    Draw a fixed number of cases per class, uniformly without replacement.

    Every case not drawn becomes part of the held-out test set. Each class
    must keep at least one case in the test set.
    """

    def __init__(self, seed_per_class: int, rng: np.random.Generator) -> None:
        super().__init__("STRATIFIED")
        if seed_per_class < 1:
            raise ValueError("seed_per_class must be >= 1")
        self.seed_per_class = seed_per_class
        self.rng = rng

    def split(self, labelled_pool: LabelledSet) -> tuple[LabelledSet, LabelledSet]:
        labels = labelled_pool.labels
        class_counts = labelled_pool.class_counts()
        too_small = {
            name: count
            for name, count in class_counts.items()
            if count <= self.seed_per_class
        }
        if too_small:
            raise ValidationError(
                f"Classes {too_small} need more than {self.seed_per_class} cases "
                "to fill the seed set and keep a held-out test case"
            )

        seed_positions: set[int] = set()
        for name in class_counts:
            members = np.flatnonzero(labels == name)
            drawn = self.rng.choice(members, size=self.seed_per_class, replace=False)
            seed_positions.update(int(pos) for pos in drawn)

        cases = labelled_pool.cases
        seed_set = LabelledSet(
            tuple(case for pos, case in enumerate(cases) if pos in seed_positions)
        )
        test_set = LabelledSet(
            tuple(case for pos, case in enumerate(cases) if pos not in seed_positions)
        )
        logger.info(
            "%s_INITIAL: seed set %s, test set %s",
            self.name,
            seed_set.class_counts(),
            test_set.class_counts(),
        )
        return seed_set, test_set
