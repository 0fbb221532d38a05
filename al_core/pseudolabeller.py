"""
Lookup-based labelling oracle standing in for a human annotator.
"""

import logging
from typing import Iterable, List, Mapping

from al_core.data_loader import Case
from al_core.errors import LabelLookupError

logger = logging.getLogger(__name__)


class PseudoLabeller:
    """Assigns the known class of each case from an identifier lookup."""

    def __init__(self, lookup: Mapping[str, str]) -> None:
        self.lookup = {str(key): str(value) for key, value in lookup.items()}

    def label(self, cases: Iterable[Case]) -> List[Case]:
        """
        Return labelled copies of ``cases``.

        The batch is labelled all or nothing: if any identifier is missing
        from the lookup no case is returned.

        Raises:
            LabelLookupError: listing every identifier without a label.
        """
        cases = list(cases)
        missing = [case.case_id for case in cases if case.case_id not in self.lookup]
        if missing:
            raise LabelLookupError(missing)
        labelled = [case.with_label(self.lookup[case.case_id]) for case in cases]
        logger.debug("Pseudolabelled %d cases", len(labelled))
        return labelled
