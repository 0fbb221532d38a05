"""
Error taxonomy for the active learning engine.

Collaborator errors propagate unchanged to the caller of the loop or the
Monte Carlo evaluator. The loop and the evaluator only annotate them with
the round (``iteration``) or trial (``trial``) in which they were raised.
"""

from typing import Optional


class ActiveLearningError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.iteration: Optional[int] = None
        self.trial: Optional[int] = None

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.iteration is not None:
            context.append(f"iteration={self.iteration}")
        if self.trial is not None:
            context.append(f"trial={self.trial}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class ValidationError(ActiveLearningError):
    """Malformed model output or inconsistent input collections."""


class TrainingError(ActiveLearningError):
    """The labelled set cannot be used to fit a classifier."""


class PredictionError(ActiveLearningError):
    """A case does not match the input dimensionality of the model."""


class LabelLookupError(ActiveLearningError, LookupError):
    """The pseudolabel lookup has no label for one or more case identifiers."""

    def __init__(self, missing_ids: list[str]) -> None:
        preview = ", ".join(missing_ids[:5])
        suffix = "..." if len(missing_ids) > 5 else ""
        super().__init__(
            f"No pseudolabel found for {len(missing_ids)} case(s): {preview}{suffix}"
        )
        self.missing_ids = list(missing_ids)

    def __reduce__(self):
        # rebuilt from the ids when sent back from a worker process
        return (self.__class__, (self.missing_ids,), self.__dict__)


class ExhaustionError(ActiveLearningError):
    """The candidate pool ran out before the configured number of rounds."""
