"""Error taxonomy of the recognition engine.

Rejection by the eigen-distance threshold is not an error: it is reported
through the unrecognized label.
"""
from __future__ import annotations


class RecognitionError(Exception):
    """Base class for recognition engine failures."""


class InputShapeError(RecognitionError, ValueError):
    """Images or landmark sets are empty or do not share a common shape."""


class UntrainedModelError(RecognitionError, RuntimeError):
    """Landmark recognition requested but no forest model was trained."""


class UnknownIdentityError(RecognitionError, LookupError):
    """A predicted class key has no entry in the identity table."""

    def __init__(self, class_key: int):
        super().__init__(f"No identity enrolled for shortened id {class_key}")
        self.class_key = int(class_key)
