"""
Exception types for the visibility and pass-prediction engine.

Propagation failures are absorbed close to where they happen (a single
sample, or a single object in a batch); input-contract violations are
raised to the caller before any scanning starts.
"""


class SkywatchError(Exception):
    """Base class for all engine errors."""


class PropagationError(SkywatchError):
    """The position provider could not produce a state for a given time."""

    def __init__(self, message: str, object_id: str = "") -> None:
        super().__init__(message)
        self.object_id = object_id


class InvalidInputError(SkywatchError, ValueError):
    """A caller-supplied value violates the API contract."""
