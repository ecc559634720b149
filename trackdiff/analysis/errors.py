"""Exceptions raised by the analysis and reconciliation pipeline."""


class TrackDiffError(Exception):
    """Base class for all trackdiff errors."""


class DecodeError(TrackDiffError):
    """Audio bytes could not be decoded (corrupt or unsupported input)."""


class EmptySignalError(TrackDiffError):
    """The stream ended without producing any valid frame data."""


class InvalidReferenceError(TrackDiffError, ValueError):
    """A reference feature field is missing or malformed."""

    def __init__(self, field: str, value=None, reason: str = "missing"):
        self.field = field
        self.value = value
        super().__init__(f"Invalid reference field {field!r} ({reason}): {value!r}")


class AnalysisCancelled(TrackDiffError):
    """The caller revoked the run's cancellation token."""


class RunStateError(TrackDiffError, RuntimeError):
    """An analysis run was driven through an illegal state transition."""


class SourceError(TrackDiffError):
    """Audio bytes could not be obtained from the source (too large, unreadable)."""
