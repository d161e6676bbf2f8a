"""
Error taxonomy for the attendance pipeline.

- ValidationError: structurally invalid input, never retried
  (NotFound and Conflict for identity records)
- PolicyRejection: expected, user-facing, recoverable by retrying
- ResourceError: camera, frame or backend unavailable
- EngineFault: detector or matcher failed unexpectedly
"""


class FaceAttendanceError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(FaceAttendanceError):
    """Bad input shape, e.g. a descriptor that is not fixed-length."""


class InvalidStateError(ValidationError):
    """Operation called in a state that does not allow it."""


class PolicyRejection(FaceAttendanceError):
    """Expected rejection the user can recover from by retrying."""


class InsufficientSamples(PolicyRejection):
    """Enrollment completion requested before enough samples were accepted."""

    def __init__(self, shortfall: int):
        super().__init__(f'Need {shortfall} more sample(s) to complete enrollment')
        self.shortfall = shortfall


class CooldownActive(PolicyRejection):
    """A recognition was accepted too recently."""

    def __init__(self, remaining_seconds: int):
        super().__init__(f'Please wait {remaining_seconds} seconds before next attempt')
        self.remaining_seconds = remaining_seconds


class CaptureInProgress(PolicyRejection):
    """Another capture action is still running for this session."""


class NoFaceDetected(PolicyRejection):
    """The captured frame contains no face."""


class RetryBudgetExhausted(PolicyRejection):
    """All recognition attempts of the current cycle were used."""

    def __init__(self, max_attempts: int):
        super().__init__(f'Maximum attempts ({max_attempts}) reached')
        self.max_attempts = max_attempts


class ResourceError(FaceAttendanceError):
    """Camera, frame or backend is unavailable."""


class EngineFault(FaceAttendanceError):
    """Detector or matcher raised unexpectedly."""


class NotFound(ValidationError):
    """Referenced identity or record does not exist."""


class Conflict(ValidationError):
    """Write conflicts with existing data, e.g. a duplicate email."""
