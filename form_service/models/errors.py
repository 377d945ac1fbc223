"""
FORMCOACH Form Service - Errors

Typed errors raised by the pose, angle, profile and form-analysis layers.
Input-validity errors are recoverable per frame; InvalidProfile is fatal
to starting a session.
"""


class FormAnalysisError(Exception):
    """Base class for all form-analysis errors."""


class DegenerateAngle(FormAnalysisError, ValueError):
    """Two landmarks coincide, so the angle is undefined."""


class InsufficientPrecision(DegenerateAngle):
    """Segment too short (or non-finite) for a meaningful measurement."""


class IncompletePose(FormAnalysisError):
    """No metric of the profile could be computed from the pose."""

    def __init__(self, message: str, missing_metrics=None):
        super().__init__(message)
        self.missing_metrics = list(missing_metrics or [])


class InvalidProfile(FormAnalysisError, ValueError):
    """Exercise profile failed validation at load time."""
