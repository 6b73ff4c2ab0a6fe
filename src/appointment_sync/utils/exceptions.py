"""Custom exceptions for the appointment sync engine."""

from typing import Any, Optional


class AppointmentSyncError(Exception):
    """Base exception for appointment sync errors."""


class ValidationError(AppointmentSyncError):
    """Raised when a time range or appointment payload is invalid."""


class ParseError(ValidationError):
    """Raised when a date or time string cannot be parsed."""


class InvalidTransitionError(ValidationError):
    """Raised when a reminder state transition is not allowed."""


class ConflictError(AppointmentSyncError):
    """Raised when the authoritative check finds overlapping appointments."""

    def __init__(self, message: str, conflicts: Optional[list[Any]] = None):
        super().__init__(message)
        self.conflicts = list(conflicts or [])


class NetworkError(AppointmentSyncError):
    """Raised when the appointment service cannot be reached or fails."""


class AuthError(AppointmentSyncError):
    """Raised when the appointment service rejects the credentials."""


class StaleEventError(AppointmentSyncError):
    """Raised when an incoming copy is older than the one already held."""


class MirrorSyncError(AppointmentSyncError):
    """Raised when the secondary calendar mirror fails."""


class ConfigurationError(AppointmentSyncError):
    """Raised when configuration is invalid."""
