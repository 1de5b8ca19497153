"""Status definitions and exceptions for ETracker.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., RestoreVerificationFailedException) raised by the store and services
"""
import enum
import logging
from typing import Dict, Optional


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Settings status
    SettingsInvalid = enum.auto()

    # Authentication status
    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()

    # Service status
    ServiceUnavailable = enum.auto()

    # Store status
    StoreClosed = enum.auto()
    ConstraintViolation = enum.auto()
    NotFound = enum.auto()
    MigrationFailed = enum.auto()

    # Snapshot status
    SourceMissing = enum.auto()
    RestoreVerificationFailed = enum.auto()
    RestoreCancelled = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.SettingsInvalid: 'The settings file seems to be incomplete, or contains invalid values.',

    Status.ClientSecretNotFound: 'Could not find the google client secret. Have you set up a valid Google client secret?',
    Status.ClientSecretInvalid: 'Could not verify the client secret. Have you set up a valid Google client secret?',
    Status.CredsInvalid: 'Could not verify the credentials. Please sign in again to your Google account.',
    Status.NotAuthenticated: 'Authentication error. Try signing in again to your Google account.',

    Status.ServiceUnavailable: 'Google Drive service is unavailable. Please check your connection.',

    Status.StoreClosed: 'The local database is not open.',
    Status.ConstraintViolation: 'The value was rejected by the local database.',
    Status.NotFound: 'The requested record does not exist.',
    Status.MigrationFailed: 'The local database could not be upgraded to the current version.',

    Status.SourceMissing: 'Nothing to back up yet. Record a transaction first.',
    Status.RestoreVerificationFailed: 'The restored database could not be verified. The previous data was kept.',
    Status.RestoreCancelled: 'The restore was cancelled before any data was changed.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in ETracker.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..core.signals import signals
        signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class SettingsInvalidException(BaseStatusException):
    """Exception raised when settings.json is missing required values or is malformed."""
    status = Status.SettingsInvalid


class ClientSecretNotFoundException(BaseStatusException):
    """Exception raised when the Google OAuth client secret file cannot be found."""
    status = Status.ClientSecretNotFound


class ClientSecretInvalidException(BaseStatusException):
    """Exception raised when the Google OAuth client secret is invalid or malformed."""
    status = Status.ClientSecretInvalid


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored Google credentials are invalid or expired."""
    status = Status.CredsInvalid


class AuthenticationExceptionException(BaseStatusException):
    """Exception raised when user is not authenticated with Google services."""
    status = Status.NotAuthenticated


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the Google Drive service cannot be reached or rejects a request."""
    status = Status.ServiceUnavailable


class StoreClosedException(BaseStatusException):
    """Exception raised when the store is used without an open connection."""
    status = Status.StoreClosed


class ConstraintViolationException(BaseStatusException):
    """Exception raised when a value is rejected by validation or a storage constraint."""
    status = Status.ConstraintViolation


class NotFoundException(BaseStatusException):
    """Exception raised when an operation targets an identifier that does not exist."""
    status = Status.NotFound


class MigrationFailedException(BaseStatusException):
    """Exception raised when a schema migration step fails.

    The store is unusable until the cause is resolved.

    Attributes:
        step (str): Name of the migration step that failed.
    """
    status = Status.MigrationFailed

    def __init__(self, message: str = None, step: Optional[str] = None):
        self.step = step
        if step:
            message = f'Step "{step}" failed: {message}' if message else f'Step "{step}" failed.'
        super().__init__(message)


class SourceMissingException(BaseStatusException):
    """Exception raised when an export is attempted before a store file exists."""
    status = Status.SourceMissing


class RestoreVerificationFailedException(BaseStatusException):
    """Exception raised when an imported snapshot fails verification and was rolled back."""
    status = Status.RestoreVerificationFailed


class RestoreCancelledException(BaseStatusException):
    """Exception raised when an import is cancelled before the store file was replaced."""
    status = Status.RestoreCancelled
