"""Status definitions and exceptions for ExpenseCloud.

This module provides:
    - Status: enumeration of possible access-layer states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., NotSignedInException) raised by the access layer
"""
import enum
import logging
from typing import Dict, Iterable, Optional


class Status(enum.StrEnum):
    """Enumeration of access-layer status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    FirebaseConfigNotFound = enum.auto()
    FirebaseConfigInvalid = enum.auto()

    # Authentication status
    CredsInvalid = enum.auto()
    NotSignedIn = enum.auto()
    AuthFailed = enum.auto()
    Unauthorized = enum.auto()

    # Data status
    ValidationFailed = enum.auto()
    ExpenseDecodeFailed = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status.',
    Status.Okay: 'Everything is okay.',

    Status.FirebaseConfigNotFound: 'Could not find the firebase config. Have you set up firebase.json?',
    Status.FirebaseConfigInvalid: 'The firebase config seems to be incomplete, or contains invalid values.',

    Status.CredsInvalid: 'Could not load the saved credentials. Please sign in again.',
    Status.NotSignedIn: 'Not signed in.',
    Status.AuthFailed: 'Authentication error.',
    Status.Unauthorized: 'Unauthorized.',

    Status.ValidationFailed: 'Invalid expense.',
    Status.ExpenseDecodeFailed: 'A stored expense could not be read.',
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
    """Base exception for status-based errors in ExpenseCloud.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        message (str): The message given at raise time, or the status message.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: Optional[str] = None):
        self.status_message = get_message(self.status)
        self.message = message or self.status_message
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class FirebaseConfigNotFoundException(BaseStatusException):
    """Exception raised when firebase.json cannot be found."""
    status = Status.FirebaseConfigNotFound


class FirebaseConfigInvalidException(BaseStatusException):
    """Exception raised when firebase.json is invalid or malformed."""
    status = Status.FirebaseConfigInvalid


class CredsInvalidException(BaseStatusException):
    """Exception raised when the persisted session credentials are corrupt."""
    status = Status.CredsInvalid


class NotSignedInException(BaseStatusException):
    """Exception raised when an operation needs a signed-in user and there is none."""
    status = Status.NotSignedIn


class AuthException(BaseStatusException):
    """Exception raised when the identity service rejects an operation.

    The backend's error code is kept on ``code`` (e.g. ``auth/weak-password``)
    so callers can branch on it.
    """
    status = Status.AuthFailed

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class UnauthorizedException(BaseStatusException):
    """Exception raised when an authenticated request is answered with HTTP 401."""
    status = Status.Unauthorized


class ValidationException(BaseStatusException):
    """Exception raised when an expense fails validation before any network call."""
    status = Status.ValidationFailed

    def __str__(self) -> str:
        return self.message


class ExpenseDecodeException(BaseStatusException):
    """Exception raised when a stored expense document has missing or malformed fields."""
    status = Status.ExpenseDecodeFailed

    def __init__(self, doc_id: str, fields: Iterable[str]):
        self.doc_id = doc_id
        self.fields = sorted(fields)
        super().__init__(f'Document "{doc_id}" has invalid fields: {", ".join(self.fields)}.')
