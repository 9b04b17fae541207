"""Core Exceptions Module.

This module defines the failure taxonomy of the document archive pipeline.
Every error carries an ``ErrorKind`` tag so callers can branch on the category
without inspecting class hierarchies, and a ``retryable`` flag consulted by the
retry policy.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure categories of the archive pipeline."""

    PROTOCOL_VIOLATION = "protocol_violation"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    INVALID = "invalid"
    VALIDATION = "validation"
    INFRASTRUCTURE = "infrastructure"


class DocumentArchiveError(Exception):
    """Base exception for all document archive errors."""

    kind: ErrorKind = ErrorKind.INFRASTRUCTURE
    retryable: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        """Initialize the error.

        Args:
            message: Human readable description
            status_code: HTTP status that caused the error, if any
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(DocumentArchiveError):
    """Raised when caller supplied arguments are invalid."""

    kind = ErrorKind.VALIDATION


class ProtocolViolationError(DocumentArchiveError):
    """Raised when the FHIR server returns something other than a searchset Bundle."""

    kind = ErrorKind.PROTOCOL_VIOLATION


class NotFoundError(DocumentArchiveError):
    """Raised when a referenced Binary does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, resource_id: Optional[str] = None):
        """Initialize the error with the missing resource id."""
        super().__init__(message, status_code=404)
        self.resource_id = resource_id


class TransientError(DocumentArchiveError):
    """Raised for throttling, server side and network failures."""

    kind = ErrorKind.TRANSIENT
    retryable = True


class InvalidContentError(DocumentArchiveError):
    """Raised when a response or attachment is unusable."""

    kind = ErrorKind.INVALID


class MalformedContentError(InvalidContentError):
    """Raised when base64 content cannot be decoded."""


class InfrastructureError(DocumentArchiveError):
    """Raised for unexpected failures outside the other categories."""

    kind = ErrorKind.INFRASTRUCTURE


class StorageError(InfrastructureError):
    """Raised when blob storage operations fail."""


def is_retryable(exc: BaseException) -> bool:
    """Return True when the exception should be retried."""
    return isinstance(exc, DocumentArchiveError) and exc.retryable


@dataclass(frozen=True)
class FailureRecord:
    """Outcome of a failed attachment archive unit."""

    kind: ErrorKind
    message: str
    document_reference_id: str
    attachment_index: int
    binary_id: Optional[str] = None

    @classmethod
    def from_error(
        cls,
        error: DocumentArchiveError,
        document_reference_id: str,
        attachment_index: int,
        binary_id: Optional[str] = None,
    ) -> "FailureRecord":
        """Build a failure record from a categorized error."""
        return cls(
            kind=error.kind,
            message=error.message,
            document_reference_id=document_reference_id,
            attachment_index=attachment_index,
            binary_id=binary_id,
        )
