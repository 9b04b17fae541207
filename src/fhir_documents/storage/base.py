"""Base storage abstraction layer.

Note: Archived objects are clinical documents (PHI).
- Access Control: Restrict the archive bucket to the archive role
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from fhir_documents.core.exceptions import ValidationError

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one successful upload."""

    object_id: str
    key: str
    size: int
    content_type: str
    etag: Optional[str]
    duration: float
    used_multipart: bool


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata of a stored object."""

    key: str
    size: int
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


def validate_location(bucket: Optional[str], key: Optional[str]) -> None:
    """Reject blank bucket names and keys before any network call."""
    if not bucket or not bucket.strip():
        raise ValidationError("Bucket name cannot be null or empty")
    if not key or not key.strip():
        raise ValidationError("Object key cannot be null or empty")


class BlobStore(ABC):
    """Abstract base class for archive storage backends."""

    @abstractmethod
    async def exists(self, bucket: str, key: str) -> bool:
        """Check if an object exists; a missing object is not an error."""

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> UploadResult:
        """Store bytes under the key, overwriting any existing object."""

    @abstractmethod
    async def metadata(self, bucket: str, key: str) -> Optional[ObjectInfo]:
        """Get object metadata, or None when the object does not exist."""

    @abstractmethod
    async def delete(self, bucket: str, key: str) -> bool:
        """Delete an object; failures are reported as False."""
