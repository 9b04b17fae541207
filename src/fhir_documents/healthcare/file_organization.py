"""File naming and S3 key layout for archived documents.

Keys follow ``{prefix}/{practice folder}/{patient id}/{file name}`` where the
file name is ``{document reference id}-{attachment index}[-{label}]{extension}``.
"""

import os
import re
from typing import Optional

from fhir_documents.core.exceptions import ValidationError
from fhir_documents.healthcare.content_decoder import (
    extension_for,
    normalize_content_type,
)
from fhir_documents.healthcare.models import PracticeInfo
from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)

UNASSIGNED_PRACTICE_FOLDER = "unassigned"
MAX_FILENAME_LENGTH = 100

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_MULTIPLE_SPACES = re.compile(r"\s+")


def sanitize_filename(name: Optional[str]) -> str:
    """Make a string safe to use as a file or key segment."""
    if not name or not name.strip():
        return "unknown"
    sanitized = _INVALID_FILENAME_CHARS.sub("_", name)
    sanitized = _MULTIPLE_SPACES.sub(" ", sanitized).strip()
    sanitized = sanitized[:MAX_FILENAME_LENGTH].strip()
    return sanitized or "unknown"


def type_hint(content_type: Optional[str]) -> str:
    """Coarse label for a MIME type, used when no title is available."""
    normalized = normalize_content_type(content_type) or ""
    if normalized.startswith("image/"):
        return "image"
    if normalized.startswith("text/"):
        return "text"
    if normalized == "application/pdf":
        return "pdf"
    if "word" in normalized:
        return "document"
    if "excel" in normalized or "spreadsheet" in normalized:
        return "spreadsheet"
    return "file"


class FileOrganizer:
    """Builds file names and object keys for archived attachments."""

    def __init__(self, key_prefix: Optional[str] = None):
        """Initialize organizer.

        Args:
            key_prefix: Prefix prepended to every key
        """
        self.key_prefix = key_prefix

    @staticmethod
    def _require(value: Optional[str], field_name: str) -> str:
        if not value or not value.strip():
            raise ValidationError(f"{field_name} cannot be null or empty")
        return value

    def embedded_file_name(
        self, document_reference_id: str, index: int, content_type: Optional[str]
    ) -> str:
        """File name for inline base64 content."""
        self._require(document_reference_id, "Document reference ID")
        return f"{document_reference_id}-{index}{extension_for(content_type)}"

    def binary_file_name(
        self,
        document_reference_id: str,
        index: int,
        content_type: Optional[str],
        original_name: Optional[str] = None,
    ) -> str:
        """File name for content fetched from a Binary.

        The original name (attachment title or Content-Disposition file name)
        is used without its extension when present, otherwise a type hint.
        """
        self._require(document_reference_id, "Document reference ID")
        if original_name and original_name.strip():
            label = sanitize_filename(os.path.splitext(original_name.strip())[0])
        else:
            label = type_hint(content_type)
        return f"{document_reference_id}-{index}-{label}{extension_for(content_type)}"

    def object_key(
        self,
        practice: Optional[PracticeInfo],
        patient_id: str,
        file_name: str,
        key_prefix: Optional[str] = None,
    ) -> str:
        """Object key for a file.

        Args:
            practice: Owning practice; ``unassigned`` folder when unknown
            patient_id: Patient the document belongs to
            file_name: Name produced by one of the file name builders
            key_prefix: Overrides the organizer's prefix for this key
        """
        self._require(patient_id, "Patient ID")
        self._require(file_name, "File name")

        folder = (
            sanitize_filename(practice.folder_name)
            if practice
            else UNASSIGNED_PRACTICE_FOLDER
        )
        parts = [folder, sanitize_filename(patient_id), file_name]

        prefix = key_prefix if key_prefix is not None else self.key_prefix
        if prefix and prefix.strip("/"):
            parts.insert(0, prefix.strip("/"))

        key = "/".join(parts)
        logger.debug("object_key_generated", key=key)
        return key
