"""Extraction of S3 object tags from DocumentReference resources.

S3 tag values are limited to letters, numbers, spaces and ``+ - = . _ : / @``
and to 256 characters; anything else is replaced with an underscore.
"""

import re
from typing import Dict, Optional

from fhir_documents.healthcare.models import Attachment, DocumentReference, PracticeInfo
from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TAG_VALUE_LENGTH = 128
DOCUMENT_TYPE_TAG_LENGTH = 256

_INVALID_TAG_CHARS = re.compile(r"[^a-zA-Z0-9\+\-=\._:\/@\s]")


def sanitize_tag_value(
    value: Optional[str], max_length: int = DEFAULT_TAG_VALUE_LENGTH
) -> str:
    """Make a value acceptable as an S3 tag value."""
    if not value:
        return "unknown"
    sanitized = _INVALID_TAG_CHARS.sub("_", value).strip()
    if len(sanitized) > max_length:
        sanitized = sanitized[: max_length - 3] + "..."
    return sanitized or "unknown"


class MetadataExtractor:
    """Maps DocumentReference fields to the tag set stored with each object."""

    def document_type(self, document: DocumentReference) -> Optional[str]:
        """``Display(Code)`` for every type coding, joined with ``:``."""
        if not document.type or not document.type.coding:
            return None
        entries = []
        for coding in document.type.coding:
            if coding.display and coding.code:
                entries.append(f"{coding.display}({coding.code})")
            elif coding.display or coding.code:
                entries.append(coding.display or coding.code)
        return ":".join(entries) or None

    def document_category(self, document: DocumentReference) -> Optional[str]:
        """First category code; extra categories are logged and ignored."""
        codes = [
            coding.code
            for category in document.category
            for coding in category.coding
            if coding.code
        ]
        if not codes:
            return None
        if len(codes) > 1:
            logger.warning(
                "multiple_document_categories",
                document_reference_id=document.id,
                categories=codes,
            )
        return codes[0]

    def encounter_reference(self, document: DocumentReference) -> Optional[str]:
        if not document.context:
            return None
        references = [e.reference for e in document.context.encounter if e.reference]
        return references[0] if references else None

    def extract_tags(
        self,
        document: DocumentReference,
        attachment: Optional[Attachment] = None,
        practice: Optional[PracticeInfo] = None,
    ) -> Dict[str, str]:
        """Build the S3 tag set for one attachment of a document.

        Args:
            document: Source DocumentReference
            attachment: Attachment being archived; adds ``binary.id`` when it
                references a Binary
            practice: Resolved practice overriding the one in the extension

        Returns:
            Tag key to sanitized value
        """
        tags: Dict[str, str] = {}

        document_type = self.document_type(document)
        if document_type:
            tags["document.type"] = sanitize_tag_value(
                document_type, DOCUMENT_TYPE_TAG_LENGTH
            )

        encounter = self.encounter_reference(document)
        if encounter:
            tags["encounter.reference"] = sanitize_tag_value(encounter)

        if document.meta and (document.meta.last_updated or document.meta.version_id):
            version = document.meta.version_id or ""
            if version and not version.lower().startswith("v"):
                version = f"v{version}"
            tags["meta"] = sanitize_tag_value(
                f"{document.meta.last_updated or ''}|{version}"
            )

        if document.status:
            tags["status"] = sanitize_tag_value(document.status)

        if document.date:
            tags["documentreference.date"] = sanitize_tag_value(document.date)

        tags["documentreference.id"] = sanitize_tag_value(
            f"DocumentReference/{document.id}"
        )

        if document.patient_id:
            tags["patient.id"] = sanitize_tag_value(document.patient_id)

        practice = practice or document.practice_info()
        if practice:
            value = f"{practice.id} {practice.name}" if practice.name else practice.id
            tags["practice.id"] = sanitize_tag_value(value)

        if attachment is not None and attachment.binary_id:
            tags["binary.id"] = sanitize_tag_value(f"Binary/{attachment.binary_id}")

        logger.debug(
            "s3_tags_extracted", document_reference_id=document.id, tag_count=len(tags)
        )
        return tags
