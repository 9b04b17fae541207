"""Base64 content decoding and MIME type to file extension mapping."""

import base64
import binascii
import re
from typing import Dict, Optional

from fhir_documents.core.exceptions import MalformedContentError
from fhir_documents.healthcare.models import Attachment, BinaryPayload
from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_EXTENSION = ".bin"

CONTENT_TYPE_EXTENSIONS: Dict[str, str] = {
    # Images
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
    "image/tif": ".tif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    # Documents
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-powerpoint": ".ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
    "application/rtf": ".rtf",
    # Text
    "text/plain": ".txt",
    "text/html": ".html",
    "text/css": ".css",
    "text/javascript": ".js",
    "text/xml": ".xml",
    "text/csv": ".csv",
    "application/xml": ".xml",
    "application/json": ".json",
    "application/fhir+json": ".json",
    # Archives
    "application/zip": ".zip",
    "application/x-rar-compressed": ".rar",
    "application/x-7z-compressed": ".7z",
    # Media
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "video/mp4": ".mp4",
    "video/avi": ".avi",
    # Clinical
    "application/dicom": ".dcm",
    "text/hl7": ".hl7",
    "application/octet-stream": ".bin",
}

_WHITESPACE = re.compile(r"\s+")


def normalize_content_type(content_type: Optional[str]) -> Optional[str]:
    """Lowercase a MIME type and drop any parameters such as charset."""
    if not content_type or not content_type.strip():
        return None
    return content_type.split(";")[0].strip().lower() or None


def extension_for(content_type: Optional[str]) -> str:
    """Map a MIME type to a file extension, falling back to ``.bin``."""
    normalized = normalize_content_type(content_type)
    if normalized is None:
        return DEFAULT_EXTENSION
    extension = CONTENT_TYPE_EXTENSIONS.get(normalized)
    if extension is None:
        logger.debug("unknown_content_type", content_type=content_type)
        return DEFAULT_EXTENSION
    return extension


def decode(b64: Optional[str]) -> bytes:
    """Decode standard base64, tolerating embedded whitespace and newlines.

    Args:
        b64: Base64 text

    Returns:
        Decoded bytes

    Raises:
        MalformedContentError: If the input is missing or not valid base64
    """
    if b64 is None:
        raise MalformedContentError("Base64 content is missing")
    compact = _WHITESPACE.sub("", b64)
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedContentError(f"Invalid base64 content: {e}") from e


def decode_attachment(attachment: Attachment) -> BinaryPayload:
    """Decode the inline data of an embedded attachment."""
    data = decode(attachment.data)
    return BinaryPayload(
        data=data,
        content_type=attachment.content_type,
        filename=attachment.title,
    )
