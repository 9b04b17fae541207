"""Tests for base64 decoding and MIME type mapping."""

import base64
import os

import pytest

from fhir_documents.core.exceptions import ErrorKind, MalformedContentError
from fhir_documents.healthcare.content_decoder import (
    decode,
    decode_attachment,
    extension_for,
)
from fhir_documents.healthcare.models import Attachment


class TestDecode:
    """Test base64 decoding."""

    @pytest.mark.parametrize(
        "raw", [b"", b"\x00", b"hello world", bytes(range(256)), os.urandom(4099)]
    )
    def test_decodes_encoded_bytes(self, raw):
        assert decode(base64.b64encode(raw).decode()) == raw

    def test_tolerates_line_wrapped_input(self):
        raw = os.urandom(300)
        wrapped = base64.encodebytes(raw).decode()
        assert "\n" in wrapped
        assert decode(wrapped) == raw

    @pytest.mark.parametrize("bad", ["not-base64!!", "abc", "YW=Jj", "????"])
    def test_rejects_malformed_input(self, bad):
        with pytest.raises(MalformedContentError) as exc_info:
            decode(bad)
        assert exc_info.value.kind is ErrorKind.INVALID

    @pytest.mark.parametrize("empty", ["", "   \n"])
    def test_empty_input_decodes_to_empty_bytes(self, empty):
        assert decode(empty) == b""

    def test_rejects_missing_input(self):
        with pytest.raises(MalformedContentError):
            decode(None)

    def test_decode_attachment_keeps_declared_type_and_title(self):
        attachment = Attachment(
            contentType="text/plain; charset=utf-8",
            data=base64.b64encode(b"note").decode(),
            title="Visit note",
        )

        payload = decode_attachment(attachment)

        assert payload.data == b"note"
        assert payload.size == 4
        assert payload.content_type == "text/plain; charset=utf-8"
        assert payload.filename == "Visit note"


class TestExtensionFor:
    """Test MIME type to extension mapping."""

    @pytest.mark.parametrize(
        "content_type, extension",
        [
            ("application/pdf", ".pdf"),
            ("image/jpeg", ".jpg"),
            ("image/png", ".png"),
            ("image/tiff", ".tiff"),
            ("text/plain", ".txt"),
            ("text/html", ".html"),
            ("text/xml", ".xml"),
            ("application/xml", ".xml"),
            ("application/json", ".json"),
            ("application/fhir+json", ".json"),
            ("application/msword", ".doc"),
            (
                "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
                ".docx",
            ),
            ("application/dicom", ".dcm"),
            ("text/hl7", ".hl7"),
            ("application/zip", ".zip"),
            ("audio/mpeg", ".mp3"),
            ("application/octet-stream", ".bin"),
        ],
    )
    def test_known_types(self, content_type, extension):
        assert extension_for(content_type) == extension

    def test_is_case_insensitive_and_ignores_parameters(self):
        assert extension_for("Text/HTML; charset=UTF-8") == ".html"
        assert extension_for("  APPLICATION/PDF ") == ".pdf"

    @pytest.mark.parametrize(
        "content_type", [None, "", "   ", "application/x-unknown", "garbage"]
    )
    def test_unknown_or_absent_types_fall_back(self, content_type):
        assert extension_for(content_type) == ".bin"
