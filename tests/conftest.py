"""Test configuration for the FHIR Document Archive project.

Configures an isolated environment so that tests never pick up real AWS
credentials or a developer's .env file, and provides shared fixtures for the
HealthLake client, the not-found tracker and S3.
"""

import os
from typing import Callable
from unittest.mock import MagicMock

import httpx
import pytest

from fhir_documents.healthcare.healthlake_http import HealthLakeHttpClient
from fhir_documents.healthcare.not_found_tracker import NotFoundTracker
from tests.helpers import BASE_URL

# Set testing environment BEFORE any settings are loaded
os.environ["ENVIRONMENT"] = "testing"
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "phi: mark test as exercising PHI-bearing data paths"
    )


@pytest.fixture
def make_http() -> Callable[..., HealthLakeHttpClient]:
    """Build an unsigned HealthLake client backed by an httpx mock transport."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response]
    ) -> HealthLakeHttpClient:
        return HealthLakeHttpClient(
            BASE_URL,
            "us-east-1",
            sign_requests=False,
            transport=httpx.MockTransport(handler),
        )

    return factory


@pytest.fixture
def not_found_tracker(tmp_path) -> NotFoundTracker:
    """Tracker writing into a per-test directory."""
    return NotFoundTracker(str(tmp_path))


@pytest.fixture
def s3_client() -> MagicMock:
    """S3 client double returning well-formed responses."""
    client = MagicMock()
    client.put_object.return_value = {"ETag": '"single-etag"'}
    client.create_multipart_upload.return_value = {"UploadId": "upload-1"}
    client.upload_part.side_effect = lambda **kwargs: {
        "ETag": f'"part-{kwargs["PartNumber"]}"'
    }
    client.complete_multipart_upload.return_value = {"ETag": '"multipart-etag"'}
    client.abort_multipart_upload.return_value = {}
    client.delete_object.return_value = {}
    return client
