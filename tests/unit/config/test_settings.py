"""Tests for application settings."""

import pytest
from pydantic import ValidationError

from fhir_documents.config.base import MIB, Settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults():
    settings = make_settings()

    assert settings.multipart_threshold_bytes == 100 * MIB
    assert settings.multipart_part_size_bytes == 10 * MIB
    assert settings.max_concurrent_downloads == 10
    assert settings.retry_max_retries == 3
    assert settings.retry_base_delay_ms == 1000
    assert settings.retry_max_delay_ms == 30000
    assert settings.retry_use_jitter is True
    assert settings.s3_storage_class == "STANDARD_IA"


def test_fhir_base_url_from_region_and_datastore():
    settings = make_settings(aws_region="eu-west-1", healthlake_datastore_id="ds-9")

    assert settings.fhir_base_url == (
        "https://healthlake.eu-west-1.amazonaws.com/datastore/ds-9/r4"
    )


def test_fhir_base_url_override():
    settings = make_settings(healthlake_base_url="http://localhost:8080/fhir/")
    assert settings.fhir_base_url == "http://localhost:8080/fhir"


def test_fhir_base_url_requires_datastore(monkeypatch):
    monkeypatch.delenv("HEALTHLAKE_DATASTORE_ID", raising=False)
    monkeypatch.delenv("HEALTHLAKE_BASE_URL", raising=False)

    with pytest.raises(ValueError):
        _ = make_settings().fhir_base_url


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("MAX_CONCURRENT_DOWNLOADS", "4")
    monkeypatch.setenv("RETRY_USE_JITTER", "false")
    monkeypatch.setenv("S3_BUCKET_NAME", "archive-bucket")

    settings = make_settings()

    assert settings.max_concurrent_downloads == 4
    assert settings.retry_use_jitter is False
    assert settings.s3_bucket_name == "archive-bucket"


def test_rate_limit_burst():
    assert make_settings(rate_limit_calls_per_second=2.5).effective_rate_limit_burst == 5
    assert make_settings(rate_limit_burst=7).effective_rate_limit_burst == 7


@pytest.mark.parametrize(
    "overrides",
    [
        {"multipart_part_size_bytes": 4 * MIB},
        {"multipart_threshold_bytes": 0},
        {"max_concurrent_downloads": 0},
        {"rate_limit_calls_per_second": -1},
        {"retry_max_retries": -1},
        {"s3_storage_class": "COLD"},
        {"log_format": "xml"},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        make_settings(**overrides)


def test_log_format_is_case_insensitive():
    assert make_settings(log_format="JSON").log_format == "json"
