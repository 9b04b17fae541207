"""Base configuration settings.

Note: The archive bucket and the not-found log hold PHI identifiers and
must be access controlled.
"""

import math
import os
from typing import Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024

# S3 rejects multipart parts smaller than this, except the last one
MIN_MULTIPART_PART_SIZE = 5 * MIB


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=[".env", ".env.aws"],
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    # Application
    app_name: str = "FHIR Document Archive"
    app_version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"

    # AWS
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_session_token: Optional[str] = None

    # HealthLake
    healthlake_datastore_id: Optional[str] = Field(
        default=None, description="AWS HealthLake FHIR datastore ID"
    )
    healthlake_base_url: Optional[str] = Field(
        default=None,
        description="Full FHIR base URL; overrides the URL derived from region and datastore",
    )
    http_timeout_seconds: float = 30.0

    # Archive destination
    s3_bucket_name: Optional[str] = None
    s3_key_prefix: str = "documents"
    s3_storage_class: str = "STANDARD_IA"
    s3_server_side_encryption: str = "AES256"
    multipart_threshold_bytes: int = 100 * MIB
    multipart_part_size_bytes: int = 10 * MIB

    # Throughput control
    max_concurrent_downloads: int = 10
    rate_limit_calls_per_second: float = 10.0
    rate_limit_burst: Optional[int] = None

    # Retry
    retry_max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    retry_use_jitter: bool = True

    # Not-found bookkeeping
    not_found_log_dir: str = Field(
        default_factory=lambda: os.path.join(os.getcwd(), "logs"),
        description="Directory for not_found_binaries_*.csv logs",
    )

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only json and console renderers are available."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {v!r}")
        return v

    @field_validator("s3_storage_class")
    @classmethod
    def validate_storage_class(cls, v: str) -> str:
        """Validate the S3 storage class name."""
        valid_storage_classes = [
            "STANDARD",
            "REDUCED_REDUNDANCY",
            "STANDARD_IA",
            "ONEZONE_IA",
            "INTELLIGENT_TIERING",
            "GLACIER",
            "DEEP_ARCHIVE",
        ]
        if v not in valid_storage_classes:
            raise ValueError(f"Invalid storage class: {v}")
        return v

    @field_validator("multipart_part_size_bytes")
    @classmethod
    def validate_part_size(cls, v: int) -> int:
        """Multipart parts must satisfy the S3 minimum."""
        if v < MIN_MULTIPART_PART_SIZE:
            raise ValueError(
                f"multipart_part_size_bytes must be at least {MIN_MULTIPART_PART_SIZE}"
            )
        return v

    @field_validator(
        "multipart_threshold_bytes",
        "max_concurrent_downloads",
        "rate_limit_calls_per_second",
        "http_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float, info: ValidationInfo) -> float:
        """Validate that sizing and throughput settings are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("retry_max_retries", "retry_base_delay_ms", "retry_max_delay_ms")
    @classmethod
    def validate_non_negative(cls, v: int, info: ValidationInfo) -> int:
        """Validate that retry settings are not negative."""
        if v < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return v

    @property
    def fhir_base_url(self) -> str:
        """FHIR R4 base URL of the HealthLake datastore."""
        if self.healthlake_base_url:
            return self.healthlake_base_url.rstrip("/")
        if not self.healthlake_datastore_id:
            raise ValueError(
                "Either healthlake_base_url or healthlake_datastore_id must be set"
            )
        return (
            f"https://healthlake.{self.aws_region}.amazonaws.com"
            f"/datastore/{self.healthlake_datastore_id}/r4"
        )

    @property
    def effective_rate_limit_burst(self) -> int:
        """Token bucket capacity; defaults to two seconds of traffic."""
        if self.rate_limit_burst:
            return self.rate_limit_burst
        return max(1, math.ceil(self.rate_limit_calls_per_second * 2))
