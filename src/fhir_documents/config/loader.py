"""Configuration loader."""

from functools import lru_cache

from fhir_documents.config.base import Settings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
