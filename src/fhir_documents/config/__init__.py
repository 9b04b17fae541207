"""Configuration module for FHIR Document Archive."""

from fhir_documents.config.base import Settings
from fhir_documents.config.loader import get_settings

__all__ = ["Settings", "get_settings"]
