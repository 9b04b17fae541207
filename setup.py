#!/usr/bin/env python
"""Setup configuration for FHIR Document Archive."""

from setuptools import find_packages, setup

setup(
    name="fhir-document-archive",
    version="0.1.0",
    description="Archive patient documents from AWS HealthLake to S3",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "boto3>=1.29.7",
        "botocore>=1.32.7",
        "pydantic>=2.5.0",
        "httpx>=0.25.0",
        "tenacity>=8.2.0",
        "pydantic-settings>=2.0.0",
        "structlog>=23.2.0",
        "click>=8.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fhir-documents=fhir_documents.main:main",
        ],
    },
)
