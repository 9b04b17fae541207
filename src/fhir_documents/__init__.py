"""FHIR Document Archive.

Retrieves a patient's DocumentReference attachments from AWS HealthLake and
archives the decoded payloads to S3.
"""

__version__ = "0.1.0"
