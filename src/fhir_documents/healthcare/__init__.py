"""HealthLake FHIR document retrieval."""
