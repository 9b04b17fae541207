"""FHIR Document Archive test suite."""
