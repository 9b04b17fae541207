"""Blob storage for archived documents."""
