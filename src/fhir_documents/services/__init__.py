"""Archive services."""
