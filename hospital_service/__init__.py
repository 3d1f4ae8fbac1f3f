"""Hospital-facing consent and authorization service."""
