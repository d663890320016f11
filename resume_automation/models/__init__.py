"""Models — enums, record schemas and the builder session state."""
