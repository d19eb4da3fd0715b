"""External integrations."""
