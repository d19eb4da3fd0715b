"""Domain layer: mailbox enums and exceptions (no infrastructure imports)."""
