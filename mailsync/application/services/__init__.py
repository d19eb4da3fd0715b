"""Pure application services: folder taxonomy, error classification, scheduling policy."""
