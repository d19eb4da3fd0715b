"""Core wiring: settings, lifespan and exception handlers."""
