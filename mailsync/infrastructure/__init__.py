"""Infrastructure: persistence, provider adapters, messaging, orchestration services."""
