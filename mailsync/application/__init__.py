"""Application layer: DTOs and pure services (no database or network access)."""
