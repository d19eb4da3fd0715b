"""Small pure utilities (datetimes, identifiers)."""
