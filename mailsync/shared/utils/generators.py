"""ID generators (CUID2 primary keys, correlation ids)."""

from cuid2 import cuid_wrapper

cuid_generator = cuid_wrapper()


def generate_cuid() -> str:
    """Generate a collision-resistant unique identifier (CUID2).

    Returns:
        A new CUID string.
    """
    result = cuid_generator()
    if not isinstance(result, str):
        raise TypeError(
            f"Expected str from cuid_generator, got {type(result).__name__}"
        )
    return result


def generate_correlation_id(prefix: str = "sync") -> str:
    """Return a correlation id for a sync workflow (e.g. 'sync-<cuid>')."""
    return f"{prefix}-{generate_cuid()}"
