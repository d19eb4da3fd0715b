"""Email provider integration: adapters, OAuth refresh and credential encryption."""
