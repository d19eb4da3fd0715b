"""Persistence: async SQLAlchemy engine, ORM models and repositories."""
