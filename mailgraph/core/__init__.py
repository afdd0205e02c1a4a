"""Core infrastructure: settings, database engine, ORM models and batch statistics."""
