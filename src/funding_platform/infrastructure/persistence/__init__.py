"""Persistence layer: connection pool, schema models and repositories."""
