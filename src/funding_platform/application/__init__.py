"""Application layer: use cases composed from domain policies and repositories."""
