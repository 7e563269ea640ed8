"""Domain layer: entities and policies with no infrastructure dependencies."""
