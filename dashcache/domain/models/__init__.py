"""Domain models: value objects and records shared across bounded contexts."""
