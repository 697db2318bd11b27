"""Domain Layer: models, events, errors and the interfaces (ports) the core depends on."""
