"""Domain Layer: models, errors, interfaces and events with no I/O."""
