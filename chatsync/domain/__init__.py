"""Domain layer: models, stream events and the error hierarchy."""
