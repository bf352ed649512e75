"""Domain models, protocols and polling primitives."""
