"""Domain layer - library business logic built on the core layer."""
