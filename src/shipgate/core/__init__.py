"""Core models and runtime helpers shared across shipgate."""
