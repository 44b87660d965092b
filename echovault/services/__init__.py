"""Core journaling services."""
