"""Module composition and lifecycle engine."""
