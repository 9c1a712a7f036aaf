"""Reproducible MANET scenario descriptor and lifecycle runner."""

__version__ = "0.1.0"
