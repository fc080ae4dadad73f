"""Declarative analytics query engine with cached execution and export jobs."""

__version__ = "0.1.0"
