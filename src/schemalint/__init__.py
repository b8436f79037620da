"""Schemalint: data-driven lint rules for relational database schemas."""

__version__ = "0.1.0"
