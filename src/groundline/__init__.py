"""Groundline - grounded answers with citations you can find again."""

__version__ = "0.1.0"
