"""Reconcile marketplace hit postings with locally tracked tasks."""

__version__ = "0.1.0"
