"""Marksync: bookmark synchronization through a central store."""

__version__ = "0.1.0"
