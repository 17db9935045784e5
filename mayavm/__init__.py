"""Lifecycle manager for the Mayastor development/test VM."""

__version__ = '0.1.0'
