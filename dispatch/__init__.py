"""Ticket dispatch and derivation service."""

__version__ = "1.0.0"
