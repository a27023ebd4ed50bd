"""Chorus Messaging: conversations, delivery and message requests."""

__version__ = "0.1.0"
