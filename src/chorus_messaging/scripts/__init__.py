"""Operational scripts for Chorus Messaging."""
