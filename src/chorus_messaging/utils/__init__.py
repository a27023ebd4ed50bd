"""Utility helpers for Chorus Messaging."""
