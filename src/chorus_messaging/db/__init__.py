"""Database helpers for Chorus Messaging."""
