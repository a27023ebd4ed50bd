# src/chorus_messaging/schemas/__init__.py
"""Pydantic schemas for request and response payloads."""
