# tests/v1/test_api_cors.py
"""CORS preflight coverage for the mutating endpoints."""

from __future__ import annotations

import pytest
from fastapi import status

from chorus_messaging.core.settings import Settings

ORIGIN = "https://app.chorus.example"


def test_default_cors_methods_include_patch() -> None:
    assert "PATCH" in Settings().cors_allow_methods


@pytest.mark.parametrize(
    "path",
    ["/api/v1/messages/abc", "/api/v1/conversations/dm_abc/state"],
)
def test_patch_preflight_is_allowed(client, path: str) -> None:
    response = client.options(
        path,
        headers={
            "Origin": ORIGIN,
            "Access-Control-Request-Method": "PATCH",
            "Access-Control-Request-Headers": "authorization,content-type",
        },
    )

    assert response.status_code == status.HTTP_200_OK
    assert "PATCH" in response.headers["access-control-allow-methods"]
