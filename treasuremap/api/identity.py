"""Resolve the calling user. Authentication itself happens elsewhere."""

from __future__ import annotations

from typing import Optional

from flask import request

from treasuremap.app.container import get_identity_resolver


def current_username() -> Optional[str]:
    """Return the username behind the ``Authorization: Bearer`` header, if any."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return get_identity_resolver()(token.strip())
