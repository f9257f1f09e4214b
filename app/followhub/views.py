"""
Hand-off point to the view layer: handlers pass plain data, this module turns
it into a response body. No markup is produced here.
"""
from __future__ import annotations

from typing import Any

from flask import jsonify

from app.followhub.models import User


def serialize_user(user: User, *, include_email: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": user.id,
        "username": user.username,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
    if include_email:
        out["email"] = user.email
        out["updated_at"] = user.updated_at.isoformat() if user.updated_at else None
    return out


def render_view(view: str, status: int = 200, **context: Any):
    return jsonify({"view": view, **context}), status
