from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import g, redirect, request, url_for

from app.followhub.sessions import SessionState

AUTH_REQUIRED = "auth_required"


@dataclass(frozen=True)
class Allow:
    user_id: int
    username: str | None
    session_token: str


@dataclass(frozen=True)
class Deny:
    reason: str = AUTH_REQUIRED


def authenticate(state: SessionState | None) -> Allow | Deny:
    """Admit only live, authenticated sessions. Pure: reads state, changes nothing."""
    if state is None or not state.is_authenticated:
        return Deny()
    return Allow(user_id=state.user_id, username=state.username, session_token=state.token)  # type: ignore[arg-type]


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Guard a handler with the auth gate. Admitted handlers receive the
    identity explicitly as the `identity` keyword argument.
    """

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        decision = authenticate(getattr(g, "session_state", None))
        if isinstance(decision, Deny):
            nxt = None
            if request.method == "GET":
                nxt = request.full_path or request.path
                # Avoid trailing '?' from full_path when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
            return redirect(url_for("auth.login_get", reason=decision.reason, next=nxt))
        return fn(*args, identity=decision, **kwargs)

    return wrapped
