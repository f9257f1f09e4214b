from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from flask import Blueprint, Response, current_app, g, redirect, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.followhub.audit import record_event
from app.followhub.db import db_session
from app.followhub.errors import DuplicateConstraint, StorageFailure, Unauthorized, ValidationFailed
from app.followhub.models import User
from app.followhub.modules.accounts.service import authenticate_credentials, register
from app.followhub.sessions import (
    destroy_session,
    get_session,
    set_identity,
    sign_token,
    unsign_token,
)
from app.followhub.views import render_view

bp = Blueprint("auth", __name__)

TRY_AGAIN = "Something went wrong. Please try again."


def _cookie_name() -> str:
    return current_app.config["FOLLOWHUB_SESSION_COOKIE"]


def load_current_session() -> None:
    """
    Resolve the session cookie into g.session_state (None for anonymous,
    expired or deactivated sessions). Also assigns a per-request request_id for log correlation.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.session_state = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    raw = request.cookies.get(_cookie_name())
    if not raw:
        return
    token = unsign_token(raw, current_app.config["SECRET_KEY"])
    if not token:
        clear_session_cookie()
        return

    s = db_session()
    try:
        state = get_session(s, token)
        user = s.get(User, state.user_id) if state is not None and state.user_id is not None else None
    except SQLAlchemyError as e:
        current_app.logger.error("load_current_session DB error (request_id=%s): %s", g.request_id, e)
        s.rollback()
        return
    if state is None:
        # Expired or destroyed server-side: drop the stale client reference.
        clear_session_cookie()
        return
    if state.user_id is not None and (user is None or not user.is_active):
        destroy_session(s, token)
        clear_session_cookie()
        return
    g.session_state = state


def issue_session_cookie(token: str) -> None:
    g.session_cookie = ("set", token)


def clear_session_cookie() -> None:
    g.session_cookie = ("clear", None)


def apply_session_cookie(response: Response) -> Response:
    action = getattr(g, "session_cookie", None)
    if not action:
        return response
    kind, token = action
    cfg = current_app.config
    if kind == "set" and token:
        lifetime = timedelta(hours=int(cfg["FOLLOWHUB_SESSION_LIFETIME_HOURS"]))
        response.set_cookie(
            _cookie_name(),
            sign_token(token, cfg["SECRET_KEY"]),
            max_age=int(lifetime.total_seconds()),
            expires=datetime.utcnow() + lifetime,
            httponly=cfg.get("SESSION_COOKIE_HTTPONLY", True),
            samesite=cfg.get("SESSION_COOKIE_SAMESITE", "Lax"),
            secure=cfg.get("SESSION_COOKIE_SECURE", False),
        )
    else:
        response.delete_cookie(
            _cookie_name(),
            httponly=cfg.get("SESSION_COOKIE_HTTPONLY", True),
            samesite=cfg.get("SESSION_COOKIE_SAMESITE", "Lax"),
            secure=cfg.get("SESSION_COOKIE_SECURE", False),
        )
    return response


def _safe_next(nxt: str) -> str | None:
    # Only allow local paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


@bp.get("/register")
def register_get():
    return render_view("auth/register")


@bp.post("/register")
def register_post():
    username = (request.form.get("username") or "").strip()
    email = (request.form.get("email") or "").strip()
    password = request.form.get("password") or ""
    form = {"username": username, "email": email}

    s = db_session()
    try:
        register(s, username, email, password)
    except ValidationFailed as e:
        return render_view("auth/register", 400, errors=e.errors, form=form)
    except DuplicateConstraint as e:
        return render_view("auth/register", 409, errors=[e.message], fields=e.fields, form=form)
    except SQLAlchemyError:
        s.rollback()
        current_app.logger.exception("Register POST failed (request_id=%s)", g.request_id)
        return render_view("auth/register", 503, errors=[TRY_AGAIN], form=form)
    return redirect(url_for("auth.login_get", registered="true"))


@bp.get("/login")
def login_get():
    return render_view(
        "auth/login",
        registered=request.args.get("registered") == "true",
        reason=request.args.get("reason"),
        next=(request.args.get("next") or "").strip(),
    )


@bp.post("/login")
def login_post():
    identifier = (request.form.get("username") or request.form.get("email") or "").strip()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    form = {"username": identifier}

    s = db_session()
    try:
        user = authenticate_credentials(s, identifier, password)
    except Unauthorized as e:
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            metadata={"identifier": identifier},
        )
        try:
            s.commit()
        except SQLAlchemyError:
            s.rollback()
            current_app.logger.exception("Could not record failed login (request_id=%s)", g.request_id)
        return render_view("auth/login", 401, errors=[e.message], form=form)
    except SQLAlchemyError:
        s.rollback()
        current_app.logger.exception("Login POST failed (request_id=%s)", g.request_id)
        return render_view("auth/login", 503, errors=[TRY_AGAIN], form=form)

    # New token on every login; a pre-login token is never promoted.
    previous = getattr(g, "session_state", None)
    if previous is not None:
        destroy_session(s, previous.token)

    try:
        token = set_identity(s, None, user.id, user.username)
    except StorageFailure as e:
        current_app.logger.exception("Session save failed at login (request_id=%s)", g.request_id)
        return render_view("auth/login", 503, errors=[e.message], form=form)

    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    try:
        s.commit()
    except SQLAlchemyError:
        s.rollback()
        current_app.logger.exception("Could not record login event (request_id=%s)", g.request_id)

    issue_session_cookie(token)
    return redirect(_safe_next(nxt) or url_for("social_graph.users_list"))


@bp.get("/logout")
def logout():
    s = db_session()
    state = getattr(g, "session_state", None)
    if state is not None:
        if state.user_id is not None:
            record_event(s, actor=None, action="auth.logout", entity_type="User", entity_id=str(state.user_id))
        destroy_session(s, state.token)
    clear_session_cookie()
    return redirect(url_for("routes.index"))
