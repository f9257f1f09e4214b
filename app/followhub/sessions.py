"""
Server-side sessions stored in the `sessions` table.

Lifecycle: guest (row without user_id) -> authenticated (user_id + username in
the payload) -> terminated (row deleted or past `expires`). Rows are only
written when a value is stored, so untouched requests never create one.

The client only ever sees the opaque `sid`, signed with SECRET_KEY.
Session payloads and tokens are never logged.
"""
from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from flask import current_app, has_app_context
from itsdangerous import BadSignature, URLSafeSerializer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.followhub.errors import StorageFailure
from app.followhub.models import SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_LIFETIME = timedelta(hours=24)
TOKEN_BYTES = 32
COOKIE_SALT = "followhub.session.v1"


@dataclass(frozen=True)
class SessionState:
    token: str
    user_id: int | None
    username: str | None
    expires: datetime | None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


def _lifetime() -> timedelta:
    if has_app_context():
        hours = current_app.config.get("FOLLOWHUB_SESSION_LIFETIME_HOURS")
        if hours:
            return timedelta(hours=int(hours))
    return DEFAULT_LIFETIME


def _decode(row: SessionRecord) -> dict[str, Any] | None:
    if not row.data:
        return {}
    try:
        data = json.loads(row.data)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _is_live(row: SessionRecord, now: datetime) -> bool:
    return row.expires is not None and row.expires > now


def _commit(s: Session) -> None:
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        raise StorageFailure() from e


def _live_row(s: Session, token: str | None, now: datetime) -> SessionRecord | None:
    if not token:
        return None
    row = s.get(SessionRecord, token)
    if row is None or not _is_live(row, now):
        return None
    return row


# ---------------------------------------------------------------------------
# Cookie signing
# ---------------------------------------------------------------------------

def _serializer(secret_key: str) -> URLSafeSerializer:
    return URLSafeSerializer(secret_key=secret_key, salt=COOKIE_SALT)


def sign_token(token: str, secret_key: str) -> str:
    return _serializer(secret_key).dumps(token)


def unsign_token(raw: str | None, secret_key: str) -> str | None:
    if not raw:
        return None
    try:
        token = _serializer(secret_key).loads(raw)
    except BadSignature:
        return None
    return token if isinstance(token, str) and token else None


# ---------------------------------------------------------------------------
# Session operations
# ---------------------------------------------------------------------------

def create_session(s: Session, *, now: datetime | None = None) -> SessionRecord:
    """Add a fresh guest row. Callers store a value in it right away."""
    now = now or datetime.utcnow()
    row = SessionRecord(
        sid=secrets.token_urlsafe(TOKEN_BYTES),
        user_id=None,
        expires=now + _lifetime(),
        data="{}",
        created_at=now,
        updated_at=now,
    )
    s.add(row)
    s.flush()
    return row


def get_session(s: Session, token: str | None, *, now: datetime | None = None) -> SessionState | None:
    """Return the live state for `token`, or None when missing, expired or unreadable."""
    now = now or datetime.utcnow()
    row = _live_row(s, token, now)
    if row is None:
        return None
    data = _decode(row)
    if data is None:
        logger.warning("Discarding session with unreadable payload")
        return None
    return SessionState(
        token=row.sid,
        user_id=row.user_id,
        username=data.get("username") if row.user_id is not None else None,
        expires=row.expires,
        data=data,
    )


def set_identity(s: Session, token: str | None, user_id: int, username: str) -> str:
    """
    Mark the session authenticated and persist it before returning.

    Raises StorageFailure when the row could not be saved; the caller must not
    treat the user as logged in (or redirect) in that case.
    """
    now = datetime.utcnow()
    row = _live_row(s, token, now) or create_session(s, now=now)
    data = _decode(row) or {}
    data.update({"user_id": user_id, "username": username})
    row.user_id = user_id
    row.data = json.dumps(data, sort_keys=True)
    row.updated_at = now
    row.expires = now + _lifetime()
    _commit(s)
    return row.sid


def destroy_session(s: Session, token: str | None) -> bool:
    """
    Delete the session row. Storage errors are logged, not raised: the caller
    clears the client cookie either way. Returns True when the delete was committed.
    """
    if not token:
        return True
    try:
        s.query(SessionRecord).filter(SessionRecord.sid == token).delete(synchronize_session=False)
        s.commit()
        return True
    except SQLAlchemyError:
        s.rollback()
        logger.exception("Session destroy failed; client cookie is cleared anyway")
        return False


def purge_expired_sessions(s: Session, *, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    removed = (
        s.query(SessionRecord)
        .filter((SessionRecord.expires.is_(None)) | (SessionRecord.expires <= now))
        .delete(synchronize_session=False)
    )
    s.commit()
    if removed:
        logger.info("Purged %s expired sessions", removed)
    return removed
