from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from app.followhub.audit import record_event
from app.followhub.errors import DuplicateConstraint, NotFound, Unauthorized, ValidationFailed
from app.followhub.models import User
from app.followhub.passwords import hash_password, verify_password

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MAX_USERNAME_LENGTH = 64
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def normalize_username(value: str | None) -> str:
    return (value or "").strip()


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def _identity_errors(username: str, email: str) -> list[str]:
    errors = []
    if not username:
        errors.append("Username is required.")
    elif len(username) > MAX_USERNAME_LENGTH:
        errors.append(f"Username must be at most {MAX_USERNAME_LENGTH} characters.")
    elif is_valid_email(username):
        # Logins accept either field; a username shaped like an email would shadow one.
        errors.append("Username cannot be an email address.")
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Must be a valid email address.")
    return errors


def _new_password_errors(password: str, confirm: str | None) -> list[str]:
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if confirm is not None and password != confirm:
        errors.append("Passwords do not match.")
    return errors


def _duplicate_fields(s: "Session", username: str, email: str) -> list[str]:
    fields = []
    if s.query(User.id).filter(User.username == username).first() is not None:
        fields.append("username")
    if s.query(User.id).filter(User.email == email).first() is not None:
        fields.append("email")
    return fields


def find_by_id(s: "Session", user_id: int) -> User | None:
    return s.get(User, user_id)


def find_by_username_or_email(s: "Session", identifier: str | None) -> User | None:
    raw = (identifier or "").strip()
    if not raw:
        return None
    return (
        s.query(User)
        .filter((User.username == raw) | (User.email == raw.lower()))
        .order_by(User.id.asc())
        .first()
    )


def register(s: "Session", username: str | None, email: str | None, password: str | None) -> User:
    """
    Create a user. Raises ValidationFailed (all field problems at once) or a
    single DuplicateConstraint when the username and/or email is taken.
    Commits on success.
    """
    username = normalize_username(username)
    email = normalize_email(email)
    password = password or ""

    errors = _identity_errors(username, email)
    if not password:
        errors.append("Password is required.")
    else:
        errors.extend(_new_password_errors(password, None))
    if errors:
        raise ValidationFailed(errors)

    dupes = _duplicate_fields(s, username, email)
    if dupes:
        raise DuplicateConstraint(dupes)

    now = datetime.utcnow()
    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    try:
        s.flush()
    except IntegrityError as e:
        # Lost a race with a concurrent registration; the unique index is authoritative.
        s.rollback()
        raise DuplicateConstraint(_duplicate_fields(s, username, email) or ["username", "email"]) from e

    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    s.commit()
    logger.info("Registered user id=%s", user.id)
    return user


def authenticate_credentials(s: "Session", identifier: str | None, password: str | None) -> User:
    user = find_by_username_or_email(s, identifier)
    if not user or not user.is_active or not verify_password(user.password_hash, password or ""):
        raise Unauthorized()
    return user


def validate_profile_update(
    s: "Session",
    user: User,
    username: str,
    email: str,
    new_password: str,
    confirm_password: str,
) -> list[str]:
    """Collect every problem with a profile edit instead of stopping at the first."""
    errors = _identity_errors(username, email)

    if username and username != user.username:
        if s.query(User.id).filter(User.username == username, User.id != user.id).first() is not None:
            errors.append("Username is already taken.")
    if email and email != user.email:
        if s.query(User.id).filter(User.email == email, User.id != user.id).first() is not None:
            errors.append("Email is already taken.")

    if new_password or confirm_password:
        if not new_password or not confirm_password:
            errors.append("Enter the new password and its confirmation.")
        else:
            errors.extend(_new_password_errors(new_password, confirm_password))
    return errors


def update_profile(
    s: "Session",
    user: User,
    username: str | None,
    email: str | None,
    new_password: str | None = None,
    confirm_password: str | None = None,
) -> User:
    username = normalize_username(username)
    email = normalize_email(email)
    new_password = new_password or ""
    confirm_password = confirm_password or ""

    errors = validate_profile_update(s, user, username, email, new_password, confirm_password)
    if errors:
        raise ValidationFailed(errors)

    changes = []
    if username != user.username:
        changes.append("username")
        user.username = username
    if email != user.email:
        changes.append("email")
        user.email = email
    if new_password:
        changes.append("password")
        user.password_hash = hash_password(new_password)
    user.updated_at = datetime.utcnow()

    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise DuplicateConstraint(
            [f for f in changes if f in ("username", "email")],
            message="Username or email is already taken.",
        ) from e

    record_event(
        s,
        actor=user,
        action="user.update_profile",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"changed": changes},
    )
    s.commit()
    return user


def delete_user(s: "Session", user_id: int) -> None:
    """Hard delete. Follow edges and sessions go with it through ON DELETE CASCADE."""
    user = s.get(User, user_id)
    if not user:
        raise NotFound("User not found.")
    s.delete(user)
    s.commit()
    logger.info("Deleted user id=%s", user_id)
