from __future__ import annotations

from flask import current_app, has_app_context
from werkzeug.security import check_password_hash, generate_password_hash

DEFAULT_METHOD = "scrypt:32768:8:1"
SALT_LENGTH = 16


def _method() -> str:
    if has_app_context():
        return current_app.config.get("PASSWORD_HASH_METHOD") or DEFAULT_METHOD
    return DEFAULT_METHOD


def hash_password(plain: str) -> str:
    """Salted one-way hash; the result embeds method, cost and salt (`method$salt$hash`)."""
    if not plain:
        raise ValueError("Password is empty")
    return generate_password_hash(plain, method=_method(), salt_length=SALT_LENGTH)


def verify_password(password_hash: str, plain: str) -> bool:
    if not password_hash or not plain:
        return False
    try:
        return check_password_hash(password_hash, plain)
    except (ValueError, TypeError):
        # Malformed or unknown hash format.
        return False
