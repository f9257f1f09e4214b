"""Tests for registration, credential lookup and profile updates."""
import pytest

from app.followhub import create_app
from app.followhub.db import session_scope
from app.followhub.errors import DuplicateConstraint, NotFound, Unauthorized, ValidationFailed
from app.followhub.models import AuditEvent, Base, User
from app.followhub.modules.accounts import service as accounts_service
from app.followhub.modules.accounts.service import (
    authenticate_credentials,
    delete_user,
    find_by_id,
    find_by_username_or_email,
    register,
    update_profile,
)
from app.followhub.passwords import verify_password


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("PASSWORD_HASH_METHOD", "pbkdf2:sha256:1000")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with app.app_context():
        yield app


@pytest.fixture()
def s(app):
    with session_scope(app) as session:
        yield session


class TestRegister:
    def test_register_hashes_password(self, s):
        user = register(s, "  alice ", "Alice@X.com", "secret1")
        assert user.id is not None
        assert user.username == "alice"
        assert user.email == "alice@x.com"
        assert user.password_hash != "secret1"
        assert verify_password(user.password_hash, "secret1")
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.register").count() == 1

    def test_duplicate_username(self, s):
        register(s, "alice", "alice@x.com", "secret1")
        with pytest.raises(DuplicateConstraint) as exc:
            register(s, "alice", "other@x.com", "secret1")
        assert exc.value.fields == ["username"]

    def test_duplicate_email(self, s):
        register(s, "alice", "alice@x.com", "secret1")
        with pytest.raises(DuplicateConstraint) as exc:
            register(s, "alice2", "ALICE@x.com", "secret1")
        assert exc.value.fields == ["email"]

    def test_both_duplicates_report_one_error(self, s):
        register(s, "alice", "alice@x.com", "secret1")
        with pytest.raises(DuplicateConstraint) as exc:
            register(s, "alice", "alice@x.com", "secret1")
        assert exc.value.fields == ["username", "email"]
        assert exc.value.message == "Username or email already exists."
        assert s.query(User).count() == 1

    def test_validation_collects_all_errors(self, s):
        with pytest.raises(ValidationFailed) as exc:
            register(s, "", "", "")
        assert exc.value.errors == [
            "Username is required.",
            "Email is required.",
            "Password is required.",
        ]

    def test_invalid_email_and_short_password(self, s):
        with pytest.raises(ValidationFailed) as exc:
            register(s, "bob", "bob-at-example", "12345")
        assert "Must be a valid email address." in exc.value.errors
        assert "Password must be at least 6 characters." in exc.value.errors

    def test_username_shaped_like_email_is_rejected(self, s):
        register(s, "alice", "alice@x.com", "secret1")
        with pytest.raises(ValidationFailed) as exc:
            register(s, "alice@x.com", "mallory@x.com", "secret1")
        assert exc.value.errors == ["Username cannot be an email address."]
        assert find_by_username_or_email(s, "alice@x.com").username == "alice"

    def test_insert_race_reports_duplicate(self, s, monkeypatch):
        register(s, "alice", "alice@x.com", "secret1")
        real_check = accounts_service._duplicate_fields
        calls = []

        def stale_check(session, username, email):
            # The first pre-check misses the row, as if it landed right after.
            calls.append(username)
            return [] if len(calls) == 1 else real_check(session, username, email)

        monkeypatch.setattr(accounts_service, "_duplicate_fields", stale_check)
        with pytest.raises(DuplicateConstraint) as exc:
            register(s, "alice", "other@x.com", "secret1")
        assert exc.value.fields == ["username"]
        assert len(calls) == 2
        assert s.query(User).count() == 1


class TestLookup:
    def test_find_by_username_or_email(self, s):
        user = register(s, "alice", "alice@x.com", "secret1")
        assert find_by_username_or_email(s, "alice").id == user.id
        assert find_by_username_or_email(s, "ALICE@X.COM").id == user.id
        assert find_by_username_or_email(s, "nobody") is None
        assert find_by_username_or_email(s, "") is None
        assert find_by_id(s, user.id).username == "alice"
        assert find_by_id(s, 9999) is None

    def test_authenticate_credentials(self, s):
        user = register(s, "alice", "alice@x.com", "secret1")
        assert authenticate_credentials(s, "alice", "secret1").id == user.id
        with pytest.raises(Unauthorized):
            authenticate_credentials(s, "alice", "wrong")
        with pytest.raises(Unauthorized):
            authenticate_credentials(s, "ghost", "secret1")

    def test_inactive_user_cannot_authenticate(self, s):
        user = register(s, "alice", "alice@x.com", "secret1")
        user.is_active = False
        s.commit()
        with pytest.raises(Unauthorized):
            authenticate_credentials(s, "alice", "secret1")


class TestUpdateProfile:
    def test_unchanged_values_do_not_collide_with_self(self, s):
        user = register(s, "alice", "alice@x.com", "secret1")
        updated = update_profile(s, user, "alice", "alice@x.com", "", "")
        assert updated.username == "alice"
        assert verify_password(updated.password_hash, "secret1")

    def test_errors_are_aggregated(self, s):
        register(s, "bob", "bob@x.com", "secret1")
        user = register(s, "alice", "alice@x.com", "secret1")
        with pytest.raises(ValidationFailed) as exc:
            update_profile(s, user, "bob", "bob@x.com", "newpass1", "different")
        assert exc.value.errors == [
            "Username is already taken.",
            "Email is already taken.",
            "Passwords do not match.",
        ]
        s.refresh(user)
        assert user.username == "alice"

    def test_only_one_password_field_is_an_error(self, s):
        user = register(s, "alice", "alice@x.com", "secret1")
        with pytest.raises(ValidationFailed) as exc:
            update_profile(s, user, "alice", "alice@x.com", "newpass1", "")
        assert exc.value.errors == ["Enter the new password and its confirmation."]
        with pytest.raises(ValidationFailed):
            update_profile(s, user, "alice", "alice@x.com", "", "newpass1")

    def test_short_password(self, s):
        user = register(s, "alice", "alice@x.com", "secret1")
        with pytest.raises(ValidationFailed) as exc:
            update_profile(s, user, "alice", "alice@x.com", "abc", "abc")
        assert exc.value.errors == ["Password must be at least 6 characters."]

    def test_successful_update(self, s):
        user = register(s, "alice", "alice@x.com", "secret1")
        update_profile(s, user, "alicia", "alicia@x.com", "newpass1", "newpass1")
        fresh = find_by_id(s, user.id)
        assert fresh.username == "alicia"
        assert fresh.email == "alicia@x.com"
        assert verify_password(fresh.password_hash, "newpass1")
        assert not verify_password(fresh.password_hash, "secret1")
        ev = s.query(AuditEvent).filter(AuditEvent.action == "user.update_profile").one()
        assert "newpass1" not in (ev.metadata_json or "")

    def test_username_shaped_like_email_is_rejected(self, s):
        user = register(s, "alice", "alice@x.com", "secret1")
        with pytest.raises(ValidationFailed) as exc:
            update_profile(s, user, "bob@x.com", "alice@x.com", "", "")
        assert exc.value.errors == ["Username cannot be an email address."]

    def test_flush_race_reports_duplicate(self, s, monkeypatch):
        register(s, "bob", "bob@x.com", "secret1")
        user = register(s, "alice", "alice@x.com", "secret1")
        # Validation passed before bob's row became visible.
        monkeypatch.setattr(accounts_service, "validate_profile_update", lambda *a, **kw: [])
        with pytest.raises(DuplicateConstraint) as exc:
            update_profile(s, user, "bob", "alice@x.com", "", "")
        assert exc.value.fields == ["username"]
        assert exc.value.message == "Username or email is already taken."
        assert find_by_id(s, user.id).username == "alice"


def test_delete_user_missing(s):
    with pytest.raises(NotFound):
        delete_user(s, 12345)
