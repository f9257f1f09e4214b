from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.followhub import auth as auth_views
from app.followhub import create_app
from app.followhub.db import session_scope
from app.followhub.models import Base, SessionRecord, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("PASSWORD_HASH_METHOD", "pbkdf2:sha256:1000")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _register(client, username="alice", email="alice@x.com", password="secret1"):
    return client.post(
        "/auth/register",
        data={"username": username, "email": email, "password": password},
        follow_redirects=False,
    )


def _login(client, username="alice", password="secret1"):
    return client.post("/auth/login", data={"username": username, "password": password}, follow_redirects=False)


def _boom(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("database is unavailable"))


def _session_rows(app):
    with session_scope(app) as s:
        return s.query(SessionRecord).all()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_untouched_requests_create_no_session(app, client):
    client.get("/")
    client.get("/auth/login")
    assert _session_rows(app) == []
    assert client.get_cookie("followhub_session") is None


def test_register_then_login_scenario(app, client):
    r = _register(client)
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    assert "registered=true" in r.headers["Location"]

    r = _login(client)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/users")
    assert client.get_cookie("followhub_session") is not None

    rows = _session_rows(app)
    assert len(rows) == 1
    assert rows[0].user_id is not None
    assert '"username": "alice"' in rows[0].data

    r = client.get("/users")
    assert r.status_code == 200
    assert r.json["current_user"]["username"] == "alice"


def test_login_with_email(client):
    _register(client)
    r = client.post("/auth/login", data={"username": "ALICE@x.com", "password": "secret1"})
    assert r.status_code == 302


def test_login_wrong_password_creates_no_session(app, client):
    _register(client)
    r = _login(client, password="wrong")
    assert r.status_code == 401
    assert r.json["errors"] == ["Invalid username or password."]
    assert _session_rows(app) == []
    assert client.get_cookie("followhub_session") is None


def test_register_duplicate_username_and_email(client):
    assert _register(client).status_code == 302

    r = _register(client, email="other@x.com")
    assert r.status_code == 409
    assert r.json["fields"] == ["username"]

    r = _register(client, username="alice2")
    assert r.status_code == 409
    assert r.json["fields"] == ["email"]

    r = _register(client)
    assert r.status_code == 409
    assert r.json["fields"] == ["username", "email"]
    assert r.json["errors"] == ["Username or email already exists."]


def test_register_validation_errors_are_aggregated(client):
    r = _register(client, username="", email="not-an-email", password="abc")
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3


def test_protected_route_redirects_with_reason(client):
    r = client.get("/users")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    assert "reason=auth_required" in r.headers["Location"]
    assert "next=" in r.headers["Location"]


def test_login_follows_local_next_only(client):
    _register(client)
    r = client.post("/auth/login", data={"username": "alice", "password": "secret1", "next": "/profile"})
    assert r.headers["Location"].endswith("/profile")

    client.get("/auth/logout")
    r = client.post("/auth/login", data={"username": "alice", "password": "secret1", "next": "//evil.example"})
    assert r.headers["Location"].endswith("/users")


def test_logout_destroys_session_and_clears_cookie(app, client):
    _register(client)
    _login(client)
    assert len(_session_rows(app)) == 1

    r = client.get("/auth/logout")
    assert r.status_code == 302
    assert _session_rows(app) == []
    assert client.get_cookie("followhub_session") is None

    r = client.get("/users")
    assert r.status_code == 302


def test_login_rotates_session_token(app, client):
    _register(client)
    _login(client)
    first = client.get_cookie("followhub_session").value
    _login(client)
    second = client.get_cookie("followhub_session").value
    assert first != second
    assert len(_session_rows(app)) == 1


def test_expired_session_is_treated_as_logged_out(app, client):
    _register(client)
    _login(client)
    with session_scope(app) as s:
        for row in s.query(SessionRecord).all():
            row.expires = datetime.utcnow() - timedelta(minutes=1)

    r = client.get("/users")
    assert r.status_code == 302
    assert "reason=auth_required" in r.headers["Location"]
    assert client.get_cookie("followhub_session") is None


def test_tampered_cookie_is_ignored(client):
    _register(client)
    _login(client)
    client.set_cookie("followhub_session", "forged-value")
    r = client.get("/users")
    assert r.status_code == 302


def test_deactivated_user_session_is_rejected(app, client):
    _register(client)
    _login(client)
    with session_scope(app) as s:
        s.query(User).filter(User.username == "alice").one().is_active = False

    r = client.get("/users")
    assert r.status_code == 302
    assert "reason=auth_required" in r.headers["Location"]
    assert _session_rows(app) == []
    assert client.get_cookie("followhub_session") is None


def test_register_storage_failure_asks_to_try_again(app, client, monkeypatch):
    monkeypatch.setattr(auth_views, "register", _boom)
    r = _register(client)
    assert r.status_code == 503
    assert r.json["errors"] == ["Something went wrong. Please try again."]
    assert r.json["form"]["username"] == "alice"


def test_login_storage_failure_asks_to_try_again(app, client, monkeypatch):
    _register(client)
    monkeypatch.setattr(auth_views, "authenticate_credentials", _boom)
    r = _login(client)
    assert r.status_code == 503
    assert r.json["errors"] == ["Something went wrong. Please try again."]
    assert _session_rows(app) == []
    assert client.get_cookie("followhub_session") is None
