import logging
import os

from flask import Flask, g, request
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from app.followhub.config import load_config
from app.followhub.db import ensure_schema, init_db, session_scope, teardown_db_session
from app.followhub.routes import bp as routes_bp
from app.followhub.auth import apply_session_cookie, bp as auth_bp, load_current_session
from app.followhub.modules.accounts.admin import bp as accounts_bp
from app.followhub.modules.social_graph.admin import bp as social_graph_bp
from app.followhub.sessions import purge_expired_sessions
from app.followhub.views import render_view


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.logger.setLevel(getattr(logging, app.config.get("LOG_LEVEL") or "INFO", logging.INFO))

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Users, sessions and follows tables must exist before the first request.
    if app.config.get("AUTO_CREATE_SCHEMA"):
        ensure_schema(app)
        try:
            with session_scope(app) as s:
                purge_expired_sessions(s)
        except SQLAlchemyError as e:
            app.logger.error("Expired session purge failed at startup: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(social_graph_bp)
    app.register_blueprint(accounts_bp)

    app.before_request(load_current_session)
    app.after_request(apply_session_cookie)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_view("errors/404", 404, errors=["Not found."])

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s path=%s)", rid, request.path)
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        return render_view("errors/500", 500, errors=["Something went wrong. Please try again."], request_id=rid)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app

