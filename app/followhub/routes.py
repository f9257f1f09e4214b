from flask import Blueprint, g

from app.followhub.views import render_view

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    state = getattr(g, "session_state", None)
    username = state.username if state is not None and state.is_authenticated else None
    return render_view("public/index", username=username)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s probes. No DB access, minimal overhead.
    """
    return "ok", 200
