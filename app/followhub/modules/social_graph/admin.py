from __future__ import annotations

from flask import Blueprint, current_app, g, redirect, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.followhub.db import db_session
from app.followhub.errors import NotFound, SelfFollow
from app.followhub.gate import Allow, require_login
from app.followhub.modules.social_graph.service import (
    list_follower_ids,
    list_followers,
    list_following,
    list_following_ids,
    list_others,
    toggle_follow,
)
from app.followhub.views import render_view, serialize_user

bp = Blueprint("social_graph", __name__)


def _parse_int(value: str | None) -> int | None:
    v = (value or "").strip()
    if not v:
        return None
    try:
        return int(v)
    except ValueError:
        return None


def _back_to_users(**flags: str):
    return redirect(url_for("social_graph.users_list", **flags))


@bp.get("/users")
@require_login
def users_list(identity: Allow):
    s = db_session()
    others = list_others(s, identity.user_id)
    following_ids = list_following_ids(s, identity.user_id)
    return render_view(
        "users/list",
        current_user={"id": identity.user_id, "username": identity.username},
        users=[{**serialize_user(u), "is_following": u.id in following_ids} for u in others],
        following_ids=sorted(following_ids),
        success=request.args.get("success"),
        error=request.args.get("error"),
    )


@bp.get("/users/following")
@require_login
def following_list(identity: Allow):
    s = db_session()
    users = list_following(s, identity.user_id)
    return render_view("users/following", users=[serialize_user(u) for u in users])


@bp.get("/users/followers")
@require_login
def followers_list(identity: Allow):
    s = db_session()
    users = list_followers(s, identity.user_id)
    following_ids = list_following_ids(s, identity.user_id)
    return render_view(
        "users/followers",
        users=[{**serialize_user(u), "is_following": u.id in following_ids} for u in users],
        follower_ids=sorted(list_follower_ids(s, identity.user_id)),
    )


@bp.post("/users/toggle-follow")
@require_login
def toggle_follow_post(identity: Allow):
    target_id = _parse_int(request.form.get("targetUserId"))
    if target_id is None:
        return _back_to_users(error="invalid_target")

    s = db_session()
    try:
        result = toggle_follow(s, identity.user_id, target_id)
    except SelfFollow:
        return _back_to_users(error="self_follow")
    except NotFound:
        return _back_to_users(error="not_found")
    except SQLAlchemyError:
        s.rollback()
        current_app.logger.exception("Toggle follow failed (request_id=%s)", getattr(g, "request_id", None))
        return _back_to_users(error="try_again")
    return _back_to_users(success=result.value)
