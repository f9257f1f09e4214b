from __future__ import annotations

from flask import Blueprint, abort, current_app, g, redirect, request, url_for
from sqlalchemy.exc import SQLAlchemyError

from app.followhub.db import db_session
from app.followhub.errors import DuplicateConstraint, StorageFailure, ValidationFailed
from app.followhub.gate import Allow, require_login
from app.followhub.modules.accounts.service import find_by_id, update_profile
from app.followhub.modules.social_graph.service import list_follower_ids, list_following_ids
from app.followhub.sessions import set_identity
from app.followhub.views import render_view, serialize_user

bp = Blueprint("accounts", __name__)


@bp.get("/profile")
@require_login
def profile(identity: Allow):
    s = db_session()
    user = find_by_id(s, identity.user_id)
    if not user:
        abort(404)
    return render_view(
        "profile/detail",
        user=serialize_user(user, include_email=True),
        following_count=len(list_following_ids(s, user.id)),
        follower_count=len(list_follower_ids(s, user.id)),
        updated=request.args.get("updated") == "true",
    )


@bp.post("/profile/edit")
@require_login
def profile_edit_post(identity: Allow):
    s = db_session()
    user = find_by_id(s, identity.user_id)
    if not user:
        abort(404)

    form = {
        "username": (request.form.get("username") or "").strip(),
        "email": (request.form.get("email") or "").strip(),
    }
    try:
        update_profile(
            s,
            user,
            form["username"],
            form["email"],
            request.form.get("newPassword") or "",
            request.form.get("confirmNewPassword") or "",
        )
    except ValidationFailed as e:
        return render_view("profile/edit", 400, errors=e.errors, form=form)
    except DuplicateConstraint as e:
        return render_view("profile/edit", 409, errors=[e.message], fields=e.fields, form=form)
    except SQLAlchemyError:
        s.rollback()
        current_app.logger.exception("Profile update failed (request_id=%s)", getattr(g, "request_id", None))
        return render_view("profile/edit", 503, errors=["Something went wrong. Please try again."], form=form)

    if user.username != identity.username:
        # Keep the session payload's username in step with the profile.
        try:
            set_identity(s, identity.session_token, user.id, user.username)
        except StorageFailure:
            current_app.logger.warning(
                "Profile saved but session username not refreshed (request_id=%s)",
                getattr(g, "request_id", None),
            )
    return redirect(url_for("accounts.profile", updated="true"))
