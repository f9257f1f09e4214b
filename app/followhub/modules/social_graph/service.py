from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from app.followhub.audit import record_event
from app.followhub.errors import NotFound, SelfFollow
from app.followhub.models import User
from app.followhub.modules.social_graph.models import Follow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class FollowResult(str, enum.Enum):
    FOLLOWED = "followed"
    UNFOLLOWED = "unfollowed"


def list_following_ids(s: "Session", user_id: int) -> set[int]:
    rows = s.query(Follow.following_id).filter(Follow.follower_id == user_id).all()
    return {r[0] for r in rows}


def list_follower_ids(s: "Session", user_id: int) -> set[int]:
    rows = s.query(Follow.follower_id).filter(Follow.following_id == user_id).all()
    return {r[0] for r in rows}


def list_others(s: "Session", excluding_user_id: int) -> list[User]:
    """Every active user except the caller, by username."""
    return (
        s.query(User)
        .filter(User.id != excluding_user_id, User.is_active.is_(True))
        .order_by(User.username.asc())
        .all()
    )


def list_following(s: "Session", user_id: int) -> list[User]:
    return (
        s.query(User)
        .join(Follow, Follow.following_id == User.id)
        .filter(Follow.follower_id == user_id)
        .order_by(User.username.asc())
        .all()
    )


def list_followers(s: "Session", user_id: int) -> list[User]:
    return (
        s.query(User)
        .join(Follow, Follow.follower_id == User.id)
        .filter(Follow.following_id == user_id)
        .order_by(User.username.asc())
        .all()
    )


def _find_edge(s: "Session", follower_id: int, target_id: int) -> Follow | None:
    return (
        s.query(Follow)
        .filter(Follow.follower_id == follower_id, Follow.following_id == target_id)
        .one_or_none()
    )


def is_following(s: "Session", follower_id: int, target_id: int) -> bool:
    return (
        s.query(Follow.id)
        .filter(Follow.follower_id == follower_id, Follow.following_id == target_id)
        .first()
        is not None
    )


def toggle_follow(s: "Session", follower_id: int, target_id: int) -> FollowResult:
    """
    Follow `target_id` if the edge is absent, unfollow it if present.

    Check-then-act without a lock: two concurrent toggles by the same actor may
    both see "absent". The unique (follower_id, following_id) index rejects the
    second insert and that case resolves to FOLLOWED, the state the store holds.
    A foreign key failure (either user deleted meanwhile) raises NotFound.
    """
    if follower_id == target_id:
        raise SelfFollow()

    follower = s.get(User, follower_id)
    target = s.get(User, target_id)
    if not follower or not target:
        raise NotFound("User not found.")

    edge = _find_edge(s, follower_id, target_id)
    if edge is not None:
        s.delete(edge)
        record_event(
            s,
            actor=follower,
            action="follow.delete",
            entity_type="User",
            entity_id=str(target_id),
        )
        s.commit()
        return FollowResult.UNFOLLOWED

    try:
        with s.begin_nested():
            s.add(Follow(follower_id=follower_id, following_id=target_id))
    except IntegrityError:
        if is_following(s, follower_id, target_id):
            logger.info("Follow edge %s->%s already present (concurrent insert)", follower_id, target_id)
            s.commit()
            return FollowResult.FOLLOWED
        present = s.query(User.id).filter(User.id.in_((follower_id, target_id))).count()
        if present < 2:
            raise NotFound("User not found.")
        raise

    record_event(
        s,
        actor=follower,
        action="follow.create",
        entity_type="User",
        entity_id=str(target_id),
    )
    s.commit()
    return FollowResult.FOLLOWED
