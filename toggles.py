"""
Presence-based boolean relationships.

A user "likes" a target or "subscribes" to a channel exactly when a matching
document exists. Toggling reads the current document and then deletes or
creates it; the unique indexes from ``EntityStore.ensure_indexes`` settle
concurrent toggles from the same actor:

* a create rejected as a duplicate means another request already made the
  relationship active, so the result is ACTIVE;
* deleting a document that is already gone is a no-op, so the result is
  INACTIVE.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

import structlog

from database import LIKE_TARGETS, LIKES, SUBSCRIPTIONS, USERS, VIDEOS, EntityStore, objid
from errors import DuplicateEntry, TargetNotFound, ValidationFailed
from schemas import Like, Subscription

logger = structlog.get_logger()


class ToggleState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class ToggleResult:
    state: ToggleState
    target_kind: str
    target_id: str

    @property
    def active(self) -> bool:
        return self.state is ToggleState.ACTIVE


def _flip(store: EntityStore, collection: str, key: Dict[str, Any], document: Dict[str, Any]) -> ToggleState:
    existing = store.find_one(collection, key)
    if existing:
        if store.delete_by_id(collection, existing["_id"]) is None:
            logger.info("Toggle delete found nothing", collection=collection)
        return ToggleState.INACTIVE

    try:
        store.create_document(collection, document)
    except DuplicateEntry:
        logger.info("Toggle create lost a race", collection=collection)
    return ToggleState.ACTIVE


def is_visible_video(video: Dict[str, Any], actor_id) -> bool:
    """Unpublished videos are only reachable by their owner."""
    if video.get("is_published", False):
        return True
    return actor_id is not None and str(video.get("owner")) == str(actor_id)


def _resolve_like_target(store: EntityStore, target_kind: str, target_id, actor) -> Dict[str, Any]:
    target = store.find_by_id(LIKE_TARGETS[target_kind], target_id)
    if target and target_kind == "video":
        visible = is_visible_video(target, actor)
    elif target and target_kind == "comment":
        # A comment is reachable only through its video
        video = store.find_by_id(VIDEOS, target["video"]) if target.get("video") else None
        visible = video is not None and is_visible_video(video, actor)
    else:
        visible = target is not None
    if not visible:
        raise TargetNotFound(f"No {target_kind} found by this id")
    return target


def toggle_like(store: EntityStore, target_kind: str, target_id, actor_id) -> ToggleResult:
    if target_kind not in LIKE_TARGETS:
        raise ValidationFailed(f"Cannot like a {target_kind}")
    target_oid = objid(target_id, f"{target_kind}_id")
    actor = objid(actor_id, "user_id")

    _resolve_like_target(store, target_kind, target_oid, actor)

    key = {"liked_by": actor, target_kind: target_oid}
    like = Like(**key).to_document()
    state = _flip(store, LIKES, key, like)
    logger.info(
        "Like toggled",
        target_kind=target_kind,
        target_id=str(target_oid),
        actor=str(actor),
        state=state.value,
    )
    return ToggleResult(state, target_kind, str(target_oid))


def toggle_subscription(store: EntityStore, channel_id, actor_id) -> ToggleResult:
    channel = objid(channel_id, "channel_id")
    actor = objid(actor_id, "user_id")
    if channel == actor:
        raise ValidationFailed("Cannot subscribe to your own channel")
    if not store.find_by_id(USERS, channel):
        raise TargetNotFound("Channel not found")

    key = {"subscriber": actor, "channel": channel}
    state = _flip(store, SUBSCRIPTIONS, key, Subscription(**key).to_document())
    logger.info(
        "Subscription toggled",
        channel=str(channel),
        subscriber=str(actor),
        state=state.value,
    )
    return ToggleResult(state, "channel", str(channel))
