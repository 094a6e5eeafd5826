"""
Read-time projections.

Owner profiles, like counts and the viewer's like/subscribe flags are never
stored on the content documents; they are joined in here for whatever page of
documents a feed returns. Each call issues a fixed number of batched queries
regardless of how many documents it is given.
"""

from typing import Any, Dict, List, Optional

from database import LIKE_TARGETS, LIKES, SUBSCRIPTIONS, USERS, EntityStore, objid, to_str_id
from pipeline import PROFILE_FIELDS, PipelineBuilder
from schemas import UserProfile


def _profile(user: Optional[Dict[str, Any]], with_email: bool = False) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    profile = UserProfile(
        id=str(user["_id"]),
        username=user.get("username"),
        full_name=user.get("full_name"),
        avatar=user.get("avatar"),
        email=user.get("email"),
    )
    return profile.model_dump(exclude=None if with_email else {"email"})


def owner_profiles(store: EntityStore, owner_ids) -> Dict[Any, Dict[str, Any]]:
    ids = list({oid for oid in owner_ids if oid is not None})
    if not ids:
        return {}
    users = store.get_documents(USERS, {"_id": {"$in": ids}}, PROFILE_FIELDS)
    return {u["_id"]: _profile(u) for u in users}


def likes_counts(store: EntityStore, target_kind: str, target_ids) -> Dict[Any, int]:
    stages = (
        PipelineBuilder()
        .match({target_kind: {"$in": list(target_ids)}})
        .group({"_id": f"${target_kind}", "count": {"$sum": 1}})
        .build()
    )
    rows = store.run_pipeline(LIKES, stages)
    return {row["_id"]: row["count"] for row in rows}


def liked_by_actor(store: EntityStore, target_kind: str, target_ids, actor_id) -> set:
    if actor_id is None:
        return set()
    likes = store.get_documents(
        LIKES,
        {target_kind: {"$in": list(target_ids)}, "liked_by": objid(actor_id, "user_id")},
        {target_kind: 1},
    )
    return {like[target_kind] for like in likes}


def materialize(
    store: EntityStore,
    target_kind: str,
    docs: List[Dict[str, Any]],
    actor_id=None,
) -> List[Dict[str, Any]]:
    """Attach ``owner``, ``likes_count`` and ``is_liked`` to each document.

    ``target_kind`` is one of ``video``, ``comment`` or ``tweet``. An
    anonymous viewer (``actor_id`` of None) gets ``is_liked`` False.
    """
    if target_kind not in LIKE_TARGETS:
        raise ValueError(f"Unknown like target kind: {target_kind}")
    if not docs:
        return []

    ids = [d["_id"] for d in docs]
    owners = owner_profiles(store, (d.get("owner") for d in docs))
    counts = likes_counts(store, target_kind, ids)
    liked = liked_by_actor(store, target_kind, ids, actor_id)

    views = []
    for doc in docs:
        view = to_str_id(doc)
        view["owner"] = owners.get(doc.get("owner"))
        view["likes_count"] = counts.get(doc["_id"], 0)
        view["is_liked"] = doc["_id"] in liked
        views.append(view)
    return views


def channel_profile(store: EntityStore, user: Dict[str, Any], actor_id=None) -> Dict[str, Any]:
    """Public channel view with subscription counts and the viewer's status."""
    channel_id = user["_id"]
    view = _profile(user, with_email=True)
    view["subscribers_count"] = store.count(SUBSCRIPTIONS, [{"$match": {"channel": channel_id}}])
    view["subscribed_to_count"] = store.count(SUBSCRIPTIONS, [{"$match": {"subscriber": channel_id}}])
    view["is_subscribed"] = bool(
        actor_id is not None
        and store.find_one(
            SUBSCRIPTIONS,
            {"channel": channel_id, "subscriber": objid(actor_id, "user_id")},
        )
    )
    return view
