"""
Aggregation pipeline construction.

Builders only assemble stage lists; running them is the store's job, which
keeps every feed's query shape testable on its own.
"""

from typing import Any, Dict, List, Optional, get_args

from database import USERS, VIDEOS, objid
from errors import ValidationFailed
from schemas import SortDirection, SortField, VideoQuery

PROFILE_FIELDS = {"_id": 1, "username": 1, "full_name": 1, "avatar": 1}

_DIRECTIONS = {"asc": 1, "ascending": 1, "desc": -1, "descending": -1}


class PipelineBuilder:
    def __init__(self):
        self._stages: List[Dict[str, Any]] = []

    def search(self, text: str, paths: List[str], index: str) -> "PipelineBuilder":
        self._stages.append(
            {"$search": {"index": index, "text": {"query": text, "path": paths}}}
        )
        return self

    def match(self, predicate: Dict[str, Any]) -> "PipelineBuilder":
        self._stages.append({"$match": predicate})
        return self

    def lookup(self, source: str, local_field: str, foreign_field: str, as_field: str) -> "PipelineBuilder":
        self._stages.append(
            {
                "$lookup": {
                    "from": source,
                    "localField": local_field,
                    "foreignField": foreign_field,
                    "as": as_field,
                }
            }
        )
        return self

    def unwind(self, field: str) -> "PipelineBuilder":
        self._stages.append({"$unwind": f"${field}"})
        return self

    def replace_root(self, field: str) -> "PipelineBuilder":
        self._stages.append({"$replaceRoot": {"newRoot": f"${field}"}})
        return self

    def group(self, spec: Dict[str, Any]) -> "PipelineBuilder":
        self._stages.append({"$group": spec})
        return self

    def sort(self, field: str, direction: int = -1) -> "PipelineBuilder":
        # _id breaks ties so equal sort keys still page deterministically
        keys = {field: direction}
        if field != "_id":
            keys["_id"] = direction
        self._stages.append({"$sort": keys})
        return self

    def project(self, fields: Dict[str, Any]) -> "PipelineBuilder":
        self._stages.append({"$project": dict(fields)})
        return self

    def build(self) -> List[Dict[str, Any]]:
        return list(self._stages)


def sort_direction(value: Optional[str]) -> int:
    key = (value or "desc").strip().lower()
    if key not in _DIRECTIONS:
        raise ValidationFailed(f"sort_type must be one of {', '.join(get_args(SortDirection))}")
    return _DIRECTIONS[key]


def build_video_pipeline(query: VideoQuery, search_index: str = "search_videos") -> List[Dict[str, Any]]:
    """Stages for the public video listing.

    Order is fixed: full-text search, owner filter, published filter, sort.
    Atlas requires ``$search`` to be the first stage of a pipeline.
    """
    owner = objid(query.owner_id, "user_id") if query.owner_id else None

    sort_by = query.sort_by or "created_at"
    if sort_by not in get_args(SortField):
        raise ValidationFailed(f"sort_by must be one of {', '.join(get_args(SortField))}")
    direction = sort_direction(query.sort_type)

    builder = PipelineBuilder()
    if query.text_query and query.text_query.strip():
        builder.search(query.text_query.strip(), ["title", "description"], search_index)
    if owner is not None:
        builder.match({"owner": owner})
    if query.published_only:
        builder.match({"is_published": True})
    builder.sort(sort_by, direction)
    return builder.build()


def build_comment_pipeline(video_id) -> List[Dict[str, Any]]:
    return PipelineBuilder().match({"video": objid(video_id, "video_id")}).sort("created_at").build()


def build_tweet_pipeline(owner_id) -> List[Dict[str, Any]]:
    return PipelineBuilder().match({"owner": objid(owner_id, "user_id")}).sort("created_at").build()


def build_liked_videos_pipeline(actor_id) -> List[Dict[str, Any]]:
    """Videos the actor liked, most recently liked first."""
    return (
        PipelineBuilder()
        .match({"liked_by": objid(actor_id, "user_id"), "video": {"$exists": True}})
        .lookup(VIDEOS, "video", "_id", "liked_video")
        .unwind("liked_video")
        .match({"liked_video.is_published": True})
        .sort("created_at")
        .replace_root("liked_video")
        .build()
    )


def _profiles_via(match: Dict[str, Any], user_field: str) -> List[Dict[str, Any]]:
    return (
        PipelineBuilder()
        .match(match)
        .sort("created_at")
        .lookup(USERS, user_field, "_id", "profile")
        .unwind("profile")
        .replace_root("profile")
        .project(PROFILE_FIELDS)
        .build()
    )


def build_subscribers_pipeline(channel_id) -> List[Dict[str, Any]]:
    return _profiles_via({"channel": objid(channel_id, "channel_id")}, "subscriber")


def build_subscribed_channels_pipeline(subscriber_id) -> List[Dict[str, Any]]:
    return _profiles_via({"subscriber": objid(subscriber_id, "subscriber_id")}, "channel")
