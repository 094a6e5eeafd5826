"""
Operations behind each endpoint.

Functions take the store (and media storage where files are involved), the
acting user id as given by the identity layer (None for anonymous reads) and
plain request values. They return JSON-ready dicts or ``Page`` objects and
raise ``errors.ServiceError`` subclasses on failure.
"""

from typing import Any, Dict, Optional, Type

import structlog
from pydantic import ValidationError

from config import settings
from database import COMMENTS, LIKES, SUBSCRIPTIONS, TWEETS, USERS, VIDEOS, EntityStore, objid, to_str_id
from errors import NotFound, StoreFailure, ValidationFailed
from guards import load_owned
from media import THUMBNAIL_FOLDER, VIDEO_FOLDER, MediaStorage, Upload
from pagination import Page, paginate
from pipeline import (
    build_comment_pipeline,
    build_liked_videos_pipeline,
    build_subscribed_channels_pipeline,
    build_subscribers_pipeline,
    build_tweet_pipeline,
    build_video_pipeline,
)
from schemas import MAX_TITLE_LENGTH, Comment, Document, Tweet, Video, VideoQuery
from toggles import is_visible_video, toggle_like, toggle_subscription
from views import channel_profile, materialize

logger = structlog.get_logger()


# -------------------- Helpers --------------------

def _required_text(value: Optional[str], message: str) -> str:
    if value is None or not value.strip():
        raise ValidationFailed(message)
    return value.strip()


def _validated(model: Type[Document], **fields) -> Dict[str, Any]:
    try:
        return model(**fields).to_document()
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationFailed(f"{where}: {first['msg']}" if where else first["msg"]) from e


def _has_file(upload: Optional[Upload]) -> bool:
    return upload is not None and bool(getattr(upload, "filename", None))


def _one_view(store: EntityStore, kind: str, doc: Dict[str, Any], actor_id) -> Dict[str, Any]:
    return materialize(store, kind, [doc], actor_id)[0]


def _visible_video(store: EntityStore, video_id, actor_id) -> Dict[str, Any]:
    video = store.find_by_id(VIDEOS, objid(video_id, "video_id"))
    if not video or not is_visible_video(video, actor_id):
        raise NotFound("Video not found")
    return video


def _likes_count(store: EntityStore, kind: str, target_id) -> int:
    return store.count(LIKES, [{"$match": {kind: objid(target_id)}}])


# -------------------- Videos --------------------

def list_videos(
    store: EntityStore,
    query: VideoQuery,
    page=None,
    limit=None,
    actor_id: Optional[str] = None,
) -> Page:
    stages = build_video_pipeline(query, settings.search_index)
    result = paginate(store, VIDEOS, stages, page, limit)
    return result.with_results(materialize(store, "video", result.results, actor_id))


def publish_video(
    store: EntityStore,
    media: MediaStorage,
    actor_id: str,
    title: Optional[str],
    description: Optional[str],
    video_file: Optional[Upload],
    thumbnail: Optional[Upload],
    duration: Optional[float] = None,
) -> Dict[str, Any]:
    title = _required_text(title, "All fields are required")
    description = _required_text(description, "All fields are required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationFailed(f"title must be at most {MAX_TITLE_LENGTH} characters")
    if duration is not None and duration < 0:
        raise ValidationFailed("duration must be greater than or equal to 0")
    if not _has_file(video_file):
        raise ValidationFailed("Video file is required")
    if not _has_file(thumbnail):
        raise ValidationFailed("Thumbnail is required")
    owner = objid(actor_id, "user_id")

    stored_video = media.store(video_file, VIDEO_FOLDER)
    stored_thumbnail = media.store(thumbnail, THUMBNAIL_FOLDER)

    doc = _validated(
        Video,
        title=title,
        description=description,
        duration=stored_video.duration or duration or 0,
        video_file=stored_video.ref(),
        thumbnail=stored_thumbnail.ref(),
        owner=owner,
        is_published=True,
    )
    created = store.create_document(VIDEOS, doc)

    video = store.find_by_id(VIDEOS, created["_id"])
    if not video:
        raise StoreFailure("Video upload failed please try again")
    logger.info("Video published", video_id=str(video["_id"]), owner=str(owner))
    return _one_view(store, "video", video, actor_id)


def get_video(store: EntityStore, video_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
    video = _visible_video(store, video_id, actor_id)
    video = store.update_by_id(VIDEOS, video["_id"], inc={"views": 1})
    if not video:
        raise NotFound("Video not found")
    return _one_view(store, "video", video, actor_id)


def update_video(
    store: EntityStore,
    media: MediaStorage,
    video_id: str,
    actor_id: str,
    title: Optional[str],
    description: Optional[str],
    thumbnail: Optional[Upload] = None,
) -> Dict[str, Any]:
    oid = objid(video_id, "video_id")
    title = _required_text(title, "title and description are required")
    description = _required_text(description, "title and description are required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationFailed(f"title must be at most {MAX_TITLE_LENGTH} characters")

    video = load_owned(store, VIDEOS, oid, actor_id, "video")

    patch: Dict[str, Any] = {"title": title, "description": description}
    replaced = None
    if _has_file(thumbnail):
        patch["thumbnail"] = media.store(thumbnail, THUMBNAIL_FOLDER).ref()
        replaced = (video.get("thumbnail") or {}).get("storage_id")

    updated = store.update_by_id(VIDEOS, oid, patch)
    if not updated:
        raise StoreFailure("Something went wrong while updating video")
    if replaced:
        media.delete(replaced)
    return _one_view(store, "video", updated, actor_id)


def delete_video(store: EntityStore, media: MediaStorage, video_id: str, actor_id: str) -> Dict[str, Any]:
    video = load_owned(store, VIDEOS, video_id, actor_id, "video")
    oid = video["_id"]

    if store.delete_by_id(VIDEOS, oid) is None:
        raise StoreFailure("Something went wrong while deleting video")

    comment_ids = [c["_id"] for c in store.get_documents(COMMENTS, {"video": oid}, {"_id": 1})]
    if comment_ids:
        store.delete_many(LIKES, {"comment": {"$in": comment_ids}})
        store.delete_many(COMMENTS, {"video": oid})
    store.delete_many(LIKES, {"video": oid})

    media.delete((video.get("video_file") or {}).get("storage_id"))
    media.delete((video.get("thumbnail") or {}).get("storage_id"))
    logger.info("Video deleted", video_id=str(oid), comments=len(comment_ids))
    return {}


def toggle_publish(store: EntityStore, video_id: str, actor_id: str) -> Dict[str, Any]:
    video = load_owned(store, VIDEOS, video_id, actor_id, "video")
    updated = store.update_by_id(VIDEOS, video["_id"], {"is_published": not video.get("is_published", False)})
    if not updated:
        raise StoreFailure("Something went wrong while toggling the video")
    return {"id": str(updated["_id"]), "is_published": updated["is_published"]}


# -------------------- Comments --------------------

def list_comments(store: EntityStore, video_id: str, page=None, limit=None, actor_id: Optional[str] = None) -> Page:
    video = _visible_video(store, video_id, actor_id)
    result = paginate(store, COMMENTS, build_comment_pipeline(video["_id"]), page, limit)
    return result.with_results(materialize(store, "comment", result.results, actor_id))


def add_comment(store: EntityStore, video_id: str, actor_id: str, content: Optional[str]) -> Dict[str, Any]:
    content = _required_text(content, "Comment can not be empty")
    video = _visible_video(store, video_id, actor_id)
    doc = _validated(Comment, content=content, video=video["_id"], owner=objid(actor_id, "user_id"))
    comment = store.create_document(COMMENTS, doc)
    return _one_view(store, "comment", comment, actor_id)


def update_comment(store: EntityStore, comment_id: str, actor_id: str, content: Optional[str]) -> Dict[str, Any]:
    content = _required_text(content, "Comment can not be empty")
    comment = load_owned(store, COMMENTS, comment_id, actor_id, "comment")
    updated = store.update_by_id(COMMENTS, comment["_id"], {"content": content})
    if not updated:
        raise StoreFailure("Something went wrong while updating comment")
    return _one_view(store, "comment", updated, actor_id)


def delete_comment(store: EntityStore, comment_id: str, actor_id: str) -> Dict[str, Any]:
    comment = load_owned(store, COMMENTS, comment_id, actor_id, "comment")
    deleted = store.delete_by_id(COMMENTS, comment["_id"])
    if deleted is None:
        raise StoreFailure("Something went wrong while deleting comment")
    store.delete_many(LIKES, {"comment": comment["_id"]})
    return to_str_id(deleted)


# -------------------- Tweets --------------------

def create_tweet(store: EntityStore, actor_id: str, content: Optional[str]) -> Dict[str, Any]:
    content = _required_text(content, "Tweet can not be empty")
    doc = _validated(Tweet, content=content, owner=objid(actor_id, "user_id"))
    tweet = store.create_document(TWEETS, doc)
    return _one_view(store, "tweet", tweet, actor_id)


def list_user_tweets(store: EntityStore, user_id: str, page=None, limit=None, actor_id: Optional[str] = None) -> Page:
    user = store.find_by_id(USERS, objid(user_id, "user_id"))
    if not user:
        raise NotFound("No user found by this id")
    result = paginate(store, TWEETS, build_tweet_pipeline(user["_id"]), page, limit)
    return result.with_results(materialize(store, "tweet", result.results, actor_id))


def update_tweet(store: EntityStore, tweet_id: str, actor_id: str, content: Optional[str]) -> Dict[str, Any]:
    content = _required_text(content, "Tweet can not be empty")
    tweet = load_owned(store, TWEETS, tweet_id, actor_id, "tweet")
    updated = store.update_by_id(TWEETS, tweet["_id"], {"content": content})
    if not updated:
        raise StoreFailure("Something went wrong while updating tweet")
    return _one_view(store, "tweet", updated, actor_id)


def delete_tweet(store: EntityStore, tweet_id: str, actor_id: str) -> Dict[str, Any]:
    tweet = load_owned(store, TWEETS, tweet_id, actor_id, "tweet")
    deleted = store.delete_by_id(TWEETS, tweet["_id"])
    if deleted is None:
        raise StoreFailure("Something went wrong while deleting tweet")
    store.delete_many(LIKES, {"tweet": tweet["_id"]})
    return to_str_id(deleted)


# -------------------- Likes --------------------

def toggle_target_like(store: EntityStore, target_kind: str, target_id: str, actor_id: str) -> Dict[str, Any]:
    result = toggle_like(store, target_kind, target_id, actor_id)
    return {
        "target_kind": result.target_kind,
        "target_id": result.target_id,
        "state": result.state.value,
        "is_liked": result.active,
        "likes_count": _likes_count(store, target_kind, result.target_id),
    }


def list_liked_videos(store: EntityStore, actor_id: str, page=None, limit=None) -> Page:
    result = paginate(store, LIKES, build_liked_videos_pipeline(actor_id), page, limit)
    return result.with_results(materialize(store, "video", result.results, actor_id))


# -------------------- Subscriptions & Channel --------------------

def toggle_channel_subscription(store: EntityStore, channel_id: str, actor_id: str) -> Dict[str, Any]:
    result = toggle_subscription(store, channel_id, actor_id)
    return {
        "channel_id": result.target_id,
        "state": result.state.value,
        "subscribed": result.active,
        "subscribers_count": store.count(SUBSCRIPTIONS, [{"$match": {"channel": objid(result.target_id)}}]),
    }


def _channel(store: EntityStore, channel_id: str, field: str = "channel_id") -> Dict[str, Any]:
    user = store.find_by_id(USERS, objid(channel_id, field))
    if not user:
        raise NotFound("Channel not found")
    return user


def get_channel(store: EntityStore, channel_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
    return channel_profile(store, _channel(store, channel_id), actor_id)


def list_channel_subscribers(store: EntityStore, channel_id: str, page=None, limit=None) -> Page:
    channel = _channel(store, channel_id)
    result = paginate(store, SUBSCRIPTIONS, build_subscribers_pipeline(channel["_id"]), page, limit)
    return result.with_results([to_str_id(u) for u in result.results])


def list_subscribed_channels(store: EntityStore, subscriber_id: str, page=None, limit=None) -> Page:
    subscriber = _channel(store, subscriber_id, "subscriber_id")
    result = paginate(store, SUBSCRIPTIONS, build_subscribed_channels_pipeline(subscriber["_id"]), page, limit)
    return result.with_results([to_str_id(u) for u in result.results])
