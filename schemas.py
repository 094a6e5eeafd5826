"""
Database Schemas for the video sharing backend

Each document model maps to a MongoDB collection. The collection name is the lowercase of the class name.

Collections:
- User -> user (owned by the identity service, read only here)
- Video -> video
- Comment -> comment
- Tweet -> tweet
- Like -> like
- Subscription -> subscription

References between collections are stored as ObjectIds, never embedded documents.
"""

from typing import Any, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, model_validator

MAX_TITLE_LENGTH = 120


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    def to_document(self) -> dict:
        # Absent references must stay absent so partial unique indexes apply
        return self.model_dump(exclude_none=True)


class MediaRef(BaseModel):
    url: str
    storage_id: str


class UserProfile(BaseModel):
    """Public projection of a user shown next to their content."""

    id: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar: Optional[str] = None
    email: Optional[str] = None


class Video(Document):
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field(..., min_length=1)
    duration: float = Field(0, ge=0, description="Length in seconds")
    video_file: MediaRef
    thumbnail: MediaRef
    owner: ObjectId
    is_published: bool = True
    views: int = 0


class Comment(Document):
    content: str = Field(..., min_length=1, max_length=1000)
    video: ObjectId
    owner: ObjectId


class Tweet(Document):
    content: str = Field(..., min_length=1, max_length=280)
    owner: ObjectId


class Like(Document):
    liked_by: ObjectId
    video: Optional[ObjectId] = None
    comment: Optional[ObjectId] = None
    tweet: Optional[ObjectId] = None

    @model_validator(mode="after")
    def exactly_one_target(self):
        targets = [t for t in (self.video, self.comment, self.tweet) if t is not None]
        if len(targets) != 1:
            raise ValueError("A like must reference exactly one of video, comment or tweet")
        return self


class Subscription(Document):
    subscriber: ObjectId = Field(..., description="The user who subscribes")
    channel: ObjectId = Field(..., description="The user id of the channel being subscribed to")


# -------------------- Requests --------------------

class ContentRequest(BaseModel):
    content: str = Field(..., min_length=1)


SortField = Literal["created_at", "views", "duration"]
SortDirection = Literal["asc", "desc"]


class VideoQuery(BaseModel):
    """Recognized options for listing videos."""

    text_query: Optional[str] = None
    owner_id: Optional[str] = None
    published_only: bool = True
    sort_by: str = "created_at"
    sort_type: str = "desc"


# -------------------- Responses --------------------

class ApiResponse(BaseModel):
    status: int = 200
    success: bool = True
    data: Any = None
    message: str = "Success"
