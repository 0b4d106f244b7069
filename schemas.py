"""
Database Schemas and API models for the video sharing backend

Each collection model maps to a MongoDB collection. The collection name is the lowercase of the class name.

Collections:
- User -> user
- Video -> video
- Comment -> comment
- Subscription -> subscription
- Reaction -> reaction

API models use camelCase on the wire (``subscribersCount``, ``isSubscribed``)
and accept either camelCase or snake_case in request bodies.
"""

from datetime import datetime
from enum import IntEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


class Polarity(IntEnum):
    LIKE = 1
    DISLIKE = -1


# -------------------- Collections --------------------

class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password_hash: str = Field(..., description="Bcrypt hash")
    avatar: Optional[str] = None
    cover: Optional[str] = None
    channel_description: Optional[str] = None
    subscribers_count: int = Field(0, ge=0)


class Video(BaseModel):
    user_id: str = Field(..., description="Owner user id as string")
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    vod_video_id: str = Field(..., description="Media id on the VOD service")
    cover: Optional[str] = None
    likes_count: int = Field(0, ge=0)
    dislikes_count: int = Field(0, ge=0)
    comments_count: int = Field(0, ge=0)


class Comment(BaseModel):
    video_id: str
    user_id: str
    content: str = Field(..., min_length=1, max_length=500)


class Subscription(BaseModel):
    subscriber_id: str = Field(..., description="The user id of the subscriber")
    channel_id: str = Field(..., description="The user id of the channel being subscribed to")


class Reaction(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    video_id: str
    value: Polarity = Field(..., description="1 for like; -1 for dislike")


# -------------------- Requests --------------------

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(ApiModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginRequest(ApiModel):
    email: Optional[EmailStr] = None
    username: Optional[str] = None
    password: str

    @model_validator(mode="after")
    def _require_login(self):
        if not self.email and not self.username:
            raise ValueError("email or username is required")
        return self

    @property
    def login(self) -> str:
        return self.email or self.username


class UserUpdateRequest(ApiModel):
    username: Optional[str] = Field(None, min_length=3, max_length=30)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=1)
    channel_description: Optional[str] = None
    avatar: Optional[str] = None
    cover: Optional[str] = None


class VideoCreateRequest(ApiModel):
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    vod_video_id: str = Field(..., min_length=1)
    cover: Optional[str] = None


class VideoUpdateRequest(ApiModel):
    title: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    vod_video_id: Optional[str] = Field(None, min_length=1)
    cover: Optional[str] = None


class CommentCreateRequest(ApiModel):
    content: str = Field(..., min_length=1, max_length=500)


# -------------------- Responses --------------------

class AuthUser(ApiModel):
    id: str
    username: str
    email: str
    avatar: Optional[str] = None
    cover: Optional[str] = None
    channel_description: Optional[str] = None
    token: Optional[str] = None


class AuthUserResponse(ApiModel):
    user: AuthUser


class Profile(ApiModel):
    id: str
    username: str
    email: str
    avatar: Optional[str] = None
    cover: Optional[str] = None
    channel_description: Optional[str] = None
    subscribers_count: int = 0
    is_subscribed: bool = False


class ProfileResponse(ApiModel):
    user: Profile


class UserRef(ApiModel):
    id: str
    username: str
    avatar: Optional[str] = None


class SubscriptionsResponse(ApiModel):
    subscriptions: List[UserRef]


class VideoOwner(UserRef):
    subscribers_count: int = 0
    is_subscribed: Optional[bool] = None


class VideoOut(ApiModel):
    id: str
    user_id: str
    user: Optional[VideoOwner] = None
    title: str
    description: Optional[str] = None
    vod_video_id: str
    cover: Optional[str] = None
    likes_count: int = 0
    dislikes_count: int = 0
    comments_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_liked: Optional[bool] = None
    is_disliked: Optional[bool] = None


class VideoResponse(ApiModel):
    video: VideoOut


class VideoPage(ApiModel):
    videos: List[VideoOut]
    videos_count: int


class CommentOut(ApiModel):
    id: str
    video_id: str
    user_id: str
    user: Optional[UserRef] = None
    content: str
    created_at: datetime


class CommentResponse(ApiModel):
    comment: CommentOut


class CommentPage(ApiModel):
    comments: List[CommentOut]
    comments_count: int
