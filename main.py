import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import ledger
from auth import authenticate, bearer_token, create_token, hash_password, optional_user, require_user
from config import DEFAULT_JWT_SECRET, Settings, get_settings
from counters import resync_video
from database import (
    NEWEST_FIRST,
    create_document,
    ensure_indexes,
    get_db,
    get_documents,
    objid,
    page_offset,
    to_str_id,
)
from errors import Conflict, Forbidden, NotFound, ValidationError, register_exception_handlers
from schemas import (
    AuthUserResponse,
    Comment,
    CommentCreateRequest,
    CommentPage,
    CommentResponse,
    LoginRequest,
    Polarity,
    ProfileResponse,
    RegisterRequest,
    SubscriptionsResponse,
    User,
    UserUpdateRequest,
    Video,
    VideoCreateRequest,
    VideoPage,
    VideoResponse,
    VideoUpdateRequest,
)
from vod import VodClient, get_vod_client

settings = get_settings()

# -------------------- Logging --------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level)
    ),
)

logger = structlog.get_logger()


def warn_insecure_defaults(settings: Settings) -> None:
    if settings.jwt_secret == DEFAULT_JWT_SECRET and not settings.debug:
        logger.warning("jwt_secret_is_default", hint="set VIDSHARE_JWT_SECRET")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting vidshare", version=settings.app_version, database=settings.database_name)
    warn_insecure_defaults(settings)
    ensure_indexes(get_db())
    yield
    logger.info("Shutting down vidshare")


app = FastAPI(title="vidshare", version=settings.app_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

router = APIRouter()


# -------------------- Helpers --------------------

def pagination(
    page_num: int = Query(1, ge=1, alias="pageNum"),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size, alias="pageSize"),
) -> Tuple[int, int]:
    return page_offset(page_num, page_size), page_size


def auth_user(user: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
    payload = to_str_id(user)
    payload["token"] = token
    return payload


def profile(user: Dict[str, Any], is_subscribed: bool) -> Dict[str, Any]:
    payload = to_str_id(user)
    payload["is_subscribed"] = is_subscribed
    return payload


def find_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": objid(user_id)})
    if not user:
        raise NotFound("User not found")
    return user


def find_video(db: Database, video_id: str) -> Dict[str, Any]:
    video = db["video"].find_one({"_id": objid(video_id)})
    if not video:
        raise NotFound("Video not found")
    return video


def users_by_id(db: Database, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    ids = [objid(u) for u in set(user_ids)]
    if not ids:
        return {}
    return {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": ids}})}


def video_payload(video: Dict[str, Any], owner: Optional[Dict[str, Any]] = None, **extra) -> Dict[str, Any]:
    payload = to_str_id(video)
    payload["user"] = to_str_id(owner) if owner else None
    payload.update(extra)
    return payload


def video_list(db: Database, videos: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    owners = users_by_id(db, (v["user_id"] for v in videos))
    return [video_payload(v, owners.get(v["user_id"])) for v in videos]


def video_page(db: Database, filter_dict: Dict[str, Any], skip: int, limit: int) -> Dict[str, Any]:
    videos = get_documents(db, "video", filter_dict, sort=NEWEST_FIRST, skip=skip, limit=limit)
    return {
        "videos": video_list(db, videos),
        "videos_count": db["video"].count_documents(filter_dict),
    }


def comment_payload(comment: Dict[str, Any], author: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    payload = to_str_id(comment)
    payload["user"] = to_str_id(author) if author else None
    return payload


def require_owner(resource: Dict[str, Any], user: Dict[str, Any]) -> None:
    if resource["user_id"] != str(user["_id"]):
        raise Forbidden()


# -------------------- Basic Routes --------------------

@app.get("/")
def read_root():
    return {"message": "Video Sharing Backend is running", "version": settings.app_version}


@app.get("/health")
def health(db: Database = Depends(get_db)):
    info = {
        "backend": "running",
        "database_connected": False,
        "collections": []
    }
    try:
        info["collections"] = db.list_collection_names()
        info["database_connected"] = True
    except Exception as e:
        logger.warning("health_check_failed", error=str(e))
        info["error"] = str(e)
    return info


# -------------------- Auth --------------------

@router.post("/users", status_code=201, response_model=AuthUserResponse)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    # Uniqueness checks
    if db["user"].find_one({"username": payload.username}):
        raise Conflict("Username already in use")
    if db["user"].find_one({"email": payload.email}):
        raise Conflict("Email already in use")

    try:
        user = create_document(db, "user", User(
            username=payload.username,
            email=payload.email,
            password_hash=hash_password(payload.password),
        ))
    except DuplicateKeyError:
        raise Conflict("Username or email already in use")
    user_id = str(user["_id"])
    logger.info("user_registered", user_id=user_id, username=payload.username)
    return {"user": auth_user(user, create_token(user_id))}


@router.post("/users/login", response_model=AuthUserResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = authenticate(db, payload.login, payload.password)
    return {"user": auth_user(user, create_token(str(user["_id"])))}


@router.get("/user", response_model=AuthUserResponse)
def get_current_user(
    user: Dict[str, Any] = Depends(require_user),
    authorization: Optional[str] = Header(default=None),
):
    return {"user": auth_user(user, bearer_token(authorization))}


@router.patch("/user", response_model=AuthUserResponse)
def update_current_user(
    payload: UserUpdateRequest,
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise ValidationError("Nothing to update")

    if "email" in updates and updates["email"] != user["email"]:
        if db["user"].find_one({"email": updates["email"]}):
            raise Conflict("Email already in use")
    if "username" in updates and updates["username"] != user["username"]:
        if db["user"].find_one({"username": updates["username"]}):
            raise Conflict("Username already in use")
    if "password" in updates:
        updates["password_hash"] = hash_password(updates.pop("password"))

    updates["updated_at"] = datetime.utcnow()
    try:
        db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    except DuplicateKeyError:
        raise Conflict("Username or email already in use")
    logger.info("user_updated", user_id=str(user["_id"]), fields=sorted(k for k in updates if k != "updated_at"))
    return {"user": auth_user(db["user"].find_one({"_id": user["_id"]}))}


# -------------------- Users & Subscriptions --------------------

@router.get("/users/{user_id}", response_model=ProfileResponse)
def get_user(
    user_id: str,
    viewer: Optional[Dict[str, Any]] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    user = find_user(db, user_id)
    subscribed = bool(viewer) and ledger.is_subscribed(db, str(viewer["_id"]), user_id)
    return {"user": profile(user, subscribed)}


@router.post("/users/{user_id}/subscribe", response_model=ProfileResponse)
def subscribe(user_id: str, user: Dict[str, Any] = Depends(require_user), db: Database = Depends(get_db)):
    channel = ledger.subscribe(db, str(user["_id"]), user_id)
    return {"user": profile(channel, True)}


@router.delete("/users/{user_id}/subscribe", response_model=ProfileResponse)
def unsubscribe(user_id: str, user: Dict[str, Any] = Depends(require_user), db: Database = Depends(get_db)):
    channel = ledger.unsubscribe(db, str(user["_id"]), user_id)
    return {"user": profile(channel, False)}


@router.get("/users/{user_id}/subscriptions", response_model=SubscriptionsResponse)
def get_subscriptions(user_id: str, db: Database = Depends(get_db)):
    find_user(db, user_id)
    return {"subscriptions": ledger.list_subscriptions(db, user_id)}


# -------------------- VOD --------------------

@router.get("/vod/CreateUploadVideo")
def create_upload_video(
    request: Request,
    title: str = Query(..., alias="Title"),
    file_name: str = Query(..., alias="FileName"),
    user: Dict[str, Any] = Depends(require_user),
    vod: VodClient = Depends(get_vod_client),
):
    return vod.request("CreateUploadVideo", dict(request.query_params))


@router.get("/vod/RefreshUploadVideo")
def refresh_upload_video(
    request: Request,
    video_id: str = Query(..., alias="VideoId"),
    user: Dict[str, Any] = Depends(require_user),
    vod: VodClient = Depends(get_vod_client),
):
    return vod.request("RefreshUploadVideo", dict(request.query_params))


# -------------------- Videos --------------------

@router.post("/videos", status_code=201, response_model=VideoResponse)
def create_video(
    payload: VideoCreateRequest,
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    video = create_document(db, "video", Video(user_id=str(user["_id"]), **payload.model_dump()))
    logger.info("video_created", video_id=str(video["_id"]), user_id=video["user_id"])
    return {"video": video_payload(video, user)}


@router.get("/videos", response_model=VideoPage)
def list_videos(page: Tuple[int, int] = Depends(pagination), db: Database = Depends(get_db)):
    skip, limit = page
    return video_page(db, {}, skip, limit)


@router.get("/videos/{video_id}", response_model=VideoResponse)
def get_video(
    video_id: str,
    viewer: Optional[Dict[str, Any]] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    video = find_video(db, video_id)
    owner = db["user"].find_one({"_id": objid(video["user_id"])})
    payload = video_payload(video, owner, is_liked=False, is_disliked=False)
    if payload["user"]:
        payload["user"]["is_subscribed"] = False
    if viewer:
        viewer_id = str(viewer["_id"])
        reaction = ledger.get_reaction(db, viewer_id, video_id)
        payload["is_liked"] = reaction is Polarity.LIKE
        payload["is_disliked"] = reaction is Polarity.DISLIKE
        if payload["user"]:
            payload["user"]["is_subscribed"] = ledger.is_subscribed(db, viewer_id, video["user_id"])
    return {"video": payload}


@router.get("/users/{user_id}/videos", response_model=VideoPage)
def list_user_videos(user_id: str, page: Tuple[int, int] = Depends(pagination), db: Database = Depends(get_db)):
    skip, limit = page
    return video_page(db, {"user_id": user_id}, skip, limit)


@router.get("/user/videos/feed", response_model=VideoPage)
def list_feed_videos(
    page: Tuple[int, int] = Depends(pagination),
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    skip, limit = page
    channel_ids = ledger.subscribed_channel_ids(db, str(user["_id"]))
    return video_page(db, {"user_id": {"$in": channel_ids}}, skip, limit)


@router.get("/user/videos/liked", response_model=VideoPage)
def list_liked_videos(
    page: Tuple[int, int] = Depends(pagination),
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    skip, limit = page
    user_id = str(user["_id"])
    video_ids = ledger.liked_video_ids(db, user_id, skip=skip, limit=limit)
    videos = {str(v["_id"]): v for v in db["video"].find({"_id": {"$in": [objid(v) for v in video_ids]}})}
    ordered = [videos[v] for v in video_ids if v in videos]
    return {"videos": video_list(db, ordered), "videos_count": ledger.count_liked(db, user_id)}


@router.patch("/videos/{video_id}", response_model=VideoResponse)
def update_video(
    video_id: str,
    payload: VideoUpdateRequest,
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    video = find_video(db, video_id)
    require_owner(video, user)
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise ValidationError("Nothing to update")
    updates["updated_at"] = datetime.utcnow()
    db["video"].update_one({"_id": video["_id"]}, {"$set": updates})
    return {"video": video_payload(find_video(db, video_id), user)}


@router.delete("/videos/{video_id}", status_code=204)
def delete_video(video_id: str, user: Dict[str, Any] = Depends(require_user), db: Database = Depends(get_db)):
    video = find_video(db, video_id)
    require_owner(video, user)
    db["video"].delete_one({"_id": video["_id"]})
    ledger.purge_video(db, video_id)
    logger.info("video_deleted", video_id=video_id, user_id=str(user["_id"]))
    return Response(status_code=204)


# -------------------- Comments --------------------

@router.post("/videos/{video_id}/comments", status_code=201, response_model=CommentResponse)
def add_comment(
    video_id: str,
    payload: CommentCreateRequest,
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    find_video(db, video_id)
    comment = create_document(db, "comment", Comment(
        video_id=video_id,
        user_id=str(user["_id"]),
        content=payload.content,
    ))
    resync_video(db, video_id)
    logger.info("comment_created", comment_id=str(comment["_id"]), video_id=video_id)
    return {"comment": comment_payload(comment, user)}


@router.get("/videos/{video_id}/comments", response_model=CommentPage)
def list_comments(video_id: str, page: Tuple[int, int] = Depends(pagination), db: Database = Depends(get_db)):
    find_video(db, video_id)
    skip, limit = page
    comments = get_documents(db, "comment", {"video_id": video_id}, sort=NEWEST_FIRST, skip=skip, limit=limit)
    authors = users_by_id(db, (c["user_id"] for c in comments))
    return {
        "comments": [comment_payload(c, authors.get(c["user_id"])) for c in comments],
        "comments_count": db["comment"].count_documents({"video_id": video_id}),
    }


@router.delete("/videos/{video_id}/comments/{comment_id}", status_code=204)
def delete_comment(
    video_id: str,
    comment_id: str,
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    find_video(db, video_id)
    comment = db["comment"].find_one({"_id": objid(comment_id), "video_id": video_id})
    if not comment:
        raise NotFound("Comment not found")
    require_owner(comment, user)
    db["comment"].delete_one({"_id": comment["_id"]})
    resync_video(db, video_id)
    logger.info("comment_deleted", comment_id=comment_id, video_id=video_id)
    return Response(status_code=204)


# -------------------- Likes --------------------

@router.post("/videos/{video_id}/like", response_model=VideoResponse)
def like_video(video_id: str, user: Dict[str, Any] = Depends(require_user), db: Database = Depends(get_db)):
    result, video = ledger.set_reaction(db, str(user["_id"]), video_id, Polarity.LIKE)
    return {"video": video_payload(video, is_liked=result is not ledger.ReactionResult.UNSET, is_disliked=False)}


@router.post("/videos/{video_id}/dislike", response_model=VideoResponse)
def dislike_video(video_id: str, user: Dict[str, Any] = Depends(require_user), db: Database = Depends(get_db)):
    result, video = ledger.set_reaction(db, str(user["_id"]), video_id, Polarity.DISLIKE)
    return {"video": video_payload(video, is_liked=False, is_disliked=result is not ledger.ReactionResult.UNSET)}


app.include_router(router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
