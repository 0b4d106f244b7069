"""
Relation ledger: subscription edges (subscriber -> channel) and reaction
edges (user -> video).

Every mutation is a read-check-write sequence followed by a counter resync of
the owning entity. Unique pair indexes (see ``database.ensure_indexes``) turn
a concurrent duplicate insert into a ``DuplicateKeyError``. A raced
subscription is treated as "edge already present"; a raced reaction is
toggled once more against the edge that won.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from counters import resync_user, resync_video
from database import LEDGER_ORDER, NEWEST_FIRST, create_document, get_documents, objid
from errors import InvalidOperation, NotFound
from schemas import Polarity, Reaction, Subscription

logger = structlog.get_logger(__name__)


class ReactionResult(str, Enum):
    SET = "set"
    SWITCHED = "switched"
    UNSET = "unset"


def _get_channel(db: Database, channel_id: str) -> Dict[str, Any]:
    channel = db["user"].find_one({"_id": objid(channel_id)})
    if not channel:
        raise NotFound("Channel not found")
    return channel


def _get_video(db: Database, video_id: str) -> Dict[str, Any]:
    video = db["video"].find_one({"_id": objid(video_id)})
    if not video:
        raise NotFound("Video not found")
    return video


# -------------------- Subscriptions --------------------

def subscribe(db: Database, subscriber_id: str, channel_id: str) -> Dict[str, Any]:
    """Subscribe ``subscriber_id`` to ``channel_id`` and return the refreshed channel."""
    if subscriber_id == channel_id:
        raise InvalidOperation("Cannot subscribe to yourself")
    _get_channel(db, channel_id)
    edge = {"subscriber_id": subscriber_id, "channel_id": channel_id}
    if not db["subscription"].find_one(edge):
        try:
            create_document(db, "subscription", Subscription(**edge))
            logger.info("subscribed", subscriber_id=subscriber_id, channel_id=channel_id)
        except DuplicateKeyError:
            logger.info("subscribe_raced", subscriber_id=subscriber_id, channel_id=channel_id)
    resync_user(db, channel_id)
    return _get_channel(db, channel_id)


def unsubscribe(db: Database, subscriber_id: str, channel_id: str) -> Dict[str, Any]:
    if subscriber_id == channel_id:
        raise InvalidOperation("Cannot unsubscribe from yourself")
    _get_channel(db, channel_id)
    result = db["subscription"].delete_one({"subscriber_id": subscriber_id, "channel_id": channel_id})
    if result.deleted_count:
        logger.info("unsubscribed", subscriber_id=subscriber_id, channel_id=channel_id)
    resync_user(db, channel_id)
    return _get_channel(db, channel_id)


def is_subscribed(db: Database, subscriber_id: str, channel_id: str) -> bool:
    return db["subscription"].find_one({"subscriber_id": subscriber_id, "channel_id": channel_id}) is not None


def subscribed_channel_ids(db: Database, user_id: str) -> List[str]:
    edges = get_documents(db, "subscription", {"subscriber_id": user_id}, sort=LEDGER_ORDER)
    return [e["channel_id"] for e in edges]


def list_subscriptions(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """Channels ``user_id`` subscribes to, as ``id``/``username``/``avatar`` projections in ledger order."""
    channel_ids = subscribed_channel_ids(db, user_id)
    if not channel_ids:
        return []
    users = db["user"].find(
        {"_id": {"$in": [objid(c) for c in channel_ids]}},
        {"username": 1, "avatar": 1},
    )
    by_id = {str(u["_id"]): u for u in users}
    subscriptions = []
    for channel_id in channel_ids:
        user = by_id.get(channel_id)
        if user:
            subscriptions.append({"id": channel_id, "username": user["username"], "avatar": user.get("avatar")})
    return subscriptions


# -------------------- Reactions --------------------

def get_reaction(db: Database, user_id: str, video_id: str) -> Optional[Polarity]:
    edge = db["reaction"].find_one({"user_id": user_id, "video_id": video_id})
    return Polarity(edge["value"]) if edge else None


def _toggle_reaction(db: Database, user_id: str, video_id: str, polarity: Polarity) -> ReactionResult:
    existing = db["reaction"].find_one({"user_id": user_id, "video_id": video_id})
    if existing and existing["value"] == polarity:
        db["reaction"].delete_one({"_id": existing["_id"], "value": int(polarity)})
        return ReactionResult.UNSET
    if existing:
        db["reaction"].update_one({"_id": existing["_id"]}, {"$set": {"value": int(polarity)}})
        return ReactionResult.SWITCHED
    create_document(db, "reaction", Reaction(user_id=user_id, video_id=video_id, value=polarity))
    return ReactionResult.SET


def set_reaction(db: Database, user_id: str, video_id: str, polarity: Polarity) -> Tuple[ReactionResult, Dict[str, Any]]:
    """Toggle ``polarity`` for (user, video).

    Same polarity already recorded -> the edge is removed (UNSET).
    Opposite polarity recorded -> the edge is flipped in place (SWITCHED).
    No edge -> one is created (SET).
    If a concurrent request creates the edge between our read and our
    insert, the toggle is applied once more against that edge.
    The video's like/dislike counters are resynced in every case.
    """
    polarity = Polarity(polarity)
    _get_video(db, video_id)
    try:
        result = _toggle_reaction(db, user_id, video_id, polarity)
    except DuplicateKeyError:
        logger.info("reaction_raced", user_id=user_id, video_id=video_id)
        result = _toggle_reaction(db, user_id, video_id, polarity)
    logger.info("reaction", user_id=user_id, video_id=video_id, polarity=polarity.name, result=result.value)
    resync_video(db, video_id)
    return result, _get_video(db, video_id)


def liked_video_ids(db: Database, user_id: str, skip: int = 0, limit: Optional[int] = None) -> List[str]:
    edges = get_documents(
        db, "reaction", {"user_id": user_id, "value": int(Polarity.LIKE)},
        sort=NEWEST_FIRST, skip=skip, limit=limit,
    )
    return [e["video_id"] for e in edges]


def count_liked(db: Database, user_id: str) -> int:
    return db["reaction"].count_documents({"user_id": user_id, "value": int(Polarity.LIKE)})


def purge_video(db: Database, video_id: str) -> None:
    """Drop the reaction edges and comments attached to a deleted video."""
    reactions = db["reaction"].delete_many({"video_id": video_id}).deleted_count
    comments = db["comment"].delete_many({"video_id": video_id}).deleted_count
    logger.info("video_purged", video_id=video_id, reactions=reactions, comments=comments)
