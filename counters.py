"""
Derived counters on users and videos.

Counts are always recomputed from the ledger collections and written with
``$set``. Re-running a resync after a race converges on the correct value.
"""
from enum import Enum
from typing import Dict, Union

import structlog
from pymongo.database import Database

from database import objid
from schemas import Polarity

logger = structlog.get_logger(__name__)


class EntityKind(str, Enum):
    USER = "user"
    VIDEO = "video"


def resync_user(db: Database, user_id: str) -> int:
    subscribers_count = db["subscription"].count_documents({"channel_id": user_id})
    db["user"].update_one({"_id": objid(user_id)}, {"$set": {"subscribers_count": subscribers_count}})
    logger.debug("resync_user", user_id=user_id, subscribers_count=subscribers_count)
    return subscribers_count


def resync_video(db: Database, video_id: str) -> Dict[str, int]:
    counts = {
        "likes_count": db["reaction"].count_documents({"video_id": video_id, "value": int(Polarity.LIKE)}),
        "dislikes_count": db["reaction"].count_documents({"video_id": video_id, "value": int(Polarity.DISLIKE)}),
        "comments_count": db["comment"].count_documents({"video_id": video_id}),
    }
    db["video"].update_one({"_id": objid(video_id)}, {"$set": counts})
    logger.debug("resync_video", video_id=video_id, **counts)
    return counts


def resync(db: Database, kind: Union[EntityKind, str], entity_id: str):
    kind = EntityKind(kind)
    if kind is EntityKind.USER:
        return resync_user(db, entity_id)
    return resync_video(db, entity_id)
