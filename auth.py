"""
Credentials and request authentication.

Passwords are stored as salted bcrypt digests. Sessions are stateless signed
JWTs carrying the user id in ``sub``; there is no server-side session table,
so a token stays valid until it expires.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
import structlog
from fastapi import Depends, Header
from passlib.context import CryptContext
from pymongo.database import Database

from config import get_settings
from database import get_db, objid
from errors import InvalidCredential, NotFound, Unauthenticated, ValidationError

logger = structlog.get_logger(__name__)

settings = get_settings()

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)


# -------------------- Passwords --------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


# -------------------- Tokens --------------------

def create_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token for ``user_id`` that expires after ``expires_delta`` (default: one day)."""
    now = datetime.utcnow()
    if expires_delta is None:
        expires_delta = timedelta(seconds=settings.jwt_expires_in)
    payload = {"sub": str(user_id), "iat": now, "exp": now + expires_delta}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> str:
    """Return the user id carried by ``token``.

    Raises InvalidCredential when the signature does not match, the token is
    malformed or it has expired.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise InvalidCredential("Token expired")
    except jwt.PyJWTError:
        raise InvalidCredential("Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise InvalidCredential("Invalid token")
    return user_id


def authenticate(db: Database, login: str, password: str) -> Dict[str, Any]:
    """Find the account matching ``login`` (username or email) and check its password."""
    user = db["user"].find_one({"$or": [{"email": login}, {"username": login}]})
    if not user:
        raise NotFound("User not found")
    if not verify_password(password, user.get("password_hash", "")):
        logger.info("login_rejected", user_id=str(user["_id"]))
        raise InvalidCredential("Incorrect password")
    return user


# -------------------- Access gate --------------------

def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


class AccessGate:
    """Dependency resolving the ``Authorization: Bearer`` header to a user document.

    With ``required=False`` a request without a token proceeds anonymously
    (the dependency yields ``None``). A token that is present but invalid is
    always rejected.
    """

    def __init__(self, required: bool = True):
        self.required = required

    def __call__(
        self,
        authorization: Optional[str] = Header(default=None),
        db: Database = Depends(get_db),
    ) -> Optional[Dict[str, Any]]:
        token = bearer_token(authorization)
        if token is None:
            if self.required:
                raise Unauthenticated()
            return None
        try:
            user_id = verify_token(token)
            user = db["user"].find_one({"_id": objid(user_id)})
        except (InvalidCredential, ValidationError) as e:
            raise Unauthenticated(e.detail)
        if not user:
            raise Unauthenticated("User no longer exists")
        return user


require_user = AccessGate()
optional_user = AccessGate(required=False)
