import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ChatBackend.crud.users import (create_auth_session, create_user, delete_auth_session, get_auth_session, get_user, get_user_by_username)
from ChatBackend.errors import Conflict, Unauthorized, ValidationError
from ChatBackend.models.user_model import User

logger = logging.getLogger(__name__)

USERNAME_MIN = 3
USERNAME_MAX = 50
PASSWORD_MIN = 8

# scrypt cost parameters (N, r, p) and derived key length
_SCRYPT_N = 16384
_SCRYPT_R = 8
_SCRYPT_P = 1
_KEY_LEN = 64


def _scrypt(password: str, salt: str) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        maxmem=64 * 1024 * 1024,
        dklen=_KEY_LEN,
    )


# Returns the stored credential form "salt:hash" (both hex)
def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    return f"{salt}:{_scrypt(password, salt).hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, sep, hashed = (stored or "").partition(":")
    if not sep or not salt or not hashed:
        return False
    try:
        expected = bytes.fromhex(hashed)
    except ValueError:
        return False
    return hmac.compare_digest(_scrypt(password, salt), expected)


def normalize_username(raw: Optional[str]) -> str:
    username = (raw or "").strip().lower()
    if not (USERNAME_MIN <= len(username) <= USERNAME_MAX):
        raise ValidationError(f"Username must be {USERNAME_MIN}-{USERNAME_MAX} characters")
    return username


# Creates an account; the caller commits
def register(db: Session, username: Optional[str], password: Optional[str]) -> User:
    username = normalize_username(username)
    if not isinstance(password, str) or len(password) < PASSWORD_MIN:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN} characters")

    if get_user_by_username(db, username) is not None:
        raise Conflict("Username already taken")
    try:
        user = create_user(db, username, hash_password(password))
    except IntegrityError:
        # Lost a race with a concurrent registration of the same name
        db.rollback()
        raise Conflict("Username already taken")
    logger.info("auth.register: user=%s", user.id)
    return user


def login(db: Session, username: Optional[str], password: Optional[str]) -> User:
    name = (username or "").strip().lower()
    user = get_user_by_username(db, name) if name else None
    if user is None or not isinstance(password, str) or not verify_password(password, user.password):
        raise Unauthorized("Invalid username or password")
    return user


def start_session(db: Session, user_id: int, ttl_days: int) -> str:
    token = secrets.token_urlsafe(32)
    expires_at = datetime.now(timezone.utc) + timedelta(days=ttl_days)
    create_auth_session(db, token, user_id, expires_at)
    return token


def end_session(db: Session, token: Optional[str]) -> None:
    if token:
        delete_auth_session(db, token)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def session_token(request: Request) -> Optional[str]:
    return request.cookies.get(request.app.state.settings.session_cookie_name) or None


# Resolves the session cookie to a user id or raises Unauthorized
def require_auth(request: Request, db: Session) -> int:
    token = session_token(request)
    if not token:
        raise Unauthorized()

    row = get_auth_session(db, token)
    if row is None:
        raise Unauthorized()
    if _as_utc(row.expires_at) <= datetime.now(timezone.utc):
        delete_auth_session(db, token)
        db.commit()
        raise Unauthorized("Session expired")
    return row.user_id


def require_user(request: Request, db: Session) -> User:
    user = get_user(db, require_auth(request, db))
    if user is None:
        raise Unauthorized()
    return user
