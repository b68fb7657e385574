"""Passwordless (magic-link) authentication.

Flow: ``POST /auth/magic-link`` issues a short-lived signed token and hands a
link carrying it to :func:`deliver_magic_link`. ``POST /auth/verify`` trades
the token for a server-side session plus a bearer access token. Requests are
authenticated by the bearer token, the ``X-Session-Token`` header or the
``session_token`` cookie, in that order.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import delete as sqlalchemy_delete
from sqlmodel import select

from . import config
from .db import async_session
from .models import Session, User
from .utils import ensure_aware, normalize_email

logger = logging.getLogger(__name__)

SECRET_KEY = config.SECRET_KEY
ALGORITHM = "HS256"

MAGIC_TOKEN_TYPE = "magic"
ACCESS_TOKEN_TYPE = "access"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/verify", auto_error=False)


def user_out(user: User) -> dict:
    return {"id": user.id, "email": user.email}


def _encode(claims: dict, expires_delta: timedelta) -> str:
    to_encode = claims.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    # RFC 7519 recommends NumericDate (seconds since epoch). Encode as int.
    to_encode.update({"exp": int(expire.timestamp())})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_magic_link_token(email: str, expires_delta: Optional[timedelta] = None) -> str:
    email = normalize_email(email)
    delta = expires_delta or timedelta(minutes=config.MAGIC_LINK_EXPIRE_MINUTES)
    # nonce keeps two links requested in the same second distinct
    return _encode({"sub": email, "type": MAGIC_TOKEN_TYPE, "nonce": secrets.token_hex(8)}, delta)


def verify_magic_link_token(token: str) -> Optional[str]:
    """Return the email a magic-link token was issued for, or None."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info('magic link token rejected: %s', str(e))
        return None
    if payload.get("type") != MAGIC_TOKEN_TYPE:
        logger.info('magic link token rejected: type mismatch (got %s)', payload.get('type'))
        return None
    try:
        return normalize_email(payload.get("sub"))
    except ValueError:
        return None


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    delta = expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode({"sub": user.email, "uid": user.id, "type": ACCESS_TOKEN_TYPE}, delta)


def magic_link_url(token: str) -> str:
    return f"{config.MAGIC_LINK_BASE_URL}?token={token}"


def deliver_magic_link(email: str, link: str) -> None:
    """Hand the sign-in link to the user.

    Outbound mail is not wired up; the link is written to the log so an
    operator (or a developer running locally) can pick it up.
    """
    logger.info('magic link for %s: %s', email, link)


async def get_user_by_email(email: str) -> Optional[User]:
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.email == email))
        return q.first()


async def get_or_create_user(email: str) -> User:
    email = normalize_email(email)
    user = await get_user_by_email(email)
    if user:
        return user
    async with async_session() as sess:
        user = User(email=email)
        sess.add(user)
        await sess.commit()
        await sess.refresh(user)
    logger.info('created user id=%s for %s', user.id, email)
    return user


async def create_session_for_user(user: User, token: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
    """Create a server-side session and return the session token.

    If token is provided it will be used; otherwise a secure random token
    is generated.
    """
    sess_token = token or secrets.token_urlsafe(32)
    delta = expires_delta or timedelta(days=config.SESSION_EXPIRE_DAYS)
    expires_at = datetime.now(timezone.utc) + delta
    async with async_session() as s:
        s.add(Session(session_token=sess_token, user_id=user.id, expires_at=expires_at))
        await s.commit()
    return sess_token


async def get_user_by_session_token(session_token: str) -> Optional[User]:
    async with async_session() as s:
        q = await s.exec(select(Session).where(Session.session_token == session_token))
        sess_row = q.first()
        if not sess_row:
            return None
        expires_at = ensure_aware(sess_row.expires_at)
        if expires_at and expires_at < datetime.now(timezone.utc):
            # expired: delete row and return None
            await s.exec(sqlalchemy_delete(Session).where(Session.session_token == session_token))
            await s.commit()
            logger.info('expired session removed for user_id=%s', sess_row.user_id)
            return None
        q2 = await s.exec(select(User).where(User.id == sess_row.user_id))
        return q2.first()


async def delete_session(session_token: str) -> None:
    async with async_session() as s:
        await s.exec(sqlalchemy_delete(Session).where(Session.session_token == session_token))
        await s.commit()


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), request: Request = None) -> Optional[User]:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    # A bearer token is authoritative when present: a tampered token is an
    # error even if a valid session cookie rides along.
    if token is None:
        if request is None:
            return None
        session_token = request.headers.get("X-Session-Token") or request.cookies.get("session_token")
        if not session_token:
            return None
        return await get_user_by_session_token(session_token)
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception
    if payload.get("type") != ACCESS_TOKEN_TYPE or not payload.get("sub"):
        raise credentials_exception
    user = await get_user_by_email(payload["sub"])
    if user is None:
        raise credentials_exception
    return user


async def require_login(user: Optional[User] = Depends(get_current_user)) -> User:
    """Dependency that enforces an authenticated user.

    Returns the User when present, otherwise raises 401 Unauthorized.
    """
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    return user
