import secrets
import uuid

from fastapi import Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator, Optional

from .config import Config
from ..db.database import AsyncSessionLocal
from ..exceptions import AdminKeyRequiredException


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Asynchronous dependency that provides a database session for FastAPI routes.

    Yields:
        AsyncSession: An instance of the asynchronous database session.

    Usage:
        Use as a dependency in FastAPI endpoints to access the database session.
        The session is automatically closed after the request is processed.
    """

    async with AsyncSessionLocal() as db:
        yield db
        await db.close()


async def get_session_id(request: Request, response: Response) -> str:
    """
    Resolve the guest session key that carts, discount usage and orders are keyed on.

    The key lives in a cookie; a shopper without one gets a fresh key, set on the
    response so the next request carries it.
    """
    session_id = request.cookies.get(Config.SESSION_COOKIE_NAME)
    if session_id:
        return session_id

    session_id = uuid.uuid4().hex
    response.set_cookie(
        key=Config.SESSION_COOKIE_NAME,
        value=session_id,
        max_age=Config.SESSION_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    return session_id


async def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    """Allow the request through only when it carries the back-office key"""
    if not x_admin_key or not secrets.compare_digest(x_admin_key, Config.ADMIN_API_KEY):
        raise AdminKeyRequiredException()
