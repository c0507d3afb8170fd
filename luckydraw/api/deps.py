from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AuthContext, authenticate
from ..config import Settings
from ..prize_draw.ranks import RankSelector


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield a session for one request; it is closed (and rolled back) afterwards."""
    async with request.app.state.sessionmaker() as session:
        yield session


def admin_context(settings: Settings, secret) -> AuthContext:
    """Authenticate the ``secret`` carried in an admin request body."""
    return authenticate(secret if isinstance(secret, str) else None, settings.admin_secret)


def get_selector(request: Request) -> RankSelector:
    return request.app.state.selector
