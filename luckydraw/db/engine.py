from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)

import os
from pathlib import Path
from dotenv import load_dotenv
from .utils import resolve_sqlite_url

# Get DB url
load_dotenv()
# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = resolve_sqlite_url(
    os.getenv("DB_URL", "sqlite+aiosqlite:///./dev.db"), ROOT_DIR
)


from typing import Optional

# Seconds a SQLite connection waits on a locked database before failing.
SQLITE_BUSY_TIMEOUT = 30


def make_engine(database_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    url = database_url or DEFAULT_SQLITE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        # Concurrent draws each commit short single-statement transactions;
        # let writers queue on the file lock instead of failing immediately.
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT
    return create_async_engine(
        url,
        echo=echo,
        connect_args=connect_args,
    )


def get_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,  # Keep rows readable after each committed store call
    )
