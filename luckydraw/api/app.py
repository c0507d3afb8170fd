import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import Settings, load_settings
from ..db.engine import get_sessionmaker, make_engine
from ..errors import LuckyDrawError
from ..prize_draw.ranks import RankSelector
from .routes import router

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _handle_domain_error(request: Request, exc: LuckyDrawError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    elif exc.status_code == 409:
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    return _error(exc.status_code, exc.message)


async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body') or 'body'}: "
        f"{err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    return _error(400, f"invalid request: {details}")


async def _handle_store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Store failures are surfaced verbatim so operators can diagnose them.
    logger.exception(f"Store failure on {request.method} {request.url.path}")
    return _error(500, str(exc))


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error(500, f"server error: {exc}")


def create_app(
    settings: Optional[Settings] = None,
    sessionmaker: Optional[async_sessionmaker] = None,
) -> FastAPI:
    """Build the HTTP application.

    Parameters
    ----------
    settings : Optional[Settings], default: None
        Configuration; loaded from the environment when omitted. Invalid
        rank weights fail here, before the server accepts requests.
    sessionmaker : Optional[async_sessionmaker], default: None
        Session factory to use instead of one bound to ``settings.db_url``.
        The application only disposes engines it created itself.
    """

    settings = settings or load_settings()
    owned_engine = None
    if sessionmaker is None:
        owned_engine = make_engine(settings.db_url, echo=settings.db_echo)
        sessionmaker = get_sessionmaker(owned_engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("luckydraw API starting")
        yield
        if owned_engine is not None:
            await owned_engine.dispose()

    app = FastAPI(title="luckydraw", lifespan=lifespan)
    app.state.settings = settings
    app.state.sessionmaker = sessionmaker
    app.state.selector = RankSelector(settings.rank_weights)

    app.add_exception_handler(LuckyDrawError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(SQLAlchemyError, _handle_store_error)
    app.add_exception_handler(500, _handle_unexpected_error)

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        """Log each request with its status and timing."""
        start_time = time.time()
        response = await call_next(request)
        elapsed = time.time() - start_time
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed * 1000:.1f} ms)"
        )
        return response

    app.include_router(router, prefix="/api")
    return app


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    """Run the API with uvicorn (``luckydraw-api`` console script)."""
    import uvicorn

    settings = load_settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
