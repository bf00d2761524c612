"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from lifeledger.api.v1 import budgets
from lifeledger.application.errors import (
    BudgetNotFoundError,
    BudgetValidationError,
    StorageUnavailableError,
)
from lifeledger.application.notifier import build_notifier
from lifeledger.application.scheduler import BudgetScheduler
from lifeledger.config import Settings, get_settings
from lifeledger.infrastructure.db.session import (
    check_db_connection,
    create_db_engine,
    create_session_factory,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Catches everything the routes did not handle, including sync routes"""

    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tb_str = traceback.format_exc()
            logger.error("\n%s\nERROR on %s %s\n%s%s", "=" * 60, request.method, request.url.path, tb_str, "=" * 60)
            return Response(content=f"Internal Server Error: {exc}", status_code=500)


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(BudgetValidationError)
    async def validation_error(request: Request, exc: BudgetValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(BudgetNotFoundError)
    async def not_found(request: Request, exc: BudgetNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StorageUnavailableError)
    async def storage_unavailable(request: Request, exc: StorageUnavailableError):
        logger.warning("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> FastAPI:
    """
    Application factory - создаёт и настраивает FastAPI приложение

    The engine and session factory are built here once; tests pass their own.
    The budget scheduler runs inside the app process when SCHEDULER_ENABLED.
    """
    settings = settings or get_settings()
    engine = None
    if session_factory is None:
        engine = create_db_engine(settings)
        session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = None
        if settings.SCHEDULER_ENABLED:
            scheduler = BudgetScheduler(session_factory, build_notifier(settings), settings)
            scheduler.start()
        app.state.scheduler = scheduler
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop()
            if engine is not None:
                engine.dispose()

    app = FastAPI(
        title="LifeLedger",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory

    app.add_middleware(ErrorLoggingMiddleware)
    _register_error_handlers(app)

    app.include_router(budgets.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (проверяет доступность БД)"""
        check_db_connection(settings, engine or session_factory.kw.get("bind"))
        return "ok"

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "lifeledger.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
