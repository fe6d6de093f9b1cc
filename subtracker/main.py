"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import Response

from subtracker.config import get_settings
from subtracker.infrastructure.db.session import check_db_connection
from subtracker.application.scheduler import start_scheduler, shutdown_scheduler
from subtracker.api.v1 import auth, subscriptions, users, reminders

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Logs unhandled exceptions (sync routes included) and answers 500"""

    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tb_str = traceback.format_exc()
            logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
            return Response(content=f"Internal Server Error: {exc}", status_code=500)


def create_app(enable_scheduler: bool | None = None) -> FastAPI:
    """
    Application factory

    Args:
        enable_scheduler: override SCHEDULER_ENABLED (tests pass False)
    """
    settings = get_settings()
    if enable_scheduler is None:
        enable_scheduler = settings.SCHEDULER_ENABLED

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if enable_scheduler:
            start_scheduler()
        try:
            yield
        finally:
            if enable_scheduler:
                shutdown_scheduler()

    app = FastAPI(
        title="SubTracker",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.add_middleware(ErrorLoggingMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY
    )

    app.include_router(auth.router)
    app.include_router(subscriptions.router)
    app.include_router(users.router)
    app.include_router(reminders.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (database reachable)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "subtracker.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
