"""
FastAPI application for the Immochat credential and session service
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import __version__
from .auth_routes import router as auth_router
from .config import config
from .db.engine import get_db, init_db
from .logging_config import RequestIDMiddleware, REQUEST_ID_HEADER, setup_logging
from .middleware import register_exception_handlers
from .oauth_routes import router as oauth_router
from .services.scheduled_jobs import start_scheduler, stop_scheduler
from .user_routes import router as user_router

setup_logging(env=config.ENV, log_level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_db()
    except SQLAlchemyError as e:
        # /health reports the database as down until it is reachable
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    scheduler_enabled = config.ENABLE_SCHEDULER and config.ENV != "test"
    if scheduler_enabled:
        start_scheduler()

    logger.info(f"Immochat auth service {__version__} started (env={config.ENV}, build={config.BUILD_VERSION})")
    try:
        yield
    finally:
        if scheduler_enabled:
            stop_scheduler()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Immochat Auth API",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(auth_router)
    app.include_router(oauth_router)
    app.include_router(user_router)

    @app.get("/health")
    def health(db: Session = Depends(get_db)):
        """Liveness plus a database round trip"""
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Health check database probe failed: {type(e).__name__}")
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": "unavailable", "version": __version__},
            )
        return {"status": "healthy", "database": "ok", "version": __version__}

    return app


app = create_app()
