import logging
import sqlite3

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core import errors
from .core.config import Settings, get_settings
from .core.logging import init_logging, request_context_middleware
from .core.middleware import security_headers_middleware
from .db.dal import Database
from .db.migrate import apply_migrations
from .db.seed import seed_admin, seed_reference_data
from .routers import auth, currency, gold, health, settings as settings_router, users
from .services.kv_store import InMemoryKeyValueStore
from .services.sessions import SessionStore

logger = logging.getLogger("goldmarket")


def create_app(settings_override: Settings | None = None) -> FastAPI:
    """Application factory.

    settings_override: pass an already constructed Settings instance for tests
    to isolate environment (e.g., temp DB). Falls back to cached get_settings().
    """
    settings = settings_override or get_settings()
    if settings_override is not None:
        settings.init_post_load()
    init_logging(debug=settings.debug)

    # Schema, reference rows and bootstrap admin; a broken database leaves the
    # API up with /api/health reporting it disconnected.
    try:
        apply_migrations(settings.db_path)  # type: ignore[arg-type]
        seed_reference_data(settings.db_path)  # type: ignore[arg-type]
        seed_admin(
            settings.db_path,  # type: ignore[arg-type]
            settings.admin_username,
            settings.admin_password,
            settings.admin_email,
            rounds=settings.bcrypt_rounds,
        )
    except Exception:
        logger.exception("database initialization failed on startup")

    app = FastAPI(title=settings.app_name, debug=settings.debug, version=settings.version)
    app.state.settings = settings
    app.state.db = Database(settings.db_path, timeout=settings.db_timeout_seconds)  # type: ignore[arg-type]
    app.state.kv_store = InMemoryKeyValueStore()

    try:
        purged = SessionStore(app.state.db).purge_expired()
        if purged:
            logger.info("purged stale sessions", extra={"context": {"count": purged}})
    except sqlite3.Error:
        logger.exception("session cleanup failed on startup")

    # Middleware (last added runs first: request id wraps everything)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["Content-Type", "X-CSRF-Token", "X-Request-ID"],
    )
    app.middleware("http")(security_headers_middleware)
    app.middleware("http")(request_context_middleware)

    # Error handlers
    app.add_exception_handler(errors.AppError, errors.app_error_handler)
    app.add_exception_handler(StarletteHTTPException, errors.http_error_handler)
    app.add_exception_handler(RequestValidationError, errors.validation_error_handler)
    app.add_exception_handler(Exception, errors.server_error_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(gold.router)
    app.include_router(currency.router)
    app.include_router(settings_router.router)
    app.include_router(users.router)

    @app.get("/")
    async def root():
        return {"success": True, "message": settings.app_name, "version": settings.version}

    return app


app = create_app()
