"""
FastAPI application factory.

Assembles the app, registers all routers, maps domain exceptions to
HTTP responses and wires up lifecycle events.  Database schema is
managed by Alembic — NOT create_all.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from authz.controllers.audit_controller import router as audit_router
from authz.controllers.auth_controller import router as auth_router
from authz.controllers.permission_controller import router as permission_router
from authz.controllers.role_controller import router as role_router
from authz.controllers.user_controller import router as user_router
from authz.core.config import settings
from authz.core.database import async_session_factory, engine
from authz.core.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidReferenceError,
    NotFoundError,
    RoleRequiredError,
    TokenGenerationError,
)
from authz.models import Base  # noqa: F401 — ensures all models are registered

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthenticationError)
    async def authentication_error(request: Request, exc: AuthenticationError):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": exc.detail, "reason": exc.reason.value},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_error(request: Request, exc: AuthorizationError):
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={
                "detail": exc.detail,
                "required": {"resource": exc.resource, "action": exc.action},
            },
        )

    @app.exception_handler(RoleRequiredError)
    async def role_required_error(request: Request, exc: RoleRequiredError):
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": exc.detail, "required": {"roles": exc.roles}},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_error(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.detail})

    @app.exception_handler(ConflictError)
    async def conflict_error(request: Request, exc: ConflictError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": exc.detail})

    @app.exception_handler(InvalidReferenceError)
    async def invalid_reference_error(request: Request, exc: InvalidReferenceError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.detail})

    @app.exception_handler(TokenGenerationError)
    async def token_generation_error(request: Request, exc: TokenGenerationError):
        logger.error("Token generation failed on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Token generation failed"},
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(role_router)
    app.include_router(permission_router)
    app.include_router(audit_router)

    _register_exception_handlers(app)

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Seed permissions & roles on startup.

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        if not settings.SEED_ON_STARTUP:
            return

        from authz.rbac.permission_seed import seed

        async with async_session_factory() as session:
            await seed(session)
        logger.info("Permission seed complete.")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await engine.dispose()
        logger.info("Database engine disposed.")

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
