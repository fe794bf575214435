"""
API Gateway: HTTP-вход сервиса жизненного цикла встреч.

/health и /metrics без авторизации, всё остальное под /v1:
сессии встреч, комнаты и квота, webhook LiveKit, service-only админка.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apps.api_gateway.deps import app_error_to_http
from apps.api_gateway.routers import admin, meetings, rooms, webhooks
from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import AppError
from meeting_lifecycle.common.logging import get_project_logger, setup_logging
from meeting_lifecycle.common.metrics import setup_metrics_endpoint
from meeting_lifecycle.common.security import is_prod_env
from meeting_lifecycle.storage.db import init_db

log = get_project_logger("api")

API_PREFIX = "/v1"


def cors_options(raw_origins: str, allow_credentials: bool, app_env: str) -> dict:
    """
    Пустой CORS_ALLOWED_ORIGINS означает "*". Wildcard несовместим с
    credentials, а в prod запрещён совсем.
    """
    origins = [o.strip() for o in (raw_origins or "").split(",") if o.strip()] or ["*"]
    wildcard = "*" in origins
    if wildcard and is_prod_env(app_env):
        raise RuntimeError("CORS_ALLOWED_ORIGINS='*' запрещён в prod")
    return {
        "allow_origins": origins,
        "allow_credentials": bool(allow_credentials) and not wildcard,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    s = get_settings()
    if s.db_create_all:
        # dev без alembic: схема создаётся из моделей
        init_db()
    log.info(
        "api_gateway_started",
        extra={"payload": {"env": s.app_env, "queue_mode": s.queue_mode, "auth_mode": s.auth_mode}},
    )
    yield
    log.info("api_gateway_stopped")


async def _unhandled_app_error(request: Request, exc: AppError) -> JSONResponse:
    """AppError, не переведённый роутом (например, из Depends)."""
    http = app_error_to_http(exc)
    log.warning(
        "app_error_unhandled",
        extra={"payload": {"path": request.url.path, "code": exc.code, "err": exc.message}},
    )
    return JSONResponse(
        status_code=http.status_code, content={"detail": http.detail}, headers=http.headers
    )


def create_app() -> FastAPI:
    s = get_settings()
    app = FastAPI(title="Meeting Lifecycle", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware, **cors_options(s.cors_allowed_origins, s.cors_allow_credentials, s.app_env)
    )
    app.add_exception_handler(AppError, _unhandled_app_error)
    setup_metrics_endpoint(app, service="api-gateway")

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    for module in (meetings, rooms, webhooks, admin):
        app.include_router(module.router, prefix=API_PREFIX)
    return app


setup_logging(service="api-gateway")
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=get_settings().api_host, port=get_settings().api_port)
