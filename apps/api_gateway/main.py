"""
API Gateway (FastAPI).

Функции:
- /health
- /metrics (gauge'и очередей обновляются при каждой выгрузке)
- POST /v1/jobs: постановка задач
- /v1/admin/queues/*: состояние и управление очередями
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api_gateway.routers.admin import router as admin_router
from apps.api_gateway.routers.jobs import router as jobs_router
from clientflow_automation.common.config import get_settings
from clientflow_automation.common.logging import get_project_logger, setup_logging
from clientflow_automation.common.metrics import setup_metrics_endpoint

log = get_project_logger()


def _parse_origins(raw: str) -> list[str]:
    origins = [o.strip() for o in (raw or "").split(",") if o.strip()]
    return origins or ["*"]


def _is_prod_env(app_env: str | None) -> bool:
    env = (app_env or "").strip().lower()
    return env in {"prod", "production"}


def _cors_origins() -> list[str]:
    settings = get_settings()
    allow_origins = _parse_origins(settings.cors_allowed_origins)
    if _is_prod_env(settings.app_env) and "*" in allow_origins:
        raise RuntimeError("CORS wildcard '*' запрещён в APP_ENV=prod")
    return allow_origins


def _create_app() -> FastAPI:
    app = FastAPI(title="ClientFlow Automation", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _refresh_queue_gauges() -> None:
        rt = getattr(app.state, "runtime", None)
        if rt is not None:
            rt.health.report()

    setup_metrics_endpoint(app, refresh=_refresh_queue_gauges)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True}

    app.include_router(jobs_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")

    return app


setup_logging()
log.info("api_gateway_starting")

app = _create_app()
