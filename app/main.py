from sqlalchemy import text

from app.core.observability import (
    http_exception_handler,
    log_event,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from app.core.config import settings
from app.db.session import engine
from app.routers import cron
from app.schemas.common import HealthOut

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Automation engine for QuickShop storefronts.\n\n"
        "The scheduler calls `POST /api/cron/automations` every few minutes with a signed "
        "`Upstash-Signature` header. Each call drains due automation runs and sends "
        "abandoned cart reminders."
    ),
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "cron", "description": "Scheduler-driven automation ticks."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(cron.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"], response_model=HealthOut)
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"], response_model=HealthOut)
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        log_event("readiness_check_failed", error=str(exc))
        return {"ok": False}
    return {"ok": True}
