import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.api_docs import error_responses
from app.core.config import settings
from app.core.cron_auth import SIGNATURE_HEADER, CronAuthError, verify_scheduler_signature
from app.core.deps import get_db
from app.core.observability import log_event
from app.schemas.automation import (
    AbandonedCartsSummaryOut,
    CronFailureOut,
    CronTickOut,
    ScheduledRunsSummaryOut,
    TickResultsOut,
)
from app.services.automation_cron import TickSummary, run_tick

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _tick_out(summary: TickSummary) -> CronTickOut:
    runs = summary.scheduled_runs
    carts = summary.abandoned_carts
    return CronTickOut(
        success=True,
        status=summary.status,
        timestamp=summary.timestamp,
        results=TickResultsOut(
            scheduled_runs=ScheduledRunsSummaryOut(
                processed=runs.processed,
                succeeded=runs.succeeded,
                failed=runs.failed,
                cancelled=runs.cancelled,
                skipped=runs.skipped,
                reclaimed=runs.reclaimed,
            ),
            abandoned_carts=AbandonedCartsSummaryOut(
                checked=carts.checked,
                emails_sent=carts.emails_sent,
            ),
            errors=list(summary.errors),
        ),
    )


@router.api_route(
    "/automations",
    methods=["GET", "POST"],
    response_model=CronTickOut,
    summary="Run one automation tick",
    responses={
        **error_responses(401),
        500: {"model": CronFailureOut, "description": "The tick could not complete"},
    },
)
async def run_automations(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    try:
        verify_scheduler_signature(
            request.headers.get(SIGNATURE_HEADER),
            body,
            url=settings.cron_public_url,
        )
    except CronAuthError as exc:
        log_event("automation.cron.unauthorized", level=logging.WARNING, reason=str(exc))
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    summary = await run_in_threadpool(run_tick, db)
    if not summary.succeeded:
        return JSONResponse(
            status_code=500,
            content=CronFailureOut(
                error="Failed to process automations",
                details=summary.fatal_error or "Unknown error",
            ).model_dump(),
        )
    return _tick_out(summary)
