import logging
import time
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.observability import log_event
from app.services.abandoned_cart_scanner import AbandonedCartsSummary, scan_abandoned_carts
from app.services.automation_runs import utcnow
from app.services.automation_scheduler import ScheduledRunsSummary, process_scheduled_runs


@dataclass
class TickSummary:
    timestamp: datetime
    scheduled_runs: ScheduledRunsSummary = field(default_factory=ScheduledRunsSummary)
    abandoned_carts: AbandonedCartsSummary = field(default_factory=AbandonedCartsSummary)
    errors: list[str] = field(default_factory=list)
    status: str = "idle"
    fatal_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.fatal_error is None


def _resolve_status(summary: TickSummary) -> str:
    if summary.fatal_error is not None:
        return "failed"
    runs = summary.scheduled_runs
    carts = summary.abandoned_carts
    attempted = runs.processed + runs.reclaimed + carts.checked
    if summary.errors:
        return "partial"
    if attempted == 0:
        return "idle"
    return "completed"


def run_tick(db: Session, *, now: datetime | None = None) -> TickSummary:
    """Drain due runs, then scan abandoned carts. Never raises.

    Unit failures are listed in ``errors``; anything that breaks the tick
    itself is reported through ``status="failed"`` and ``fatal_error``.
    """
    now = now or utcnow()
    summary = TickSummary(timestamp=now)
    started = time.perf_counter()
    log_event("automation.tick.started")

    try:
        summary.scheduled_runs = process_scheduled_runs(db, now=now)
        summary.errors.extend(summary.scheduled_runs.errors)
        summary.abandoned_carts = scan_abandoned_carts(db, now=now)
        summary.errors.extend(summary.abandoned_carts.errors)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        summary.fatal_error = str(exc) or exc.__class__.__name__
        log_event("automation.tick.failed", level=logging.ERROR, error=summary.fatal_error)

    summary.status = _resolve_status(summary)
    log_event(
        "automation.tick.finished",
        status=summary.status,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
        runs_processed=summary.scheduled_runs.processed,
        runs_succeeded=summary.scheduled_runs.succeeded,
        runs_failed=summary.scheduled_runs.failed,
        runs_cancelled=summary.scheduled_runs.cancelled,
        runs_skipped=summary.scheduled_runs.skipped,
        runs_reclaimed=summary.scheduled_runs.reclaimed,
        carts_checked=summary.abandoned_carts.checked,
        emails_sent=summary.abandoned_carts.emails_sent,
        errors=len(summary.errors),
    )
    return summary
