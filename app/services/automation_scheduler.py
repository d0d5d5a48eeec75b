import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.observability import log_event
from app.models.automation import Automation
from app.services.automation_actions import execute_action
from app.services.automation_errors import AutomationUnavailable
from app.services.automation_runs import (
    DueRun,
    cancel_run,
    claim_run,
    complete_run,
    fail_run,
    load_active_automation,
    reclaim_stale_runs,
    record_outcome,
    select_due_runs,
    short_error,
    utcnow,
)


@dataclass
class ScheduledRunsSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    reclaimed: int = 0
    errors: list[str] = field(default_factory=list)


def execute_claimed_run(
    db: Session,
    *,
    run_id: str,
    automation: Automation,
    trigger_data: dict[str, Any],
    store_id: str,
    resource_id: str | None = None,
    resource_type: str | None = None,
) -> str | None:
    """Dispatch a run that is already ``running`` and record its outcome.

    Commits the outcome together with the handler's writes on success. On any
    failure the handler's writes are rolled back before the failure is
    recorded. Returns the stored error message, or None on success.
    """
    automation_id = automation.id
    action_type = automation.action_type
    try:
        result = execute_action(
            db,
            automation,
            trigger_data,
            store_id,
            resource_id=resource_id,
            resource_type=resource_type,
        )
        if complete_run(db, run_id=run_id, result=result, now=utcnow()):
            record_outcome(db, automation_id=automation_id, succeeded=True, now=utcnow())
        else:
            log_event(
                "automation.run.complete_skipped",
                level=logging.WARNING,
                run_id=run_id,
                automation_id=automation_id,
            )
        db.commit()
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        message = short_error(exc)
        if fail_run(db, run_id=run_id, error=message, now=utcnow()):
            record_outcome(db, automation_id=automation_id, succeeded=False, now=utcnow())
        db.commit()
        log_event(
            "automation.run.failed",
            level=logging.WARNING,
            run_id=run_id,
            automation_id=automation_id,
            action_type=action_type,
            error=message,
        )
        return message

    log_event(
        "automation.run.completed",
        run_id=run_id,
        automation_id=automation_id,
        action_type=action_type,
    )
    return None


def _process_due_run(db: Session, due: DueRun, *, now: datetime, summary: ScheduledRunsSummary) -> None:
    try:
        automation = load_active_automation(db, automation_id=due.automation_id, store_id=due.store_id)
    except AutomationUnavailable as exc:
        if cancel_run(db, run_id=due.id, now=now):
            summary.processed += 1
            summary.cancelled += 1
            log_event(
                "automation.run.cancelled",
                run_id=due.id,
                automation_id=due.automation_id,
                reason=str(exc),
            )
        else:
            summary.skipped += 1
        db.commit()
        return

    if not claim_run(db, run_id=due.id, now=now):
        db.rollback()
        summary.skipped += 1
        log_event("automation.run.claim_lost", run_id=due.id, automation_id=due.automation_id)
        return
    db.commit()
    summary.processed += 1

    error = execute_claimed_run(
        db,
        run_id=due.id,
        automation=automation,
        trigger_data=due.trigger_data,
        store_id=due.store_id,
        resource_id=due.resource_id,
        resource_type=due.resource_type,
    )
    if error is None:
        summary.succeeded += 1
    else:
        summary.failed += 1
        summary.errors.append(f"Run {due.id}: {error}")


def process_scheduled_runs(db: Session, *, now: datetime | None = None) -> ScheduledRunsSummary:
    """Execute due runs, each in its own transaction.

    A failing run never stops the batch. Stale ``running`` runs are put back
    into the queue before the batch is selected.
    """
    now = now or utcnow()
    summary = ScheduledRunsSummary()

    summary.reclaimed = reclaim_stale_runs(
        db,
        now=now,
        stale_after=timedelta(minutes=settings.automation_stale_run_minutes),
    )
    db.commit()
    if summary.reclaimed:
        log_event("automation.run.reclaimed", level=logging.WARNING, count=summary.reclaimed)

    due_runs = select_due_runs(db, now=now, limit=settings.automation_run_batch_size)
    db.commit()

    for due in due_runs:
        try:
            _process_due_run(db, due, now=now, summary=summary)
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            summary.errors.append(f"Run {due.id}: {short_error(exc)}")
            log_event(
                "automation.run.error",
                level=logging.ERROR,
                run_id=due.id,
                automation_id=due.automation_id,
                error=str(exc),
            )

    return summary
