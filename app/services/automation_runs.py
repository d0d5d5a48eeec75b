"""Run ledger and rule statistics.

Every status change is a single UPDATE guarded by the expected current status,
so a run only ever moves scheduled -> running -> completed/failed or
scheduled -> cancelled, and concurrent ticks cannot both claim it. Counters
are bumped with in-database increments.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.id_utils import generate_shortuuid
from app.models.automation import Automation, AutomationRun
from app.services.automation_errors import AutomationInactive, AutomationMissing

RUN_SCHEDULED = "scheduled"
RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"
RUN_CANCELLED = "cancelled"


@dataclass(frozen=True)
class DueRun:
    id: str
    automation_id: str
    store_id: str
    trigger_data: dict[str, Any]
    resource_id: str | None
    resource_type: str | None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def short_error(value: Exception | str) -> str:
    text = str(value).strip() or "Automation action failed"
    return text[:255]


def select_due_runs(db: Session, *, now: datetime, limit: int) -> list[DueRun]:
    rows = db.execute(
        select(
            AutomationRun.id,
            AutomationRun.automation_id,
            AutomationRun.store_id,
            AutomationRun.trigger_data,
            AutomationRun.resource_id,
            AutomationRun.resource_type,
        )
        .where(
            AutomationRun.status == RUN_SCHEDULED,
            AutomationRun.scheduled_for <= now,
        )
        .limit(limit)
    ).all()
    return [
        DueRun(
            id=row.id,
            automation_id=row.automation_id,
            store_id=row.store_id,
            trigger_data=row.trigger_data if isinstance(row.trigger_data, dict) else {},
            resource_id=row.resource_id,
            resource_type=row.resource_type,
        )
        for row in rows
    ]


def reclaim_stale_runs(db: Session, *, now: datetime, stale_after: timedelta) -> int:
    """Put runs stuck in ``running`` past ``stale_after`` back into ``scheduled``."""
    cutoff = now - stale_after
    result = db.execute(
        update(AutomationRun)
        .where(
            AutomationRun.status == RUN_RUNNING,
            AutomationRun.started_at < cutoff,
        )
        .values(
            status=RUN_SCHEDULED,
            started_at=None,
            scheduled_for=func.coalesce(AutomationRun.scheduled_for, now),
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


def load_active_automation(db: Session, *, automation_id: str, store_id: str) -> Automation:
    automation = db.execute(
        select(Automation).where(
            Automation.id == automation_id,
            Automation.store_id == store_id,
        )
    ).scalar_one_or_none()
    if automation is None:
        raise AutomationMissing(automation_id)
    if not automation.is_active:
        raise AutomationInactive(automation_id)
    return automation


def _transition(
    db: Session,
    *,
    run_id: str,
    expected_status: str,
    values: dict[str, Any],
) -> bool:
    result = db.execute(
        update(AutomationRun)
        .where(
            AutomationRun.id == run_id,
            AutomationRun.status == expected_status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) == 1


def claim_run(db: Session, *, run_id: str, now: datetime) -> bool:
    return _transition(
        db,
        run_id=run_id,
        expected_status=RUN_SCHEDULED,
        values={"status": RUN_RUNNING, "started_at": now},
    )


def cancel_run(db: Session, *, run_id: str, now: datetime) -> bool:
    return _transition(
        db,
        run_id=run_id,
        expected_status=RUN_SCHEDULED,
        values={"status": RUN_CANCELLED, "completed_at": now},
    )


def complete_run(db: Session, *, run_id: str, result: dict[str, Any], now: datetime) -> bool:
    return _transition(
        db,
        run_id=run_id,
        expected_status=RUN_RUNNING,
        values={"status": RUN_COMPLETED, "completed_at": now, "result": result, "error": None},
    )


def fail_run(db: Session, *, run_id: str, error: str, now: datetime) -> bool:
    return _transition(
        db,
        run_id=run_id,
        expected_status=RUN_RUNNING,
        values={"status": RUN_FAILED, "completed_at": now, "error": short_error(error)},
    )


def record_outcome(db: Session, *, automation_id: str, succeeded: bool, now: datetime) -> None:
    values: dict[str, Any] = {
        "total_runs": Automation.total_runs + 1,
        "last_run_at": now,
    }
    if succeeded:
        values["total_successes"] = Automation.total_successes + 1
    else:
        values["total_failures"] = Automation.total_failures + 1
    db.execute(
        update(Automation)
        .where(Automation.id == automation_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def create_run(
    db: Session,
    *,
    automation: Automation,
    trigger_data: dict[str, Any],
    status: str,
    resource_id: str | None = None,
    resource_type: str | None = None,
    trigger_event_id: str | None = None,
    scheduled_for: datetime | None = None,
    started_at: datetime | None = None,
    completed_at: datetime | None = None,
    result: dict[str, Any] | None = None,
) -> AutomationRun:
    run = AutomationRun(
        id=generate_shortuuid(),
        automation_id=automation.id,
        store_id=automation.store_id,
        trigger_event_id=trigger_event_id,
        trigger_data=dict(trigger_data),
        resource_id=resource_id,
        resource_type=resource_type,
        status=status,
        scheduled_for=scheduled_for,
        started_at=started_at,
        completed_at=completed_at,
        result=result,
        error=None,
    )
    db.add(run)
    db.flush()
    return run


def create_audit_run(
    db: Session,
    *,
    automation: Automation,
    trigger_data: dict[str, Any],
    resource_id: str,
    resource_type: str,
    result: dict[str, Any],
    now: datetime,
) -> AutomationRun:
    return create_run(
        db,
        automation=automation,
        trigger_data=trigger_data,
        status=RUN_COMPLETED,
        resource_id=resource_id,
        resource_type=resource_type,
        started_at=now,
        completed_at=now,
        result=result,
    )
