import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.id_utils import generate_shortuuid
from app.core.observability import log_event
from app.models import Automation, AutomationRun, Store
from app.services.automation_actions import ABANDONED_CART_TEMPLATE, CRM_ACTION_TYPES
from app.services.automation_runs import RUN_RUNNING, RUN_SCHEDULED, create_run, utcnow
from app.services.automation_scheduler import execute_claimed_run

CRM_PLUGIN_KEY = "crm"

# cart.abandoned is driven by the cart scanner, never by an event
EVENT_TO_TRIGGER_MAP: dict[str, str] = {
    "order.created": "order.created",
    "order.paid": "order.paid",
    "order.fulfilled": "order.fulfilled",
    "order.cancelled": "order.cancelled",
    "customer.created": "customer.created",
    "customer.updated": "customer.updated",
    "customer.tag_added": "customer.tag_added",
    "customer.tag_removed": "customer.tag_removed",
    "product.low_stock": "product.low_stock",
    "product.out_of_stock": "product.out_of_stock",
}


@dataclass(frozen=True)
class EventProcessingSummary:
    matched: int
    scheduled: int
    executed: int
    succeeded: int
    failed: int
    skipped: int


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first_number(data: dict[str, Any], *keys: str) -> float:
    for key in keys:
        number = _to_number(data.get(key))
        if number:
            return number
    return 0.0


def check_conditions(conditions: dict[str, Any] | None, data: dict[str, Any]) -> bool:
    """Return True when ``data`` satisfies every condition that is set.

    Conditions whose value has the wrong type are ignored.
    """
    if not conditions:
        return True

    min_order_total = conditions.get("minOrderTotal")
    if isinstance(min_order_total, (int, float)) and not isinstance(min_order_total, bool):
        if _first_number(data, "total", "orderTotal") < min_order_total:
            return False

    min_cart_value = conditions.get("minCartValue")
    if isinstance(min_cart_value, (int, float)) and not isinstance(min_cart_value, bool):
        if _first_number(data, "subtotal", "cartValue") < min_cart_value:
            return False

    specific_tag = conditions.get("specificTag")
    if isinstance(specific_tag, str):
        if data.get("tagId") != specific_tag:
            return False

    return True


def process_event(
    db: Session,
    *,
    store_id: str,
    event_type: str,
    data: dict[str, Any] | None = None,
    resource_id: str | None = None,
    resource_type: str | None = None,
    event_id: str | None = None,
) -> EventProcessingSummary:
    counts = {
        "matched": 0,
        "scheduled": 0,
        "executed": 0,
        "succeeded": 0,
        "failed": 0,
        "skipped": 0,
    }
    trigger_type = EVENT_TO_TRIGGER_MAP.get(event_type)
    if not trigger_type:
        return EventProcessingSummary(**counts)

    event_data = dict(data or {})
    automations = db.execute(
        select(Automation)
        .where(
            Automation.store_id == store_id,
            Automation.trigger_type == trigger_type,
            Automation.is_active.is_(True),
        )
        .order_by(Automation.created_at.asc(), Automation.id.asc())
    ).scalars().all()
    if not automations:
        return EventProcessingSummary(**counts)

    store = db.execute(select(Store).where(Store.id == store_id)).scalar_one_or_none()
    has_crm_plugin = bool(store and store.has_plugin(CRM_PLUGIN_KEY))

    for automation in automations:
        automation_id = automation.id
        try:
            if automation.action_type in CRM_ACTION_TYPES and not has_crm_plugin:
                counts["skipped"] += 1
                log_event(
                    "automation.event.crm_plugin_disabled",
                    automation_id=automation_id,
                    action_type=automation.action_type,
                )
                continue

            if not check_conditions(automation.trigger_conditions, event_data):
                counts["skipped"] += 1
                continue
            counts["matched"] += 1

            now = utcnow()
            delay_minutes = int(automation.delay_minutes or 0)
            if delay_minutes > 0:
                run = create_run(
                    db,
                    automation=automation,
                    trigger_data=event_data,
                    status=RUN_SCHEDULED,
                    resource_id=resource_id,
                    resource_type=resource_type,
                    trigger_event_id=event_id,
                    scheduled_for=now + timedelta(minutes=delay_minutes),
                )
                db.commit()
                counts["scheduled"] += 1
                log_event(
                    "automation.run.scheduled",
                    run_id=run.id,
                    automation_id=automation_id,
                    delay_minutes=delay_minutes,
                )
                continue

            run = create_run(
                db,
                automation=automation,
                trigger_data=event_data,
                status=RUN_RUNNING,
                resource_id=resource_id,
                resource_type=resource_type,
                trigger_event_id=event_id,
                started_at=now,
            )
            run_id = run.id
            db.commit()
            counts["executed"] += 1
            error = execute_claimed_run(
                db,
                run_id=run_id,
                automation=automation,
                trigger_data=event_data,
                store_id=store_id,
                resource_id=resource_id,
                resource_type=resource_type,
            )
            if error is None:
                counts["succeeded"] += 1
            else:
                counts["failed"] += 1
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            log_event(
                "automation.event.error",
                level=logging.ERROR,
                automation_id=automation_id,
                event_type=event_type,
                error=str(exc),
            )

    return EventProcessingSummary(**counts)


def create_default_automations(db: Session, *, store_id: str) -> Automation | None:
    """Install the built-in abandoned cart reminder once per store, switched off."""
    existing = db.execute(
        select(Automation.id)
        .where(
            Automation.store_id == store_id,
            Automation.is_built_in.is_(True),
        )
        .limit(1)
    ).scalar_one_or_none()
    if existing:
        return None

    automation = Automation(
        id=generate_shortuuid(),
        store_id=store_id,
        name="Abandoned cart recovery",
        description="Email customers who left items in their cart",
        trigger_type="cart.abandoned",
        trigger_conditions={"minCartValue": 0},
        action_type="send_email",
        action_config={
            "template": ABANDONED_CART_TEMPLATE,
            "subject": "Forgot something? Your cart is waiting",
        },
        delay_minutes=settings.abandoned_cart_default_delay_minutes,
        is_active=False,
        is_built_in=True,
    )
    db.add(automation)
    db.commit()
    db.refresh(automation)
    log_event("automation.defaults.created", store_id=store_id, automation_id=automation.id)
    return automation


def list_store_automations(db: Session, *, store_id: str) -> list[Automation]:
    return list(
        db.execute(
            select(Automation)
            .where(Automation.store_id == store_id)
            .order_by(Automation.created_at.asc(), Automation.id.asc())
        ).scalars().all()
    )


def list_automation_runs(
    db: Session,
    *,
    store_id: str,
    automation_id: str | None = None,
    limit: int = 50,
) -> list[AutomationRun]:
    stmt = select(AutomationRun).where(AutomationRun.store_id == store_id)
    if automation_id:
        stmt = stmt.where(AutomationRun.automation_id == automation_id)
    stmt = stmt.order_by(AutomationRun.created_at.desc(), AutomationRun.id.desc()).limit(max(int(limit), 1))
    return list(db.execute(stmt).scalars().all())
