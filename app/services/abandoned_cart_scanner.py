import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.id_utils import generate_recovery_token
from app.core.observability import log_event
from app.models import AbandonedCart, Automation, Store
from app.services.automation_actions import ABANDONED_CART_TEMPLATE, execute_handler
from app.services.automation_runs import create_audit_run, record_outcome, short_error, utcnow

CART_ABANDONED_TRIGGER = "cart.abandoned"


@dataclass
class AbandonedCartsSummary:
    checked: int = 0
    emails_sent: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _CartRule:
    automation_id: str
    store_id: str
    delay_minutes: int
    min_cart_value: float
    action_config: dict[str, Any]


@dataclass(frozen=True)
class _CartSnapshot:
    id: str
    email: str
    items: list[dict[str, Any]]
    subtotal: Decimal
    reminder_sent_at: datetime | None
    recovery_token: str | None = None


def _eligibility(*, threshold: datetime, resend_before: datetime) -> list[Any]:
    return [
        AbandonedCart.recovered_at.is_(None),
        AbandonedCart.email.is_not(None),
        AbandonedCart.created_at < threshold,
        func.coalesce(AbandonedCart.reminder_count, 0) < settings.abandoned_cart_max_reminders,
        or_(
            AbandonedCart.reminder_sent_at.is_(None),
            AbandonedCart.reminder_sent_at < resend_before,
        ),
    ]


def _load_cart_rules(db: Session) -> list[_CartRule]:
    automations = db.execute(
        select(Automation)
        .where(
            Automation.trigger_type == CART_ABANDONED_TRIGGER,
            Automation.is_active.is_(True),
        )
        .order_by(Automation.created_at.asc(), Automation.id.asc())
    ).scalars().all()
    rules = []
    for automation in automations:
        conditions = automation.trigger_conditions if isinstance(automation.trigger_conditions, dict) else {}
        try:
            min_cart_value = float(conditions.get("minCartValue") or 0)
        except (TypeError, ValueError):
            min_cart_value = 0.0
        rules.append(
            _CartRule(
                automation_id=automation.id,
                store_id=automation.store_id,
                delay_minutes=automation.delay_minutes or settings.abandoned_cart_default_delay_minutes,
                min_cart_value=min_cart_value,
                action_config=dict(automation.action_config or {}),
            )
        )
    return rules


def _claim_cart(
    db: Session,
    *,
    cart: _CartSnapshot,
    store_id: str,
    threshold: datetime,
    resend_before: datetime,
    stamp: datetime,
) -> str | None:
    """Stamp ``reminder_sent_at`` if the cart is still eligible; return its recovery token."""
    result = db.execute(
        update(AbandonedCart)
        .where(
            AbandonedCart.id == cart.id,
            AbandonedCart.store_id == store_id,
            *_eligibility(threshold=threshold, resend_before=resend_before),
        )
        .values(
            reminder_sent_at=stamp,
            recovery_token=func.coalesce(AbandonedCart.recovery_token, generate_recovery_token()),
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return db.execute(
        select(AbandonedCart.recovery_token).where(AbandonedCart.id == cart.id)
    ).scalar_one()


def _release_cart(db: Session, *, cart: _CartSnapshot, stamp: datetime) -> None:
    db.execute(
        update(AbandonedCart)
        .where(
            AbandonedCart.id == cart.id,
            AbandonedCart.reminder_sent_at == stamp,
        )
        .values(reminder_sent_at=cart.reminder_sent_at, recovery_token=cart.recovery_token)
        .execution_options(synchronize_session=False)
    )


def _remind_cart(
    db: Session,
    *,
    rule: _CartRule,
    store: Store,
    cart: _CartSnapshot,
    threshold: datetime,
    resend_before: datetime,
    summary: AbandonedCartsSummary,
) -> None:
    stamp = utcnow()
    token = _claim_cart(
        db,
        cart=cart,
        store_id=rule.store_id,
        threshold=threshold,
        resend_before=resend_before,
        stamp=stamp,
    )
    db.commit()
    if token is None:
        log_event("automation.cart.claim_lost", cart_id=cart.id, store_id=rule.store_id)
        return

    subtotal = float(cart.subtotal)
    recovery_url = f"{settings.storefront_base_url}/shops/{store.slug}/checkout?recover={token}"
    try:
        result = execute_handler(
            db,
            action_type="send_email",
            action_config={**rule.action_config, "template": ABANDONED_CART_TEMPLATE},
            trigger_type=CART_ABANDONED_TRIGGER,
            trigger_data={
                "customerEmail": cart.email,
                "items": cart.items,
                "subtotal": subtotal,
                "recoveryUrl": recovery_url,
            },
            store_id=rule.store_id,
            resource_id=cart.id,
            resource_type="cart",
        )
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        message = short_error(exc)
        _release_cart(db, cart=cart, stamp=stamp)
        record_outcome(db, automation_id=rule.automation_id, succeeded=False, now=utcnow())
        db.commit()
        summary.errors.append(f"Cart {cart.id}: {message}")
        log_event(
            "automation.cart.reminder_failed",
            level=logging.WARNING,
            cart_id=cart.id,
            store_id=rule.store_id,
            automation_id=rule.automation_id,
            error=message,
        )
        return

    now = utcnow()
    db.execute(
        update(AbandonedCart)
        .where(AbandonedCart.id == cart.id)
        .values(reminder_count=func.coalesce(AbandonedCart.reminder_count, 0) + 1)
        .execution_options(synchronize_session=False)
    )
    automation = db.get(Automation, rule.automation_id)
    create_audit_run(
        db,
        automation=automation,
        trigger_data={"cartId": cart.id, "email": cart.email, "subtotal": subtotal},
        resource_id=cart.id,
        resource_type="cart",
        result=result,
        now=now,
    )
    record_outcome(db, automation_id=rule.automation_id, succeeded=True, now=now)
    db.commit()
    summary.emails_sent += 1
    log_event(
        "automation.cart.reminder_sent",
        cart_id=cart.id,
        store_id=rule.store_id,
        automation_id=rule.automation_id,
    )


def _scan_rule(db: Session, rule: _CartRule, *, now: datetime, summary: AbandonedCartsSummary) -> None:
    store = db.execute(select(Store).where(Store.id == rule.store_id)).scalar_one_or_none()
    if store is None:
        log_event("automation.cart.store_missing", level=logging.WARNING, store_id=rule.store_id)
        return

    threshold = now - timedelta(minutes=rule.delay_minutes)
    resend_before = now - timedelta(hours=settings.abandoned_cart_resend_hours)
    rows = db.execute(
        select(
            AbandonedCart.id,
            AbandonedCart.email,
            AbandonedCart.items,
            AbandonedCart.subtotal,
            AbandonedCart.reminder_sent_at,
            AbandonedCart.recovery_token,
        )
        .where(
            AbandonedCart.store_id == rule.store_id,
            *_eligibility(threshold=threshold, resend_before=resend_before),
        )
        .order_by(AbandonedCart.created_at.asc())
        .limit(settings.abandoned_cart_batch_size)
    ).all()
    db.commit()

    carts = [
        _CartSnapshot(
            id=row.id,
            email=row.email,
            items=row.items if isinstance(row.items, list) else [],
            subtotal=Decimal(row.subtotal or 0),
            reminder_sent_at=row.reminder_sent_at,
            recovery_token=row.recovery_token,
        )
        for row in rows
    ]
    summary.checked += len(carts)

    for cart in carts:
        if float(cart.subtotal) < rule.min_cart_value:
            continue
        try:
            _remind_cart(
                db,
                rule=rule,
                store=store,
                cart=cart,
                threshold=threshold,
                resend_before=resend_before,
                summary=summary,
            )
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            summary.errors.append(f"Cart {cart.id}: {short_error(exc)}")
            log_event(
                "automation.cart.error",
                level=logging.ERROR,
                cart_id=cart.id,
                store_id=rule.store_id,
                error=str(exc),
            )


def scan_abandoned_carts(db: Session, *, now: datetime | None = None) -> AbandonedCartsSummary:
    """Send recovery reminders for every active ``cart.abandoned`` rule.

    A cart is claimed before its email goes out, so overlapping scans cannot
    both remind it. A failure in one store is recorded and the next store is
    scanned.
    """
    now = now or utcnow()
    summary = AbandonedCartsSummary()
    rules = _load_cart_rules(db)
    db.commit()

    for rule in rules:
        try:
            _scan_rule(db, rule, now=now, summary=summary)
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            summary.errors.append(f"Store {rule.store_id}: {short_error(exc)}")
            log_event(
                "automation.cart.store_error",
                level=logging.ERROR,
                store_id=rule.store_id,
                automation_id=rule.automation_id,
                error=str(exc),
            )

    return summary
