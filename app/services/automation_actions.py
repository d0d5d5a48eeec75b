from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.id_utils import generate_shortuuid
from app.models import Automation, CrmNote, CrmTask, Customer, CustomerTag, CustomerTagLink, Order, Store
from app.schemas.automation import (
    ChangeOrderStatusConfig,
    CrmAddNoteConfig,
    CrmCreateTaskConfig,
    CustomerTagConfig,
    MarketingConsentConfig,
    SendEmailConfig,
    TriggerData,
    WebhookCallConfig,
)
from app.services.automation_errors import (
    CustomerNotFound,
    EmailDeliveryFailed,
    InvalidActionConfig,
    MissingContent,
    MissingRecipient,
    MissingTarget,
    OrderNotFound,
    StoreNotFound,
    TagNotFound,
    UnknownActionType,
)
from app.services.email_service import (
    EmailSendRequest,
    build_abandoned_cart_email,
    build_generic_email,
    get_email_provider,
)
from app.services.webhook_transport import send_webhook

ABANDONED_CART_TEMPLATE = "abandoned_cart"


@dataclass(frozen=True)
class ActionContext:
    db: Session
    store_id: str
    trigger_type: str
    trigger_data: TriggerData
    raw_trigger_data: dict[str, Any]
    resource_id: str | None = None
    resource_type: str | None = None

    def resource_or(self, fallback: str | None) -> str | None:
        return self.resource_id or fallback


ActionHandlerFn = Callable[[ActionContext, Any], dict[str, Any]]


@dataclass(frozen=True)
class ActionHandler:
    config_model: type[BaseModel]
    handler: ActionHandlerFn


def execute_action(
    db: Session,
    automation: Automation,
    trigger_data: dict[str, Any],
    store_id: str,
    resource_id: str | None = None,
    resource_type: str | None = None,
) -> dict[str, Any]:
    return execute_handler(
        db,
        action_type=automation.action_type,
        action_config=automation.action_config,
        trigger_type=automation.trigger_type,
        trigger_data=trigger_data,
        store_id=store_id,
        resource_id=resource_id,
        resource_type=resource_type,
    )


def execute_handler(
    db: Session,
    *,
    action_type: str,
    action_config: dict[str, Any] | None,
    trigger_type: str,
    trigger_data: dict[str, Any] | None,
    store_id: str,
    resource_id: str | None = None,
    resource_type: str | None = None,
) -> dict[str, Any]:
    """Decode the rule's config and run the handler registered for ``action_type``.

    Raises a ``HandlerError`` subclass for anything the rule or its event data
    cannot satisfy.
    """
    entry = ACTION_HANDLERS.get(action_type)
    if entry is None:
        raise UnknownActionType(action_type)

    raw_trigger_data = dict(trigger_data or {})
    config = _decode(entry.config_model, action_config, label=f"{action_type} config")
    context = ActionContext(
        db=db,
        store_id=store_id,
        trigger_type=trigger_type,
        trigger_data=TriggerData.from_snapshot(raw_trigger_data),
        raw_trigger_data=raw_trigger_data,
        resource_id=resource_id,
        resource_type=resource_type,
    )
    return entry.handler(context, config)


def _decode(model: type[BaseModel], value: Any, *, label: str) -> Any:
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise InvalidActionConfig(f"Invalid {label}: expected an object")
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid value")
        if location:
            message = f"{location}: {message}"
        raise InvalidActionConfig(f"Invalid {label}: {message}") from exc


def _load_store(ctx: ActionContext) -> Store:
    store = ctx.db.execute(select(Store).where(Store.id == ctx.store_id)).scalar_one_or_none()
    if not store:
        raise StoreNotFound("Store not found")
    return store


def _load_customer(ctx: ActionContext, customer_id: str) -> Customer:
    customer = ctx.db.execute(
        select(Customer).where(
            Customer.store_id == ctx.store_id,
            Customer.id == customer_id,
        )
    ).scalar_one_or_none()
    if not customer:
        raise CustomerNotFound(f"Customer {customer_id} not found")
    return customer


def _format_total(value: float | None) -> str:
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def _render_placeholders(template: str, data: TriggerData) -> str:
    total = data.total if data.total is not None else data.order_total
    replacements = {
        "{customerName}": data.customer_name or "Customer",
        "{orderNumber}": data.order_number or "",
        "{total}": _format_total(total),
    }
    rendered = template
    for placeholder, value in replacements.items():
        rendered = rendered.replace(placeholder, value)
    return rendered


def _action_send_email(ctx: ActionContext, config: SendEmailConfig) -> dict[str, Any]:
    recipient = ctx.trigger_data.recipient_email
    if not recipient:
        raise MissingRecipient("No customer email in event data")

    store = _load_store(ctx)
    data = ctx.trigger_data
    if config.template == ABANDONED_CART_TEMPLATE:
        recovery_url = data.recovery_url or f"{settings.storefront_base_url}/shops/{store.slug}/checkout"
        subject, html_body, text_body = build_abandoned_cart_email(
            store_name=store.name,
            customer_name=data.customer_name,
            items=data.items,
            subtotal=float(data.subtotal or 0),
            recovery_url=recovery_url,
        )
        template = ABANDONED_CART_TEMPLATE
    else:
        subject, html_body, text_body = build_generic_email(
            store_name=store.name,
            customer_name=data.customer_name,
            subject=config.subject,
            body=config.body,
        )
        template = "custom"

    result = get_email_provider().send(
        EmailSendRequest(
            to=recipient,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            sender_name=store.name,
            tags={"store_id": ctx.store_id, "template": template},
        )
    )
    if result.status != "sent":
        raise EmailDeliveryFailed(f"Email delivery failed ({result.provider}): {result.detail or result.status}")
    return {"emailSent": True, "to": recipient, "template": template}


def _action_change_order_status(ctx: ActionContext, config: ChangeOrderStatusConfig) -> dict[str, Any]:
    order_id = ctx.resource_or(ctx.trigger_data.order_id)
    if not order_id or not config.status:
        raise MissingTarget("Missing order ID or status")

    result = ctx.db.execute(
        update(Order)
        .where(
            Order.store_id == ctx.store_id,
            Order.id == order_id,
        )
        .values(fulfillment_status=config.status)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise OrderNotFound(f"Order {order_id} not found")
    return {"orderUpdated": True, "orderId": order_id, "newStatus": config.status}


def _action_add_customer_tag(ctx: ActionContext, config: CustomerTagConfig) -> dict[str, Any]:
    customer_id = ctx.resource_or(ctx.trigger_data.customer_id)
    if not customer_id or not config.tag_id:
        raise MissingTarget("Missing customer ID or tag ID")

    _load_customer(ctx, customer_id)
    tag = ctx.db.execute(
        select(CustomerTag).where(
            CustomerTag.store_id == ctx.store_id,
            CustomerTag.id == config.tag_id,
        )
    ).scalar_one_or_none()
    if not tag:
        raise TagNotFound(f"Tag {config.tag_id} not found")

    existing_link = ctx.db.execute(
        select(CustomerTagLink.id).where(
            CustomerTagLink.store_id == ctx.store_id,
            CustomerTagLink.customer_id == customer_id,
            CustomerTagLink.tag_id == tag.id,
        )
    ).scalar_one_or_none()
    if existing_link:
        return {"tagAdded": False, "customerId": customer_id, "tagId": tag.id}

    ctx.db.add(
        CustomerTagLink(
            id=generate_shortuuid(),
            store_id=ctx.store_id,
            customer_id=customer_id,
            tag_id=tag.id,
        )
    )
    ctx.db.flush()
    return {"tagAdded": True, "customerId": customer_id, "tagId": tag.id}


def _action_remove_customer_tag(ctx: ActionContext, config: CustomerTagConfig) -> dict[str, Any]:
    customer_id = ctx.resource_or(ctx.trigger_data.customer_id)
    if not customer_id or not config.tag_id:
        raise MissingTarget("Missing customer ID or tag ID")

    _load_customer(ctx, customer_id)
    result = ctx.db.execute(
        delete(CustomerTagLink)
        .where(
            CustomerTagLink.store_id == ctx.store_id,
            CustomerTagLink.customer_id == customer_id,
            CustomerTagLink.tag_id == config.tag_id,
        )
        .execution_options(synchronize_session=False)
    )
    return {"tagRemoved": bool(result.rowcount), "customerId": customer_id, "tagId": config.tag_id}


def _action_update_marketing_consent(ctx: ActionContext, config: MarketingConsentConfig) -> dict[str, Any]:
    customer_id = ctx.resource_or(ctx.trigger_data.customer_id)
    if not customer_id:
        raise MissingTarget("Missing customer ID")

    customer = _load_customer(ctx, customer_id)
    customer.accepts_marketing = config.consent
    ctx.db.flush()
    return {"consentUpdated": True, "customerId": customer_id, "consent": config.consent}


def _action_webhook_call(ctx: ActionContext, config: WebhookCallConfig) -> dict[str, Any]:
    if not config.url or not config.url.strip():
        raise MissingTarget("No webhook URL specified")

    url = config.url.strip()
    response = send_webhook(
        url,
        payload={
            "event": ctx.trigger_type,
            "data": ctx.raw_trigger_data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        method=config.method,
        headers=config.headers,
    )
    return {
        "webhookCalled": True,
        "url": url,
        "statusCode": response.status_code,
        "success": response.ok,
    }


def _action_crm_create_task(ctx: ActionContext, config: CrmCreateTaskConfig) -> dict[str, Any]:
    customer_id = ctx.trigger_data.customer_id
    if ctx.resource_id and ctx.resource_type == "customer":
        customer_id = ctx.resource_id
    if customer_id:
        _load_customer(ctx, customer_id)

    title = _render_placeholders((config.title or "").strip() or "Automation task", ctx.trigger_data)
    description = _render_placeholders(config.description, ctx.trigger_data) if config.description else None
    task = CrmTask(
        id=generate_shortuuid(),
        store_id=ctx.store_id,
        customer_id=customer_id,
        title=title[:160],
        description=description[:500] if description else None,
        priority=config.priority,
        status="pending",
        due_at=datetime.now(timezone.utc) + timedelta(days=config.due_in_days),
    )
    ctx.db.add(task)
    ctx.db.flush()
    return {"taskCreated": True, "taskId": task.id, "title": task.title}


def _action_crm_add_note(ctx: ActionContext, config: CrmAddNoteConfig) -> dict[str, Any]:
    customer_id = ctx.resource_or(ctx.trigger_data.customer_id)
    if not customer_id:
        raise MissingContent("Missing customer ID for CRM note")
    if not config.content or not config.content.strip():
        raise MissingContent("Missing note content")

    _load_customer(ctx, customer_id)
    note = CrmNote(
        id=generate_shortuuid(),
        store_id=ctx.store_id,
        customer_id=customer_id,
        user_id=None,
        content=_render_placeholders(config.content, ctx.trigger_data),
    )
    ctx.db.add(note)
    ctx.db.flush()
    return {"noteAdded": True, "noteId": note.id}


ACTION_HANDLERS: dict[str, ActionHandler] = {
    "send_email": ActionHandler(SendEmailConfig, _action_send_email),
    "change_order_status": ActionHandler(ChangeOrderStatusConfig, _action_change_order_status),
    "add_customer_tag": ActionHandler(CustomerTagConfig, _action_add_customer_tag),
    "remove_customer_tag": ActionHandler(CustomerTagConfig, _action_remove_customer_tag),
    "update_marketing_consent": ActionHandler(MarketingConsentConfig, _action_update_marketing_consent),
    "webhook_call": ActionHandler(WebhookCallConfig, _action_webhook_call),
    "crm.create_task": ActionHandler(CrmCreateTaskConfig, _action_crm_create_task),
    "crm.add_note": ActionHandler(CrmAddNoteConfig, _action_crm_add_note),
}

CRM_ACTION_TYPES = frozenset({"crm.create_task", "crm.add_note"})
