import json

import httpx
import pytest
from sqlalchemy import select

from app.models import CrmNote, CrmTask, Customer, CustomerTagLink, Order
from app.services.automation_actions import execute_action, execute_handler
from app.services.automation_errors import (
    CustomerNotFound,
    EmailDeliveryFailed,
    InvalidActionConfig,
    MissingContent,
    MissingRecipient,
    MissingTarget,
    OrderNotFound,
    TagNotFound,
    UnknownActionType,
    WebhookTransportError,
)

from factories import (
    install_webhook_transport,
    make_automation,
    make_customer,
    make_order,
    make_store,
    make_tag,
)


def _run(db, store, action_type, config, trigger_data=None, **kwargs):
    return execute_handler(
        db,
        action_type=action_type,
        action_config=config,
        trigger_type=kwargs.pop("trigger_type", "order.created"),
        trigger_data=trigger_data or {},
        store_id=store.id,
        **kwargs,
    )


def test_send_email_generic_uses_store_name_and_config(db_session, email_outbox):
    store = make_store(db_session, name="Lagos Linens")
    automation = make_automation(
        db_session,
        store,
        action_type="send_email",
        action_config={"subject": "Thanks for your order", "body": "We are packing it now."},
    )

    result = execute_action(
        db_session,
        automation,
        {"customerEmail": "buyer@example.com", "customerName": "Tobi"},
        store.id,
    )

    assert result == {"emailSent": True, "to": "buyer@example.com", "template": "custom"}
    assert len(email_outbox.sent) == 1
    sent = email_outbox.sent[0]
    assert sent.subject == "Thanks for your order"
    assert sent.sender_name == "Lagos Linens"
    assert "Hi Tobi," in sent.text_body
    assert "We are packing it now." in sent.html_body


def test_send_email_defaults_subject_and_falls_back_to_email_key(db_session, email_outbox):
    store = make_store(db_session, name="Lagos Linens")

    result = _run(db_session, store, "send_email", {}, {"email": "fallback@example.com"})

    assert result["to"] == "fallback@example.com"
    assert email_outbox.sent[0].subject == "Message from Lagos Linens"


def test_send_email_abandoned_cart_template_lists_items_and_recovery_link(db_session, email_outbox):
    store = make_store(db_session, name="Lagos Linens", slug="lagos-linens")
    items = [
        {"name": "Shirt", "quantity": 1, "price": 10},
        {"name": "Tote", "quantity": 1, "price": 5},
        {"name": "Cap", "quantity": 2, "price": 7.5},
        {"name": "Scarf", "quantity": 1, "price": 12},
    ]

    result = _run(
        db_session,
        store,
        "send_email",
        {"template": "abandoned_cart"},
        {"customerEmail": "cart@example.com", "items": items, "subtotal": 49},
        trigger_type="cart.abandoned",
    )

    assert result == {"emailSent": True, "to": "cart@example.com", "template": "abandoned_cart"}
    sent = email_outbox.sent[0]
    assert "https://my-quickshop.com/shops/lagos-linens/checkout" in sent.html_body
    assert "Scarf" not in sent.text_body
    assert "...and 1 more item(s)" in sent.text_body
    assert "Subtotal: 49.00" in sent.text_body


def test_send_email_requires_recipient(db_session, email_outbox):
    store = make_store(db_session)

    with pytest.raises(MissingRecipient):
        _run(db_session, store, "send_email", {"subject": "Hi"}, {"customerName": "No Email"})
    assert email_outbox.sent == []


def test_send_email_reports_delivery_failure(db_session, email_outbox):
    store = make_store(db_session)
    email_outbox.fail_with = "mailbox unavailable"

    with pytest.raises(EmailDeliveryFailed) as exc_info:
        _run(db_session, store, "send_email", {}, {"customerEmail": "buyer@example.com"})
    assert "mailbox unavailable" in str(exc_info.value)


def test_change_order_status_updates_order_in_same_store(db_session):
    store = make_store(db_session)
    order = make_order(db_session, store)

    result = _run(
        db_session,
        store,
        "change_order_status",
        {"status": "fulfilled"},
        resource_id=order.id,
        resource_type="order",
    )
    db_session.commit()

    assert result == {"orderUpdated": True, "orderId": order.id, "newStatus": "fulfilled"}
    stored = db_session.execute(select(Order).where(Order.id == order.id)).scalar_one()
    db_session.refresh(stored)
    assert stored.fulfillment_status == "fulfilled"


def test_change_order_status_never_touches_other_tenants(db_session):
    store = make_store(db_session)
    other_store = make_store(db_session, name="Other")
    foreign_order = make_order(db_session, other_store)

    with pytest.raises(OrderNotFound):
        _run(db_session, store, "change_order_status", {"status": "fulfilled"}, {"orderId": foreign_order.id})

    db_session.rollback()
    stored = db_session.execute(select(Order).where(Order.id == foreign_order.id)).scalar_one()
    assert stored.fulfillment_status == "unfulfilled"


def test_change_order_status_validates_target_and_status(db_session):
    store = make_store(db_session)
    order = make_order(db_session, store)

    with pytest.raises(MissingTarget):
        _run(db_session, store, "change_order_status", {}, {"orderId": order.id})
    with pytest.raises(MissingTarget):
        _run(db_session, store, "change_order_status", {"status": "fulfilled"}, {})
    with pytest.raises(InvalidActionConfig):
        _run(db_session, store, "change_order_status", {"status": "shipped"}, {"orderId": order.id})


def test_add_customer_tag_is_idempotent(db_session):
    store = make_store(db_session)
    customer = make_customer(db_session, store)
    tag = make_tag(db_session, store)

    first = _run(db_session, store, "add_customer_tag", {"tagId": tag.id}, {"customerId": customer.id})
    db_session.commit()
    second = _run(db_session, store, "add_customer_tag", {"tagId": tag.id}, {"customerId": customer.id})
    db_session.commit()

    assert first["tagAdded"] is True
    assert second["tagAdded"] is False
    links = db_session.execute(
        select(CustomerTagLink).where(CustomerTagLink.customer_id == customer.id)
    ).scalars().all()
    assert len(links) == 1


def test_remove_customer_tag_is_idempotent(db_session):
    store = make_store(db_session)
    customer = make_customer(db_session, store)
    tag = make_tag(db_session, store)
    _run(db_session, store, "add_customer_tag", {"tagId": tag.id}, resource_id=customer.id)
    db_session.commit()

    first = _run(db_session, store, "remove_customer_tag", {"tagId": tag.id}, resource_id=customer.id)
    db_session.commit()
    second = _run(db_session, store, "remove_customer_tag", {"tagId": tag.id}, resource_id=customer.id)

    assert first["tagRemoved"] is True
    assert second == {"tagRemoved": False, "customerId": customer.id, "tagId": tag.id}


def test_customer_tag_actions_reject_unknown_customer_and_tag(db_session):
    store = make_store(db_session)
    other_store = make_store(db_session, name="Other")
    customer = make_customer(db_session, store)
    foreign_customer = make_customer(db_session, other_store)
    foreign_tag = make_tag(db_session, other_store)
    tag = make_tag(db_session, store)

    with pytest.raises(CustomerNotFound):
        _run(db_session, store, "add_customer_tag", {"tagId": tag.id}, {"customerId": foreign_customer.id})
    with pytest.raises(TagNotFound):
        _run(db_session, store, "add_customer_tag", {"tagId": foreign_tag.id}, {"customerId": customer.id})
    with pytest.raises(MissingTarget):
        _run(db_session, store, "add_customer_tag", {}, {"customerId": customer.id})


def test_update_marketing_consent(db_session):
    store = make_store(db_session)
    customer = make_customer(db_session, store)

    result = _run(db_session, store, "update_marketing_consent", {"consent": True}, {"customerId": customer.id})
    db_session.commit()

    assert result == {"consentUpdated": True, "customerId": customer.id, "consent": True}
    stored = db_session.execute(select(Customer).where(Customer.id == customer.id)).scalar_one()
    assert stored.accepts_marketing is True

    with pytest.raises(MissingTarget):
        _run(db_session, store, "update_marketing_consent", {"consent": True}, {})


def test_webhook_call_posts_envelope_and_reports_status(db_session, monkeypatch):
    store = make_store(db_session)
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(503)

    install_webhook_transport(monkeypatch, handler)

    result = _run(
        db_session,
        store,
        "webhook_call",
        {"url": "https://hooks.example.com/orders", "method": "put", "headers": {"X-Token": "abc"}},
        {"orderId": "ord_1", "total": 99.5},
    )

    assert result == {
        "webhookCalled": True,
        "url": "https://hooks.example.com/orders",
        "statusCode": 503,
        "success": False,
    }
    request = captured[0]
    assert request.method == "PUT"
    assert request.headers["X-Token"] == "abc"
    body = json.loads(request.content)
    assert body["event"] == "order.created"
    assert body["data"] == {"orderId": "ord_1", "total": 99.5}
    assert "timestamp" in body


def test_webhook_call_transport_failure_raises(db_session, monkeypatch):
    store = make_store(db_session)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    install_webhook_transport(monkeypatch, handler)

    with pytest.raises(WebhookTransportError):
        _run(db_session, store, "webhook_call", {"url": "https://unreachable.invalid/hook"})
    with pytest.raises(MissingTarget):
        _run(db_session, store, "webhook_call", {})


def test_webhook_call_forwards_numeric_ids_untouched(db_session, monkeypatch):
    store = make_store(db_session)
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200)

    install_webhook_transport(monkeypatch, handler)

    result = _run(
        db_session,
        store,
        "webhook_call",
        {"url": "https://hooks.example.com/orders"},
        {"orderId": 42, "orderNumber": 1001, "customerId": 7, "items": [{"name": "Mug", "price": None}]},
    )

    assert result["success"] is True
    assert json.loads(captured[0].content)["data"] == {
        "orderId": 42,
        "orderNumber": 1001,
        "customerId": 7,
        "items": [{"name": "Mug", "price": None}],
    }


def test_numeric_event_fields_are_read_as_text(db_session):
    store = make_store(db_session, plugins=["crm"])
    customer = make_customer(db_session, store)

    result = _run(
        db_session,
        store,
        "crm.add_note",
        {"content": "Order {orderNumber} came in"},
        {"orderNumber": 1001, "total": "not a number"},
        resource_id=customer.id,
        resource_type="customer",
    )
    db_session.commit()

    note = db_session.execute(select(CrmNote).where(CrmNote.id == result["noteId"])).scalar_one()
    assert note.content == "Order 1001 came in"


def test_unreadable_cart_items_are_skipped(db_session, email_outbox):
    store = make_store(db_session)

    _run(
        db_session,
        store,
        "send_email",
        {"template": "abandoned_cart"},
        {
            "customerEmail": "cart@example.com",
            "items": [
                {"name": "Mug", "quantity": None, "price": None},
                {"name": "Broken", "price": "free"},
                "not-an-item",
            ],
            "subtotal": 0,
        },
        trigger_type="cart.abandoned",
    )

    text_body = email_outbox.sent[0].text_body
    assert "- Mug x1: 0.00" in text_body
    assert "Broken" not in text_body


def test_crm_create_task_applies_defaults(db_session):
    store = make_store(db_session, plugins=["crm"])
    customer = make_customer(db_session, store)

    result = _run(db_session, store, "crm.create_task", {}, {"customerId": customer.id})
    db_session.commit()

    assert result["taskCreated"] is True
    assert result["title"] == "Automation task"
    task = db_session.execute(select(CrmTask).where(CrmTask.id == result["taskId"])).scalar_one()
    assert task.priority == "medium"
    assert task.status == "pending"
    assert task.customer_id == customer.id
    assert task.due_at is not None


def test_crm_add_note_renders_placeholders(db_session):
    store = make_store(db_session, plugins=["crm"])
    customer = make_customer(db_session, store)

    result = _run(
        db_session,
        store,
        "crm.add_note",
        {"content": "{customerName} placed {orderNumber} for {total}"},
        {"customerId": customer.id, "customerName": "Tobi", "orderNumber": "QS-1001", "total": 150},
    )
    db_session.commit()

    note = db_session.execute(select(CrmNote).where(CrmNote.id == result["noteId"])).scalar_one()
    assert note.content == "Tobi placed QS-1001 for 150"
    assert note.user_id is None


def test_crm_add_note_requires_content_and_customer(db_session):
    store = make_store(db_session, plugins=["crm"])
    customer = make_customer(db_session, store)

    with pytest.raises(MissingContent):
        _run(db_session, store, "crm.add_note", {"content": "  "}, {"customerId": customer.id})
    with pytest.raises(MissingContent) as exc_info:
        _run(db_session, store, "crm.add_note", {"content": "hello"}, {})
    assert str(exc_info.value) == "Missing customer ID for CRM note"


def test_unknown_action_type_and_malformed_config(db_session):
    store = make_store(db_session)

    with pytest.raises(UnknownActionType) as exc_info:
        _run(db_session, store, "send_sms", {})
    assert str(exc_info.value) == "Unknown action type: send_sms"

    with pytest.raises(InvalidActionConfig):
        _run(db_session, store, "crm.create_task", {"priority": "urgent"})
    with pytest.raises(InvalidActionConfig):
        _run(db_session, store, "webhook_call", ["not", "an", "object"])
