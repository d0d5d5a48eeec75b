from sqlalchemy import select

from app.models import Automation, AutomationRun, CrmNote, CustomerTagLink
from app.services.automation_service import (
    check_conditions,
    create_default_automations,
    list_automation_runs,
    list_store_automations,
    process_event,
)

from factories import make_automation, make_customer, make_run, make_store, make_tag


def _runs_for(db, automation_id: str) -> list[AutomationRun]:
    db.expire_all()
    return db.execute(
        select(AutomationRun).where(AutomationRun.automation_id == automation_id)
    ).scalars().all()


def test_check_conditions_handles_totals_cart_values_and_tags():
    assert check_conditions(None, {}) is True
    assert check_conditions({}, {"total": 1}) is True
    assert check_conditions({"minOrderTotal": 100}, {"total": 150}) is True
    assert check_conditions({"minOrderTotal": 100}, {"orderTotal": 99}) is False
    assert check_conditions({"minOrderTotal": 100}, {}) is False
    assert check_conditions({"minCartValue": 50}, {"cartValue": 75}) is True
    assert check_conditions({"minCartValue": 50}, {"subtotal": "20"}) is False
    assert check_conditions({"specificTag": "tag_vip"}, {"tagId": "tag_vip"}) is True
    assert check_conditions({"specificTag": "tag_vip"}, {"tagId": "tag_new"}) is False
    assert check_conditions({"minOrderTotal": "100"}, {"total": 1}) is True


def test_delayed_automation_schedules_a_run(db_session, email_outbox):
    store = make_store(db_session)
    automation = make_automation(db_session, store, action_type="send_email", delay_minutes=30)

    summary = process_event(
        db_session,
        store_id=store.id,
        event_type="order.created",
        data={"customerEmail": "a@example.com", "total": 40},
        resource_id="ord_1",
        resource_type="order",
        event_id="evt_1",
    )

    assert summary.scheduled == 1
    assert summary.executed == 0
    runs = _runs_for(db_session, automation.id)
    assert len(runs) == 1
    assert runs[0].status == "scheduled"
    assert runs[0].scheduled_for is not None
    assert runs[0].started_at is None
    assert runs[0].trigger_event_id == "evt_1"
    assert runs[0].trigger_data == {"customerEmail": "a@example.com", "total": 40}
    assert email_outbox.sent == []


def test_immediate_automation_runs_and_updates_counters(db_session):
    store = make_store(db_session)
    customer = make_customer(db_session, store)
    tag = make_tag(db_session, store)
    automation = make_automation(
        db_session,
        store,
        trigger_type="customer.created",
        action_type="add_customer_tag",
        action_config={"tagId": tag.id},
    )

    summary = process_event(
        db_session,
        store_id=store.id,
        event_type="customer.created",
        data={"customerId": customer.id},
        resource_id=customer.id,
        resource_type="customer",
    )

    assert (summary.matched, summary.executed, summary.succeeded) == (1, 1, 1)
    runs = _runs_for(db_session, automation.id)
    assert runs[0].status == "completed"
    assert runs[0].result["tagAdded"] is True
    link = db_session.execute(
        select(CustomerTagLink).where(CustomerTagLink.customer_id == customer.id)
    ).scalar_one_or_none()
    assert link is not None
    stored = db_session.get(Automation, automation.id)
    assert (stored.total_runs, stored.total_successes) == (1, 1)


def test_crm_actions_require_the_crm_plugin(db_session):
    plain_store = make_store(db_session)
    crm_store = make_store(db_session, plugins=["crm"])
    plain_customer = make_customer(db_session, plain_store)
    crm_customer = make_customer(db_session, crm_store)
    plain_rule = make_automation(
        db_session,
        plain_store,
        action_type="crm.add_note",
        action_config={"content": "New order {orderNumber}"},
    )
    crm_rule = make_automation(
        db_session,
        crm_store,
        action_type="crm.add_note",
        action_config={"content": "New order {orderNumber}"},
    )

    skipped = process_event(
        db_session,
        store_id=plain_store.id,
        event_type="order.created",
        data={"customerId": plain_customer.id, "orderNumber": "QS-1"},
    )
    executed = process_event(
        db_session,
        store_id=crm_store.id,
        event_type="order.created",
        data={"customerId": crm_customer.id, "orderNumber": "QS-2"},
    )

    assert skipped.skipped == 1
    assert _runs_for(db_session, plain_rule.id) == []
    assert executed.succeeded == 1
    notes = db_session.execute(select(CrmNote).where(CrmNote.store_id == crm_store.id)).scalars().all()
    assert [note.content for note in notes] == ["New order QS-2"]
    assert len(_runs_for(db_session, crm_rule.id)) == 1


def test_conditions_filter_automations(db_session, email_outbox):
    store = make_store(db_session)
    big_orders = make_automation(
        db_session,
        store,
        action_type="send_email",
        trigger_conditions={"minOrderTotal": 100},
    )

    summary = process_event(
        db_session,
        store_id=store.id,
        event_type="order.created",
        data={"customerEmail": "a@example.com", "total": 50},
    )

    assert summary.matched == 0
    assert summary.skipped == 1
    assert _runs_for(db_session, big_orders.id) == []


def test_one_failing_automation_does_not_affect_the_others(db_session, email_outbox):
    store = make_store(db_session)
    broken = make_automation(
        db_session, store, trigger_type="order.paid", action_type="webhook_call", action_config={}
    )
    working = make_automation(db_session, store, trigger_type="order.paid", action_type="send_email")

    summary = process_event(
        db_session,
        store_id=store.id,
        event_type="order.paid",
        data={"customerEmail": "a@example.com"},
    )

    assert (summary.executed, summary.succeeded, summary.failed) == (2, 1, 1)
    broken_runs = _runs_for(db_session, broken.id)
    assert broken_runs[0].status == "failed"
    assert broken_runs[0].error == "No webhook URL specified"
    assert _runs_for(db_session, working.id)[0].status == "completed"
    assert [email.to for email in email_outbox.sent] == ["a@example.com"]


def test_unmapped_and_scanner_driven_events_are_ignored(db_session):
    store = make_store(db_session)
    cart_rule = make_automation(db_session, store, trigger_type="cart.abandoned")

    for event_type in ("cart.abandoned", "product.viewed"):
        summary = process_event(db_session, store_id=store.id, event_type=event_type, data={})
        assert summary.matched == 0
    assert _runs_for(db_session, cart_rule.id) == []


def test_default_automations_are_created_once(db_session):
    store = make_store(db_session)

    created = create_default_automations(db_session, store_id=store.id)
    again = create_default_automations(db_session, store_id=store.id)

    assert created is not None
    assert again is None
    automations = list_store_automations(db_session, store_id=store.id)
    assert len(automations) == 1
    rule = automations[0]
    assert rule.trigger_type == "cart.abandoned"
    assert rule.action_type == "send_email"
    assert rule.action_config["template"] == "abandoned_cart"
    assert rule.trigger_conditions == {"minCartValue": 0}
    assert rule.delay_minutes == 60
    assert rule.is_active is False
    assert rule.is_built_in is True


def test_read_helpers_are_scoped_to_the_store(db_session):
    store = make_store(db_session)
    other_store = make_store(db_session, name="Other")
    automation = make_automation(db_session, store)
    other_automation = make_automation(db_session, other_store)
    for _ in range(3):
        make_run(db_session, automation)
    make_run(db_session, other_automation)

    assert [rule.id for rule in list_store_automations(db_session, store_id=store.id)] == [automation.id]
    assert len(list_automation_runs(db_session, store_id=store.id)) == 3
    assert len(list_automation_runs(db_session, store_id=store.id, limit=2)) == 2
    assert list_automation_runs(db_session, store_id=store.id, automation_id=other_automation.id) == []
