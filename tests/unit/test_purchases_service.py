from datetime import datetime, timedelta, timezone

import pytest

from storefront.coupons.rules import parse_timestamp
from storefront.payments.errors import ReconciliationError
from storefront.purchases import service

ITEMS = [{"id": "exam-1", "name": "AWS SAA", "quantity": 1}, {"id": "exam-2", "name": "CKA", "quantity": 1}]


def test_reconcile_grants_one_entitlement_per_exam_with_expiry(fake_db):
    result = service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=ITEMS[:1], payment_intent_id="pi_1")
    assert result["status"] == "granted"
    rows = fake_db.rows("purchased_exams")
    assert len(rows) == 1
    purchased = parse_timestamp(rows[0]["purchased_at"])
    expires = parse_timestamp(rows[0]["expires_at"])
    assert expires - purchased == timedelta(days=365)
    assert rows[0]["status"] == "active"


def test_reconcile_is_idempotent(fake_db):
    service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=ITEMS, payment_intent_id="pi_1")
    again = service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=ITEMS, payment_intent_id="pi_1")
    assert again["status"] == "already_granted"
    assert again["created"] == 0
    assert len(again["entitlements"]) == 2
    assert len(fake_db.rows("purchased_exams")) == 2


def test_reconcile_updates_session_and_payment(fake_db):
    fake_db.tables["checkout_sessions"] = [{"session_id": "cs_1", "user_id": "user-1", "status": "created"}]
    service.reconcile_purchase(
        session_id="cs_1", user_id="user-1", items=ITEMS, payment_intent_id="pi_1",
        payment={"amount_cents": 7499, "currency": "usd"},
    )
    session = fake_db.rows("checkout_sessions")[0]
    assert session["status"] == "completed"
    assert session["payment_intent_id"] == "pi_1"
    payment = fake_db.rows("payments")[0]
    assert payment["status"] == "succeeded"
    assert payment["amount_cents"] == 7499


def test_replayed_reconciliation_keeps_payment_timestamp(fake_db):
    service.reconcile_purchase(
        session_id="cs_1", user_id="user-1", items=ITEMS, payment_intent_id="pi_1",
        payment={"amount_cents": 7499, "currency": "usd"},
    )
    fake_db.rows("payments")[0]["succeeded_at"] = "2024-01-01T00:00:00+00:00"
    service.reconcile_purchase(
        session_id="cs_1", user_id="user-1", items=ITEMS, payment_intent_id="pi_1",
        payment={"amount_cents": 7499, "currency": "usd"},
    )
    payment = fake_db.rows("payments")[0]
    assert len(fake_db.rows("payments")) == 1
    assert payment["succeeded_at"] == "2024-01-01T00:00:00+00:00"
    assert payment["status"] == "succeeded"


def test_completed_transition_happens_once(fake_db):
    fake_db.tables["checkout_sessions"] = [{"session_id": "cs_1", "user_id": "user-1", "status": "created"}]
    service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=ITEMS, payment_intent_id="pi_1")
    first_completed_at = fake_db.rows("checkout_sessions")[0]["completed_at"]
    service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=ITEMS, payment_intent_id="pi_1")
    assert fake_db.rows("checkout_sessions")[0]["completed_at"] == first_completed_at


def test_missing_session_record_is_created_completed(fake_db):
    service.reconcile_purchase(session_id="cs_early", user_id="user-1", items=ITEMS, payment_intent_id="pi_1")
    rows = fake_db.rows("checkout_sessions")
    assert len(rows) == 1
    assert rows[0]["status"] == "completed"


def test_guest_is_a_noop(fake_db):
    result = service.reconcile_purchase(session_id="cs_1", user_id="guest", items=ITEMS, payment_intent_id="pi_1")
    assert result["status"] == "skipped"
    assert fake_db.calls == []


def test_items_without_id_are_skipped_and_duplicates_merged(fake_db):
    items = [{"name": "no id", "quantity": 1}, {"id": "exam-1", "quantity": 1}, {"id": "exam-1", "quantity": 2}]
    service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=items)
    rows = fake_db.rows("purchased_exams")
    assert len(rows) == 1
    assert rows[0]["quantity"] == 3


def test_items_fall_back_to_local_session(fake_db):
    fake_db.tables["checkout_sessions"] = [{
        "session_id": "cs_1", "user_id": "user-1", "status": "created",
        "line_items": [{"id": "exam-7", "name": "Terraform", "unit_amount": 1000, "quantity": 1}],
    }]
    service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=None)
    assert [r["exam_id"] for r in fake_db.rows("purchased_exams")] == ["exam-7"]


def test_nothing_to_grant_raises(fake_db):
    with pytest.raises(ReconciliationError):
        service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=[])


def test_truncated_items_without_local_session_raise_distinct_error(fake_db, caplog):
    with pytest.raises(ReconciliationError) as exc:
        service.reconcile_purchase(session_id="cs_big", user_id="user-1", items=None, items_truncated=True)
    assert exc.value.details == "itemsTruncated"
    assert "items metadata truncated" in caplog.text
    assert "nothing to grant" not in caplog.text


def test_write_failure_leaves_no_entitlement(fake_db):
    fake_db.fail_on.add(("purchased_exams", "upsert"))
    with pytest.raises(ReconciliationError):
        service.reconcile_purchase(session_id="cs_1", user_id="user-1", items=ITEMS, payment_intent_id="pi_1")
    assert fake_db.rows("purchased_exams") == []
    assert fake_db.rows("checkout_sessions") == []


def test_has_access_requires_active_and_unexpired(fake_db):
    now = datetime.now(timezone.utc)
    fake_db.tables["purchased_exams"] = [
        {"user_id": "user-1", "exam_id": "exam-1", "status": "active", "expires_at": (now + timedelta(days=10)).isoformat()},
        {"user_id": "user-1", "exam_id": "exam-2", "status": "active", "expires_at": (now - timedelta(days=1)).isoformat()},
        {"user_id": "user-1", "exam_id": "exam-3", "status": "refunded", "expires_at": (now + timedelta(days=10)).isoformat()},
    ]
    assert service.has_access("user-1", "exam-1") is True
    assert service.has_access("user-1", "exam-2") is False
    assert service.has_access("user-1", "exam-3") is False
    assert service.has_access("user-2", "exam-1") is False
