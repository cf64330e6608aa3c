from datetime import datetime, timedelta, timezone

from storefront.coupons import rules


def test_percentage_discount_is_rounded_to_cent():
    coupon = {"kind": "percentage", "value": 15}
    assert rules.compute_discount(coupon, 3333) == 500


def test_percentage_discount_clamped_by_max_discount():
    coupon = {"kind": "percentage", "value": 50, "max_discount_cents": 1500}
    assert rules.compute_discount(coupon, 10000) == 1500


def test_percentage_under_max_discount_is_kept():
    coupon = {"kind": "percentage", "value": 10, "max_discount_cents": 1500}
    assert rules.compute_discount(coupon, 10000) == 1000


def test_fixed_discount_never_exceeds_subtotal():
    assert rules.compute_discount({"kind": "fixed", "value": 2000}, 10000) == 2000
    assert rules.compute_discount({"kind": "fixed", "value": 5000}, 3000) == 3000


def test_unknown_kind_gives_no_discount():
    assert rules.compute_discount({"kind": "bogo", "value": 10}, 10000) == 0


def test_window_not_started_and_expired():
    now = datetime(2026, 1, 15, tzinfo=timezone.utc)
    future = {"valid_from": (now + timedelta(days=1)).isoformat()}
    past = {"valid_until": "2026-01-01T00:00:00Z"}
    assert rules.check_window(future, now) == "Ce coupon n'est pas encore actif"
    assert rules.check_window(past, now) == "Ce coupon a expiré"
    assert rules.check_window({"valid_from": "2026-01-01T00:00:00Z", "valid_until": "2026-02-01T00:00:00Z"}, now) is None


def test_scope_categories_and_excluded_exams():
    coupon = {"categories": ["cloud"], "excluded_exam_ids": ["exam-9"]}
    assert rules.check_scope(coupon, ["exam-1"], ["cloud"]) is None
    assert "catégorie" in rules.check_scope(coupon, ["exam-1"], ["security"])
    assert "examen" in rules.check_scope(coupon, ["exam-9"], ["cloud"])


def test_normalize_code_and_timestamp_parsing():
    assert rules.normalize_code("  welcome50 ") == "WELCOME50"
    assert rules.parse_timestamp("not-a-date") is None
    assert rules.parse_timestamp("2026-03-01T10:00:00").tzinfo == timezone.utc


def test_validate_definition_errors():
    assert rules.validate_definition({"code": "X", "kind": "percentage", "value": 10}) is not None
    assert rules.validate_definition(
        {"code": "X", "provider_coupon_id": "c1", "kind": "percentage", "value": 120}
    ) == "Le pourcentage doit être compris entre 0 et 100"
    assert rules.validate_definition(
        {"code": "X", "provider_coupon_id": "c1", "kind": "fixed", "value": -1}
    ) == "Le montant fixe ne peut pas être négatif"
    assert rules.validate_definition({"code": "X", "provider_coupon_id": "c1", "kind": "fixed", "value": 500}) is None
