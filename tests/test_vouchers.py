"""Tests for voucher codes, issuance and verification."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from dealspot.errors import ConstraintViolationError, NotFoundError, ValidationError
from dealspot.extensions import db
from dealspot.models import Notification, Voucher, as_utc, utc_now
from dealspot.vouchers import (CODE_PATTERN, classify_voucher, generate_voucher_code,
                               issue_voucher, looks_like_voucher_code, verify_voucher)


def test_generate_voucher_code_format() -> None:
    now = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    code = generate_voucher_code(now)

    assert code.startswith("DS-1700000000000-")
    assert CODE_PATTERN.match(code)
    assert looks_like_voucher_code(code)


@pytest.mark.parametrize("code", ["", None, "ABC123", "DS-123-abcdef", "DS-abc-ABCDEF", "DS-123-ABCDEFG"])
def test_looks_like_voucher_code_rejects_other_input(code) -> None:
    assert not looks_like_voucher_code(code)


def test_issue_voucher_defaults_to_thirty_days(app, seed) -> None:
    with app.app_context():
        voucher = issue_voucher("u1", "d1")
        voucher_id = voucher.id

        stored = db.session.get(Voucher, voucher_id)
        assert stored.status == "active"
        assert stored.used_at is None
        assert looks_like_voucher_code(stored.code)
        assert as_utc(stored.expires_at) - as_utc(stored.purchased_at) == timedelta(days=30)


def test_issue_voucher_honours_validity_setting(app, seed) -> None:
    app.config["VOUCHER_VALIDITY_DAYS"] = 7

    with app.app_context():
        voucher = issue_voucher("u1", "d1")
        assert as_utc(voucher.expires_at) - as_utc(voucher.purchased_at) == timedelta(days=7)


def test_issue_voucher_with_explicit_expiry(app, seed) -> None:
    expires_at = utc_now() + timedelta(days=3)

    with app.app_context():
        voucher = issue_voucher("u1", "d1", expires_at)
        assert as_utc(voucher.expires_at) == expires_at


def test_issue_voucher_rejects_past_expiry(app, seed) -> None:
    with app.app_context():
        with pytest.raises(ValidationError) as excinfo:
            issue_voucher("u1", "d1", utc_now() - timedelta(minutes=1))

        assert excinfo.value.error == "invalid_expiry"
        assert Voucher.query.count() == 0


@pytest.mark.parametrize(
    ("user_id", "deal_id", "error"),
    [("nobody", "d1", "user_not_found"), ("u1", "missing", "deal_not_found")],
)
def test_issue_voucher_unknown_references(app, seed, user_id, deal_id, error) -> None:
    with app.app_context():
        with pytest.raises(NotFoundError) as excinfo:
            issue_voucher(user_id, deal_id)

        assert excinfo.value.error == error


def test_issue_voucher_code_collision(app, make_voucher) -> None:
    existing_id = make_voucher()

    with app.app_context():
        existing_code = db.session.get(Voucher, existing_id).code
        with patch("dealspot.vouchers.generate_voucher_code", return_value=existing_code):
            with pytest.raises(ConstraintViolationError):
                issue_voucher("u1", "d1")

        assert Voucher.query.count() == 1


@pytest.mark.parametrize(
    ("status", "expires_in", "expected"),
    [
        ("active", timedelta(days=1), "valid"),
        ("active", timedelta(days=-1), "expired"),
        ("used", timedelta(days=-1), "expired"),
        ("used", timedelta(days=1), "used"),
        ("expired", timedelta(days=1), "inactive"),
    ],
)
def test_classify_voucher_order(app, make_voucher, status, expires_in, expected) -> None:
    voucher_id = make_voucher(status=status, expires_in=expires_in)

    with app.app_context():
        assert classify_voucher(db.session.get(Voucher, voucher_id)) == expected


def test_verify_voucher_does_not_mutate(app, make_voucher) -> None:
    voucher_id = make_voucher(expires_in=timedelta(days=-1))

    with app.app_context():
        check = verify_voucher("DS-1700000000000-AB12CD")

        assert check.classification == "expired"
        assert not check.valid
        assert db.session.get(Voucher, voucher_id).status == "active"


def test_verify_voucher_unknown_code(app, seed) -> None:
    with app.app_context():
        with pytest.raises(NotFoundError):
            verify_voucher("DS-1700000000000-ZZZZZZ")
        with pytest.raises(NotFoundError):
            verify_voucher("not-a-code")


def test_create_voucher_endpoint(client, seed, auth_headers, app) -> None:
    response = client.post("/vouchers", json={"dealId": "d1"}, headers=auth_headers())

    assert response.status_code == 201
    voucher = response.get_json()["voucher"]
    assert voucher["status"] == "active"
    assert voucher["deal"]["title"] == "3-gangen diner met wijn"
    assert voucher["user"]["email"] == "buyer@example.com"

    with app.app_context():
        notification = Notification.query.one()
        assert notification.notification_type == "new_voucher"
        assert notification.deal_id == "d1"


def test_create_voucher_survives_notification_failure(client, seed, auth_headers, app) -> None:
    with patch("dealspot.vouchers.create_notification", side_effect=OperationalError("INSERT", {}, Exception("locked"))):
        response = client.post("/vouchers", json={"dealId": "d1"}, headers=auth_headers())

    assert response.status_code == 201
    voucher_id = response.get_json()["voucher"]["id"]
    with app.app_context():
        assert db.session.get(Voucher, voucher_id).status == "active"
        assert Notification.query.count() == 0


def test_create_voucher_requires_auth(client, seed) -> None:
    response = client.post("/vouchers", json={"deal_id": "d1"})

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_create_voucher_rejects_unknown_fields(client, seed, auth_headers) -> None:
    response = client.post("/vouchers", json={"deal_id": "d1", "status": "used"}, headers=auth_headers())

    assert response.status_code == 400
    body = response.get_json()
    assert body["error"] == "validation_error"
    assert body["fields"][0]["field"] == "status"


def test_create_voucher_missing_deal_id(client, seed, auth_headers) -> None:
    response = client.post("/vouchers", json={}, headers=auth_headers())

    assert response.status_code == 400
    assert response.get_json()["error"] == "validation_error"


def test_list_vouchers_for_user(client, make_voucher, auth_headers) -> None:
    make_voucher("DS-1700000000000-AAAAAA")
    make_voucher("DS-1700000000001-BBBBBB")

    response = client.get("/vouchers", headers=auth_headers())

    assert response.status_code == 200
    codes = [v["code"] for v in response.get_json()["vouchers"]]
    assert set(codes) == {"DS-1700000000000-AAAAAA", "DS-1700000000001-BBBBBB"}


def test_business_verify_endpoint(client, make_voucher) -> None:
    make_voucher()

    response = client.post("/business/vouchers/verify", json={"code": "DS-1700000000000-AB12CD"})

    assert response.status_code == 200
    body = response.get_json()
    assert body["valid"] is True
    assert body["status"] == "valid"
    assert body["voucher"]["business"]["id"] == "b1"
    assert body["voucher"]["deal"]["discounted_price"] == "39.00"
    assert body["voucher"]["user"]["email"] == "buyer@example.com"


def test_business_verify_endpoint_expired_still_answers(client, make_voucher) -> None:
    make_voucher(expires_in=timedelta(hours=-1))

    response = client.post("/business/vouchers/verify", json={"code": "DS-1700000000000-AB12CD"})

    assert response.status_code == 200
    body = response.get_json()
    assert body["valid"] is False
    assert body["status"] == "expired"
    assert body["voucher"]["effective_status"] == "expired"


def test_business_verify_endpoint_not_found(client, seed) -> None:
    response = client.post("/business/vouchers/verify", json={"code": "DS-1-XXXXXX"})

    assert response.status_code == 404
    assert response.get_json()["error"] == "voucher_not_found"


def test_business_verify_endpoint_missing_code(client, seed) -> None:
    response = client.post("/business/vouchers/verify", json={})

    assert response.status_code == 400
