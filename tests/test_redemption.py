"""Tests for business voucher redemption."""
from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from dealspot.auth import BUSINESS_SALT
from dealspot.errors import DownstreamFailure, OwnershipError, StateConflictError
from dealspot.extensions import db
from dealspot.models import BusinessPayment, Notification, Voucher
from dealspot.vouchers import claim_voucher, redeem_voucher

CODE = "DS-1700000000000-AB12CD"


def _redeem(client, business_id, code=CODE):
    return client.post("/business/vouchers/redeem", json={"code": code, "businessId": business_id})


def test_redeem_wrong_business_names_owner(app, client, make_voucher) -> None:
    voucher_id = make_voucher()

    response = _redeem(client, "b2")

    assert response.status_code == 403
    body = response.get_json()
    assert body["error"] == "wrong_business"
    assert body["valid_for_business_id"] == "b1"
    assert body["valid_for"] == "Restaurant De Gouden Eeuw"

    with app.app_context():
        voucher = db.session.get(Voucher, voucher_id)
        assert voucher.status == "active"
        assert voucher.used_at is None
        assert Notification.query.count() == 0
        assert BusinessPayment.query.count() == 0


def test_redeem_success_creates_one_notification_and_payment(app, client, make_voucher) -> None:
    voucher_id = make_voucher()

    response = _redeem(client, "b1")

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["voucher"]["status"] == "used"
    assert body["voucher"]["used_at"] is not None

    with app.app_context():
        voucher = db.session.get(Voucher, voucher_id)
        assert voucher.status == "used"
        assert voucher.used_at is not None

        notification = Notification.query.one()
        assert notification.user_id == "u1"
        assert notification.deal_id == "d1"
        assert notification.notification_type == "voucher_redeemed"

        payment = BusinessPayment.query.one()
        assert payment.business_id == "b1"
        assert payment.voucher_id == voucher_id
        assert payment.amount == Decimal("39.00")
        assert payment.status == "completed"
        assert payment.stripe_transfer_id.startswith("dummy_transfer_")


def test_redeem_twice_reports_already_used(app, client, make_voucher) -> None:
    make_voucher()

    first = _redeem(client, "b1")
    second = _redeem(client, "b1")

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.get_json()["error"] == "voucher_used"

    with app.app_context():
        assert BusinessPayment.query.count() == 1
        assert Notification.query.count() == 1


def test_claim_voucher_only_succeeds_once(app, make_voucher) -> None:
    voucher_id = make_voucher()

    with app.app_context():
        assert claim_voucher(voucher_id) is True
        assert claim_voucher(voucher_id) is False
        assert db.session.get(Voucher, voucher_id).status == "used"


def test_redeem_loses_race_after_precondition_check(app, make_voucher) -> None:
    voucher_id = make_voucher()

    with app.app_context():
        # Another request flips the row between our read and our write.
        with patch("dealspot.vouchers.claim_voucher", side_effect=lambda vid, now=None: False):
            with pytest.raises(StateConflictError) as excinfo:
                redeem_voucher(CODE, "b1")

        assert excinfo.value.error == "voucher_used"
        assert db.session.get(Voucher, voucher_id).status == "active"
        assert BusinessPayment.query.count() == 0


@pytest.mark.parametrize(
    ("status", "expires_in", "error"),
    [
        ("active", timedelta(hours=-1), "voucher_expired"),
        ("used", timedelta(days=1), "voucher_used"),
        ("expired", timedelta(days=1), "voucher_inactive"),
    ],
)
def test_redeem_rejects_unusable_vouchers(app, client, make_voucher, status, expires_in, error) -> None:
    voucher_id = make_voucher(status=status, expires_in=expires_in)

    response = _redeem(client, "b1")

    assert response.status_code == 409
    assert response.get_json()["error"] == error
    with app.app_context():
        assert db.session.get(Voucher, voucher_id).status == status
        assert BusinessPayment.query.count() == 0


def test_redeem_checks_ownership_before_state(app, make_voucher) -> None:
    make_voucher(status="used")

    with app.app_context():
        with pytest.raises(OwnershipError):
            redeem_voucher(CODE, "b2")


def test_redeem_unknown_code(client, seed) -> None:
    response = _redeem(client, "b1", code="DS-1700000000000-ZZZZZZ")

    assert response.status_code == 404
    assert response.get_json()["error"] == "voucher_not_found"


def test_redeem_requires_business_id(client, make_voucher) -> None:
    make_voucher()

    response = client.post("/business/vouchers/redeem", json={"code": CODE})

    assert response.status_code == 400
    assert response.get_json()["error"] == "validation_error"


def test_redeem_survives_payout_failure(app, client, make_voucher) -> None:
    voucher_id = make_voucher()

    with patch("dealspot.vouchers.process_business_payout", side_effect=DownstreamFailure("transfer down")):
        response = _redeem(client, "b1")

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Voucher, voucher_id).status == "used"
        assert Notification.query.count() == 1
        assert BusinessPayment.query.count() == 0


def test_redeem_survives_notification_failure(app, client, make_voucher) -> None:
    voucher_id = make_voucher()

    with patch("dealspot.vouchers.create_notification", side_effect=OperationalError("INSERT", {}, Exception("locked"))):
        response = _redeem(client, "b1")

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Voucher, voucher_id).status == "used"
        assert Notification.query.count() == 0
        assert BusinessPayment.query.one().status == "completed"


def test_business_vouchers_listing(client, make_voucher) -> None:
    make_voucher()

    response = client.get("/business/b1/vouchers")
    other = client.get("/business/b2/vouchers")

    assert response.status_code == 200
    assert [v["code"] for v in response.get_json()["vouchers"]] == [CODE]
    assert other.get_json()["vouchers"] == []


def test_use_voucher_shares_business_redemption(app, client, make_voucher, auth_headers) -> None:
    voucher_id = make_voucher()

    response = client.patch(f"/vouchers/{voucher_id}/use", headers=auth_headers())
    again = _redeem(client, "b1")

    assert response.status_code == 200
    assert response.get_json()["voucher"]["status"] == "used"
    assert again.status_code == 409
    assert again.get_json()["error"] == "voucher_used"

    with app.app_context():
        payment = BusinessPayment.query.one()
        assert payment.business_id == "b1"
        assert payment.amount == Decimal("39.00")


def test_use_voucher_rejects_other_users(app, client, make_voucher, auth_headers) -> None:
    voucher_id = make_voucher()

    response = client.patch(f"/vouchers/{voucher_id}/use", headers=auth_headers({"user_id": "intruder"}))

    assert response.status_code == 403
    assert response.get_json()["error"] == "forbidden"
    with app.app_context():
        assert db.session.get(Voucher, voucher_id).status == "active"


def test_use_voucher_not_found(client, seed, auth_headers) -> None:
    response = client.patch("/vouchers/missing/use", headers=auth_headers())

    assert response.status_code == 404


def test_redeem_marks_payout_failed_on_transfer_error(app, client, make_voucher) -> None:
    voucher_id = make_voucher()

    with patch("dealspot.payments.transfer_funds", side_effect=ConnectionError("network down")):
        response = _redeem(client, "b1")

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Voucher, voucher_id).status == "used"
        assert BusinessPayment.query.one().status == "failed"
        assert Notification.query.count() == 1


def test_payout_before_redemption_does_not_block_it(app, client, make_voucher, auth_headers) -> None:
    voucher_id = make_voucher()
    headers = auth_headers({"business_user_id": None, "business_id": "b1"}, salt=BUSINESS_SALT)

    early = client.post(
        "/business/payments/process",
        json={"business_id": "b1", "voucher_id": voucher_id},
        headers=headers,
    )
    response = _redeem(client, "b1")

    assert early.status_code == 409
    assert response.status_code == 200
    with app.app_context():
        payment = BusinessPayment.query.one()
        assert payment.business_id == "b1"
        assert payment.amount == Decimal("39.00")
        assert payment.status == "completed"


@pytest.mark.file_db
def test_concurrent_redemptions_have_one_winner(app, make_voucher) -> None:
    make_voucher()
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def attempt() -> None:
        with app.app_context():
            barrier.wait()
            try:
                redeem_voucher(CODE, "b1")
                outcome = "ok"
            except StateConflictError as exc:
                outcome = exc.error
            except Exception as exc:
                outcome = repr(exc)
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(results) == workers
    assert results.count("ok") == 1
    assert results.count("voucher_used") == workers - 1
    with app.app_context():
        assert BusinessPayment.query.count() == 1
        assert Notification.query.count() == 1
