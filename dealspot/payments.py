"""Customer charges and business payouts.

Customer card payments are mocked. Payouts go through a Stripe transfer when
a secret key and a connected account are configured and are simulated
otherwise; either way the outcome is recorded as a ``BusinessPayment`` row.
"""
from __future__ import annotations

import random
import time
from decimal import Decimal

import stripe
from flask import current_app

from .errors import (DownstreamFailure, NotFoundError, OwnershipError, PaymentFailedError,
                     StateConflictError, ValidationError)
from .extensions import db
from .models import Business, BusinessPayment, Voucher

PAYMENT_STATUSES = ("pending", "completed", "failed")


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def charge_customer(amount: Decimal, payment_method: str) -> str:
    """Simulate a card charge and return a transaction reference."""
    success_rate = float(current_app.config["MOCK_PAYMENT_SUCCESS_RATE"])
    if random.random() >= success_rate:
        current_app.logger.info("Mock charge of %s via %s declined", amount, payment_method)
        raise PaymentFailedError(
            "Payment failed",
            details={"reason": "Insufficient funds or payment method declined"},
        )
    return f"tx_{_epoch_ms()}"


def create_business_payment(
    business_id: str,
    voucher_id: str,
    amount: Decimal,
    description: str | None = None,
) -> BusinessPayment:
    payment = BusinessPayment(
        business_id=business_id,
        voucher_id=voucher_id,
        amount=Decimal(amount),
        description=description,
        status="pending",
    )
    db.session.add(payment)
    db.session.commit()
    return payment


def update_business_payment_status(
    payment_id: str,
    status: str,
    *,
    transfer_id: str | None = None,
) -> bool:
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"unknown payment status: {status}", error="invalid_status")

    values: dict[str, object] = {"status": status}
    if transfer_id is not None:
        values["stripe_transfer_id"] = transfer_id

    updated = BusinessPayment.query.filter_by(id=payment_id).update(values, synchronize_session=False)
    db.session.commit()
    return updated > 0


def transfer_funds(business: Business, amount: Decimal, description: str | None) -> str:
    """Move ``amount`` to the business and return the transfer reference."""
    amount_cents = int((Decimal(amount) * 100).quantize(Decimal("1")))
    currency = current_app.config["PAYOUT_CURRENCY"]
    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")

    if stripe_key and business.stripe_account_id:
        stripe.api_key = stripe_key
        transfer = stripe.Transfer.create(
            amount=amount_cents,
            currency=currency,
            destination=business.stripe_account_id,
            description=description or "",
            metadata={"business_id": business.id},
        )
        return transfer.id

    transfer_id = f"dummy_transfer_{_epoch_ms()}"
    current_app.logger.info(
        "Simulated transfer %s: %s cents %s to business %s",
        transfer_id,
        amount_cents,
        currency,
        business.id,
    )
    return transfer_id


def _run_transfer(payment: BusinessPayment, business: Business, description: str | None) -> BusinessPayment:
    try:
        transfer_id = transfer_funds(business, payment.amount, description)
    except Exception as exc:
        update_business_payment_status(payment.id, "failed")
        raise DownstreamFailure(f"transfer for payment {payment.id} failed") from exc

    update_business_payment_status(payment.id, "completed", transfer_id=transfer_id)
    db.session.refresh(payment)
    return payment


def process_business_payout(
    business_id: str,
    voucher_id: str,
    amount: Decimal,
    description: str | None = None,
) -> BusinessPayment:
    """Record a pending payout, transfer the funds and mark it completed.

    Any transfer error leaves the row in ``failed`` and raises
    ``DownstreamFailure``.
    """
    business = db.session.get(Business, business_id)
    if business is None:
        raise NotFoundError("business not found", error="business_not_found")

    payment = create_business_payment(business_id, voucher_id, amount, description)
    return _run_transfer(payment, business, description)


def settle_voucher_payout(business_id: str, voucher_id: str, description: str | None = None) -> BusinessPayment:
    """Pay a business for a voucher it has already redeemed.

    Used to settle payouts the redemption could not complete. The amount is
    always the deal's discounted price. A failed payout is retried on its
    existing row; a completed one is never paid twice.
    """
    voucher = db.session.get(Voucher, voucher_id)
    if voucher is None:
        raise NotFoundError("Voucher not found", error="voucher_not_found")

    deal = voucher.deal
    if deal is None or deal.business_id != business_id:
        raise OwnershipError(
            "This voucher is not valid for your business",
            details={"valid_for_business_id": deal.business_id if deal else None},
        )
    if voucher.status != "used":
        raise StateConflictError("Voucher has not been redeemed", error="voucher_not_redeemed")

    existing = BusinessPayment.query.filter_by(voucher_id=voucher_id).first()
    if existing is None:
        return process_business_payout(
            business_id,
            voucher_id,
            deal.discounted_price,
            description or f"Payout for voucher {voucher.code}",
        )
    if existing.status == "completed":
        raise StateConflictError("Voucher has already been paid out", error="already_paid")

    # Only a failed payout is retried, and only by whoever flips it back to pending.
    claimed = BusinessPayment.query.filter_by(id=existing.id, status="failed").update(
        {"status": "pending"},
        synchronize_session=False,
    )
    db.session.commit()
    if not claimed:
        raise StateConflictError("A payout for this voucher is already in progress", error="payout_in_progress")

    current_app.logger.info("Retrying failed payout %s for voucher %s", existing.id, voucher.code)
    db.session.refresh(existing)
    return _run_transfer(existing, deal.business, existing.description)


def list_business_payments(business_id: str) -> list[BusinessPayment]:
    return (
        BusinessPayment.query.filter_by(business_id=business_id)
        .order_by(BusinessPayment.created_at.desc())
        .all()
    )
