"""Voucher lifecycle: issuance, verification and redemption.

A voucher moves from ``active`` to ``used`` exactly once. The transition is a
conditional UPDATE on ``status = 'active'`` so that concurrent redemptions of
the same code cannot both succeed. Expiry is never stored; it is derived from
``expires_at`` whenever a voucher is checked.
"""
from __future__ import annotations

import random
import re
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from .errors import (ConstraintViolationError, ForbiddenError,
                     NotFoundError, OwnershipError, StateConflictError,
                     ValidationError)
from .extensions import db
from .models import Deal, User, Voucher, as_utc, utc_now
from .notifications import create_notification
from .payments import charge_customer, process_business_payout

CODE_PREFIX = "DS-"
CODE_ALPHABET = string.digits + string.ascii_uppercase  # base36
CODE_SUFFIX_LENGTH = 6
CODE_PATTERN = re.compile(r"^DS-\d+-[0-9A-Z]{6}$")

CHECK_MESSAGES = {
    "valid": "Voucher is valid and ready to use",
    "expired": "Voucher is expired",
    "used": "Voucher has already been used",
    "inactive": "Voucher is not active",
}


@dataclass
class VoucherCheck:
    """Read-only verdict on a voucher code."""

    classification: str
    voucher: dict[str, object]

    @property
    def valid(self) -> bool:
        return self.classification == "valid"

    @property
    def message(self) -> str:
        return CHECK_MESSAGES[self.classification]

    def to_dict(self) -> dict[str, object]:
        return {
            "valid": self.valid,
            "status": self.classification,
            "message": self.message,
            "voucher": self.voucher,
        }


def generate_voucher_code(now: datetime | None = None) -> str:
    """Return a code shaped ``DS-<epoch-ms>-<6 base36 chars>``."""
    now = now or utc_now()
    epoch_ms = int(now.timestamp() * 1000)
    suffix = "".join(random.choices(CODE_ALPHABET, k=CODE_SUFFIX_LENGTH))
    return f"{CODE_PREFIX}{epoch_ms}-{suffix}"


def looks_like_voucher_code(code: str | None) -> bool:
    return bool(code) and CODE_PATTERN.match(code) is not None


def voucher_view(voucher: Voucher) -> dict[str, object]:
    """Voucher joined with the deal, business and buyer an operator checks against."""
    deal = voucher.deal
    business = deal.business if deal else None
    payload = voucher.to_dict()
    payload.update({
        "deal": {
            "id": deal.id,
            "title": deal.title,
            "description": deal.description,
            "original_price": f"{deal.original_price:.2f}",
            "discounted_price": f"{deal.discounted_price:.2f}",
            "discount_percentage": deal.discount_percentage,
        } if deal else None,
        "business": business.to_dict_basic() if business else None,
        "user": {
            "id": voucher.user.id,
            "email": voucher.user.email,
        } if voucher.user else None,
    })
    return payload


def _voucher_query():
    return Voucher.query.options(
        joinedload(Voucher.deal).joinedload(Deal.business),
        joinedload(Voucher.user),
    )


def find_voucher_by_code(code: str) -> Voucher:
    # Input that cannot be a voucher code is rejected before touching the database.
    if not looks_like_voucher_code(code):
        raise NotFoundError("Voucher not found", error="voucher_not_found")

    voucher = _voucher_query().filter(Voucher.code == code).first()
    if voucher is None:
        raise NotFoundError("Voucher not found", error="voucher_not_found")
    return voucher


def classify_voucher(voucher: Voucher, now: datetime | None = None) -> str:
    # Time-based expiry wins over whatever status is stored.
    if voucher.is_expired(now):
        return "expired"
    if voucher.status == "used":
        return "used"
    if voucher.status != "active":
        return "inactive"
    return "valid"


def verify_voucher(code: str) -> VoucherCheck:
    voucher = find_voucher_by_code(code)
    return VoucherCheck(classification=classify_voucher(voucher), voucher=voucher_view(voucher))


def issue_voucher(
    user_id: str,
    deal_id: str,
    expires_at: datetime | None = None,
    *,
    commit: bool = True,
) -> Voucher:
    """Create an active voucher for ``user_id`` on ``deal_id``.

    Without an explicit expiry the voucher is valid for
    ``VOUCHER_VALIDITY_DAYS`` (30 by default) from issuance.
    """
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found", error="user_not_found")
    if db.session.get(Deal, deal_id) is None:
        raise NotFoundError("Deal not found", error="deal_not_found")

    now = utc_now()
    if expires_at is None:
        expires_at = now + timedelta(days=current_app.config["VOUCHER_VALIDITY_DAYS"])
    else:
        expires_at = as_utc(expires_at)
        if expires_at <= now:
            raise ValidationError("expires_at must be in the future", error="invalid_expiry")

    voucher = Voucher(
        user_id=user_id,
        deal_id=deal_id,
        code=generate_voucher_code(now),
        status="active",
        purchased_at=now,
        expires_at=expires_at,
    )
    db.session.add(voucher)

    try:
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConstraintViolationError("voucher could not be issued", error="voucher_conflict") from exc

    return voucher


def notify_voucher_purchased(voucher: Voucher) -> None:
    """Tell the buyer about a new voucher; failures never undo the issuance."""
    voucher_id = voucher.id
    try:
        create_notification(
            voucher.user_id,
            "New voucher",
            f"Your voucher for {voucher.deal.title} has been purchased!",
            "new_voucher",
            deal_id=voucher.deal_id,
        )
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to notify buyer about voucher %s", voucher_id, exc_info=exc)


def purchase_deal(user_id: str, deal_id: str, payment_method: str = "card") -> tuple[Voucher, str]:
    """Charge the buyer, take one unit of stock and issue the voucher."""
    deal = db.session.get(Deal, deal_id)
    if deal is None:
        raise NotFoundError("Deal not found", error="deal_not_found")
    if not deal.is_active or deal.is_expired():
        raise StateConflictError("Deal is no longer available", error="deal_unavailable")
    if deal.available_count is not None and deal.available_count <= 0:
        raise StateConflictError("Deal is sold out", error="sold_out")

    transaction_id = charge_customer(deal.discounted_price, payment_method)

    if deal.available_count is not None:
        taken = Deal.query.filter(
            Deal.id == deal_id,
            Deal.available_count > 0,
        ).update({"available_count": Deal.available_count - 1}, synchronize_session=False)
        if not taken:
            db.session.rollback()
            current_app.logger.warning("Deal %s sold out after charge %s", deal_id, transaction_id)
            raise StateConflictError("Deal is sold out", error="sold_out")

    voucher = issue_voucher(user_id, deal_id, commit=False)
    db.session.commit()

    notify_voucher_purchased(voucher)
    return voucher, transaction_id


def claim_voucher(voucher_id: str, now: datetime | None = None) -> bool:
    """Flip an active voucher to used; False when another request got there first."""
    updated = Voucher.query.filter(
        Voucher.id == voucher_id,
        Voucher.status == "active",
    ).update({"status": "used", "used_at": now or utc_now()}, synchronize_session=False)
    db.session.commit()
    return updated == 1


def redeem_voucher(code: str, business_id: str) -> Voucher:
    """Consume a voucher on behalf of ``business_id``.

    The buyer notification and the business payout run after the transition
    commits. Their failures are logged and never undo the redemption.
    """
    voucher = find_voucher_by_code(code)
    deal = voucher.deal
    business = deal.business if deal else None

    if business is None or business.id != business_id:
        raise OwnershipError(
            "This voucher is not valid for your business",
            details={
                "valid_for": business.name if business else None,
                "valid_for_business_id": business.id if business else None,
            },
        )

    now = utc_now()
    if voucher.is_expired(now):
        raise StateConflictError("Voucher has expired", error="voucher_expired")
    if voucher.status == "used":
        raise StateConflictError("Voucher has already been used", error="voucher_used")
    if voucher.status != "active":
        raise StateConflictError("Voucher is not active", error="voucher_inactive")

    if not claim_voucher(voucher.id, now):
        raise StateConflictError("Voucher has already been used", error="voucher_used")

    current_app.logger.info("Voucher %s redeemed by business %s", voucher.code, business.id)

    _notify_redeemed(voucher.user_id, deal.id, deal.title, business.name)
    _pay_out(business.id, voucher.id, voucher.code, deal.discounted_price)

    db.session.refresh(voucher)
    return voucher


def _notify_redeemed(user_id: str, deal_id: str, deal_title: str, business_name: str) -> None:
    try:
        create_notification(
            user_id,
            "Voucher redeemed",
            f"Your voucher for {deal_title} was redeemed at {business_name}.",
            "voucher_redeemed",
            deal_id=deal_id,
        )
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to notify buyer about redeemed deal %s", deal_id, exc_info=exc)


def _pay_out(business_id: str, voucher_id: str, code: str, amount) -> None:
    try:
        process_business_payout(business_id, voucher_id, amount, f"Payout for voucher {code}")
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to pay out business %s for voucher %s", business_id, code, exc_info=exc)


def use_voucher(voucher_id: str, user_id: str) -> Voucher:
    """Redeem a voucher by id on behalf of its owner.

    Goes through ``redeem_voucher`` with the deal's own business so both
    entry points share the same transition and the same single payout.
    """
    voucher = _voucher_query().filter(Voucher.id == voucher_id).first()
    if voucher is None:
        raise NotFoundError("Voucher not found", error="voucher_not_found")
    if voucher.user_id != user_id:
        raise ForbiddenError("You do not own this voucher")

    return redeem_voucher(voucher.code, voucher.deal.business_id)


def list_user_vouchers(user_id: str) -> list[dict[str, object]]:
    vouchers = (
        _voucher_query()
        .filter(Voucher.user_id == user_id)
        .order_by(Voucher.purchased_at.desc())
        .all()
    )
    return [voucher_view(voucher) for voucher in vouchers]


def list_business_vouchers(business_id: str) -> list[dict[str, object]]:
    vouchers = (
        _voucher_query()
        .join(Deal, Voucher.deal_id == Deal.id)
        .filter(Deal.business_id == business_id)
        .order_by(Voucher.purchased_at.desc())
        .all()
    )
    return [voucher_view(voucher) for voucher in vouchers]
