"""Business deal submissions, free-tier quota and admin moderation."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from .errors import NotFoundError, QuotaExceededError, StateConflictError, ValidationError
from .extensions import db
from .models import (Business, BusinessDealQuota, Category, Deal, DealSubmission,
                     utc_now)
from .notifications import notify_business_owners
from .payments import charge_customer
from .schemas import DealSubmissionCreate

DEFAULT_AVAILABLE_COUNT = 100


def _get_or_create_quota(business_id: str) -> BusinessDealQuota:
    quota = db.session.get(BusinessDealQuota, business_id)
    if quota is not None:
        return quota

    quota = BusinessDealQuota(business_id=business_id)
    db.session.add(quota)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request created the row first.
        db.session.rollback()
        quota = db.session.get(BusinessDealQuota, business_id)
    return quota


def get_limits(business_id: str) -> dict[str, object]:
    quota = _get_or_create_quota(business_id)
    max_free = current_app.config["FREE_DEAL_LIMIT"]
    payload = quota.to_dict()
    payload.update({
        "max_free_deals": max_free,
        "price_per_deal": current_app.config["PRICE_PER_DEAL_CREDIT"],
        "remaining_free_deals": max(0, max_free - quota.free_deals_used),
    })
    return payload


def _consume_quota(business_id: str) -> None:
    _get_or_create_quota(business_id)
    max_free = current_app.config["FREE_DEAL_LIMIT"]

    # Read-then-write in one statement so parallel submissions cannot overshoot.
    updated = BusinessDealQuota.query.filter(
        BusinessDealQuota.business_id == business_id,
        or_(
            BusinessDealQuota.subscription_status == "paid",
            BusinessDealQuota.free_deals_used < max_free,
        ),
    ).update(
        {
            "free_deals_used": BusinessDealQuota.free_deals_used + 1,
            "total_deals": BusinessDealQuota.total_deals + 1,
        },
        synchronize_session=False,
    )
    if not updated:
        db.session.rollback()
        quota = db.session.get(BusinessDealQuota, business_id)
        raise QuotaExceededError(
            "Free limit reached",
            details={
                "requires_payment": True,
                "free_deals_used": quota.free_deals_used,
                "max_free_deals": max_free,
                "price_per_deal": current_app.config["PRICE_PER_DEAL_CREDIT"],
            },
        )


def submit_deal(business_id: str, submitted_by: str | None, data: DealSubmissionCreate) -> DealSubmission:
    if db.session.get(Business, business_id) is None:
        raise NotFoundError("Business not found", error="business_not_found")
    if db.session.get(Category, data.category_id) is None:
        raise ValidationError("unknown category", error="invalid_category")

    _consume_quota(business_id)

    submission = DealSubmission(
        business_id=business_id,
        submitted_by=submitted_by,
        category_id=data.category_id,
        title=data.title,
        description=data.description,
        original_price=data.original_price,
        discounted_price=data.discounted_price,
        image_urls=data.image_urls,
        terms=data.terms,
        available_count=data.available_count,
        valid_until=data.valid_until,
        status="pending",
    )
    db.session.add(submission)
    db.session.commit()
    return submission


def list_submissions(business_id: str | None = None, status: str | None = None) -> list[DealSubmission]:
    query = DealSubmission.query
    if business_id:
        query = query.filter(DealSubmission.business_id == business_id)
    if status:
        query = query.filter(DealSubmission.status == status)
    return query.order_by(DealSubmission.created_at.desc()).all()


def purchase_deal_credits(business_id: str, credit_count: int) -> dict[str, object]:
    total_cost = Decimal(str(current_app.config["PRICE_PER_DEAL_CREDIT"])) * credit_count
    transaction_id = charge_customer(total_cost, "card")

    quota = _get_or_create_quota(business_id)
    quota.subscription_status = "paid"
    db.session.commit()

    return {
        "success": True,
        "message": f"Payment successful! Purchased {credit_count} deal credits for €{total_cost:.2f}",
        "transaction_id": transaction_id,
        "new_status": quota.subscription_status,
    }


def discount_percentage(original_price: Decimal, discounted_price: Decimal) -> int:
    ratio = (Decimal(original_price) - Decimal(discounted_price)) / Decimal(original_price) * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def decide_submission(
    submission_id: str,
    status: str,
    admin_id: str,
    admin_notes: str | None = None,
) -> DealSubmission:
    submission = db.session.get(DealSubmission, submission_id)
    if submission is None:
        raise NotFoundError("Deal submission not found", error="submission_not_found")
    if submission.status != "pending":
        raise StateConflictError(
            f"Submission is already {submission.status}",
            error="already_decided",
        )

    submission.status = status
    if admin_notes:
        submission.admin_notes = admin_notes

    if status == "approved":
        deal = Deal(
            business_id=submission.business_id,
            category_id=submission.category_id,
            title=submission.title,
            description=submission.description,
            original_price=submission.original_price,
            discounted_price=submission.discounted_price,
            discount_percentage=discount_percentage(submission.original_price, submission.discounted_price),
            image_urls=submission.image_urls or [],
            image_url=(submission.image_urls or [None])[0],
            is_active=True,
            is_featured=True,
            available_count=submission.available_count or DEFAULT_AVAILABLE_COUNT,
            expires_at=submission.valid_until,
        )
        db.session.add(deal)
        db.session.flush()

        submission.deal_id = deal.id
        submission.approved_by = admin_id
        submission.approved_at = utc_now()

    db.session.commit()
    current_app.logger.info("Deal submission %s %s by admin %s", submission.id, status, admin_id)

    if status == "approved":
        notify_business_owners(
            submission.business_id,
            "Deal approved",
            f'Your deal "{submission.title}" has been approved and is now live.',
            "deal_approved",
            deal_id=submission.deal_id,
        )
    else:
        notify_business_owners(
            submission.business_id,
            "Deal rejected",
            f'Your deal "{submission.title}" was not approved.'
            + (f" Notes: {admin_notes}" if admin_notes else ""),
            "deal_rejected",
        )

    return submission
