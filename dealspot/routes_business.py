"""Business dashboard and admin moderation routes."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .auth import (BUSINESS_SALT, ADMIN_SALT, authenticate_admin, authenticate_business_user,
                   build_token, get_admin_identity, get_business_identity, hash_password)
from .errors import DealSpotError, DownstreamFailure, ForbiddenError, NotFoundError
from .extensions import db
from .models import Business, BusinessUser
from .payments import list_business_payments, settle_voucher_payout
from .schemas import (AdminLogin, BusinessLogin, BusinessPayoutRequest, BusinessRegister,
                      DealCreditPurchase, DealSubmissionCreate, SubmissionDecision,
                      VoucherRedeem, VoucherVerify, parse_payload)
from .submissions import (decide_submission, get_limits, list_submissions,
                          purchase_deal_credits, submit_deal)
from .vouchers import list_business_vouchers, redeem_voucher, verify_voucher, voucher_view

bp_business = Blueprint("api_business", __name__)


def _business_unauthorized():
    return jsonify({"error": "unauthorized", "message": "Business login required"}), 401


# ============================================================================
# Business accounts
# ============================================================================

@bp_business.post("/business/login")
def business_login() -> tuple[dict[str, object], int]:
    """Authenticate a business user and return a business session token.
    ---
    tags:
      - Business
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - email
            - password
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Login successful
      400:
        description: Invalid payload
      401:
        description: Invalid email or password, or account disabled
    """
    try:
        data = parse_payload(BusinessLogin, request.get_json(silent=True))
        business_user = authenticate_business_user(data.email, data.password)
    except DealSpotError as exc:
        return exc.to_response()

    token = build_token(
        {"business_user_id": business_user.id, "business_id": business_user.business_id},
        salt=BUSINESS_SALT,
    )
    return jsonify({
        "user": business_user.to_dict(),
        "business": business_user.business.to_dict() if business_user.business else None,
        "token": token,
    }), 200


@bp_business.post("/business/register")
def business_register() -> tuple[dict[str, object], int]:
    """Create a business together with its owner account."""
    try:
        data = parse_payload(BusinessRegister, request.get_json(silent=True))
    except DealSpotError as exc:
        return exc.to_response()

    if BusinessUser.query.filter_by(email=data.contact_email).first():
        return (
            jsonify({"error": "conflict", "message": "A business account with this email already exists"}),
            409,
        )

    try:
        business = Business(
            name=data.business_name,
            description=data.description or "",
            phone=data.phone,
            website=data.website,
            address=data.address,
            city=data.city,
            postal_code=data.postal_code,
            email=data.contact_email,
        )
        db.session.add(business)
        db.session.flush()  # Get the business id before creating the owner

        owner = BusinessUser(
            business_id=business.id,
            email=data.contact_email,
            password_hash=hash_password(data.contact_password),
            name=data.contact_name,
            role="owner",
        )
        db.session.add(owner)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return (
            jsonify({"error": "conflict", "message": "A business account with this email already exists"}),
            409,
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to register business", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"success": True, "business": business.to_dict(), "user": owner.to_dict()}), 201


# ============================================================================
# Voucher verification and redemption
# ============================================================================

@bp_business.post("/business/vouchers/verify")
def verify_business_voucher() -> tuple[dict[str, object], int]:
    """Look up a voucher code and report whether it can be redeemed.

    Read-only. Expired, used and inactive vouchers still answer 200 with
    ``valid: false`` so the operator sees who and what the code belongs to.
    ---
    tags:
      - Business Vouchers
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - code
          properties:
            code:
              type: string
              example: DS-1700000000000-AB12CD
    responses:
      200:
        description: Classification (valid, expired, used, inactive) with deal, business and buyer
      400:
        description: Missing or malformed payload
      404:
        description: Voucher not found
    """
    try:
        data = parse_payload(VoucherVerify, request.get_json(silent=True))
        check = verify_voucher(data.code)
        return jsonify(check.to_dict()), 200
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to verify voucher", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp_business.post("/business/vouchers/redeem")
def redeem_business_voucher() -> tuple[dict[str, object], int]:
    """Redeem a voucher for the given business.
    ---
    tags:
      - Business Vouchers
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - code
            - business_id
          properties:
            code:
              type: string
            business_id:
              type: string
    responses:
      200:
        description: Voucher redeemed
      400:
        description: Missing or malformed payload
      403:
        description: Voucher belongs to another business (valid_for names it)
      404:
        description: Voucher not found
      409:
        description: Voucher expired, already used or not active
    """
    try:
        data = parse_payload(VoucherRedeem, request.get_json(silent=True))
        voucher = redeem_voucher(data.code, data.business_id)
        return jsonify({
            "success": True,
            "message": "Voucher redeemed successfully",
            "voucher": voucher_view(voucher),
        }), 200
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to redeem voucher", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp_business.get("/business/<business_id>/vouchers")
def get_business_vouchers(business_id: str) -> tuple[dict[str, object], int]:
    try:
        return jsonify({"vouchers": list_business_vouchers(business_id)}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch business vouchers", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ============================================================================
# Deal submissions and free-tier limits
# ============================================================================

@bp_business.get("/business/submissions")
def get_business_submissions() -> tuple[dict[str, object], int]:
    identity = get_business_identity()
    if not identity:
        return _business_unauthorized()

    try:
        submissions = list_submissions(business_id=identity["business_id"])
        return jsonify({"submissions": [s.to_dict() for s in submissions]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch submissions", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp_business.post("/business/deals/submit")
def submit_business_deal() -> tuple[dict[str, object], int]:
    """Submit a deal for admin approval, counting it against the free tier."""
    identity = get_business_identity()
    if not identity:
        return _business_unauthorized()

    try:
        data = parse_payload(DealSubmissionCreate, request.get_json(silent=True))
        submission = submit_deal(identity["business_id"], identity.get("business_user_id"), data)
        return jsonify({
            "success": True,
            "submission": submission.to_dict(),
            "limits": get_limits(identity["business_id"]),
        }), 201
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to submit deal", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp_business.get("/business/limits")
def get_business_limits() -> tuple[dict[str, object], int]:
    identity = get_business_identity()
    if not identity:
        return _business_unauthorized()

    try:
        return jsonify(get_limits(identity["business_id"])), 200
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to fetch business limits", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp_business.post("/business/purchase-deal-credits")
def buy_deal_credits() -> tuple[dict[str, object], int]:
    identity = get_business_identity()
    if not identity:
        return _business_unauthorized()

    try:
        data = parse_payload(DealCreditPurchase, request.get_json(silent=True) or {})
        return jsonify(purchase_deal_credits(identity["business_id"], data.credit_count)), 200
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to purchase deal credits", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ============================================================================
# Business payouts
# ============================================================================

@bp_business.post("/business/payments/process")
def process_payout() -> tuple[dict[str, object], int]:
    """Settle the payout for a voucher the calling business has redeemed.
    ---
    tags:
      - Business Payments
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - business_id
            - voucher_id
          properties:
            business_id:
              type: string
            voucher_id:
              type: string
            description:
              type: string
    responses:
      201:
        description: Payout transferred for the deal's discounted price
      401:
        description: Business login required
      403:
        description: Token belongs to another business, or the voucher does
      404:
        description: Voucher not found
      409:
        description: Voucher not redeemed yet, already paid out, or payout in progress
      502:
        description: Transfer failed; the payment is recorded as failed
    """
    identity = get_business_identity()
    if not identity:
        return _business_unauthorized()

    try:
        data = parse_payload(BusinessPayoutRequest, request.get_json(silent=True))
        if data.business_id != identity["business_id"]:
            raise ForbiddenError("You can only request payouts for your own business")

        payment = settle_voucher_payout(data.business_id, data.voucher_id, data.description)
        return jsonify({
            "success": True,
            "payment": payment.to_dict(),
            "demo_mode": payment.stripe_transfer_id.startswith("dummy_transfer_"),
        }), 201
    except DownstreamFailure as exc:
        current_app.logger.exception("Payout transfer failed for voucher", exc_info=exc)
        return jsonify({"error": "transfer_failed", "message": "The transfer failed and can be retried"}), 502
    except DealSpotError as exc:
        return exc.to_response()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "conflict", "message": "A payout for this voucher already exists"}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to process business payment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp_business.get("/business/<business_id>/payments")
def get_business_payments(business_id: str) -> tuple[dict[str, object], int]:
    try:
        if db.session.get(Business, business_id) is None:
            raise NotFoundError("Business not found", error="business_not_found")
        payments = list_business_payments(business_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch business payments", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ============================================================================
# Admin moderation
# ============================================================================

@bp_business.post("/admin/login")
def admin_login() -> tuple[dict[str, object], int]:
    try:
        data = parse_payload(AdminLogin, request.get_json(silent=True))
        admin = authenticate_admin(data.username, data.password)
    except DealSpotError as exc:
        return exc.to_response()

    token = build_token({"admin_id": admin.id}, salt=ADMIN_SALT)
    return jsonify({"success": True, "admin": admin.to_dict(), "token": token}), 200


@bp_business.get("/admin/pending-deals")
def get_pending_deals() -> tuple[dict[str, object], int]:
    """All submissions, newest first; ``?status=pending`` narrows the list."""
    if not get_admin_identity():
        return jsonify({"error": "unauthorized", "message": "Admin login required"}), 401

    try:
        status = request.args.get("status", "").strip() or None
        submissions = list_submissions(status=status)
        return jsonify({"submissions": [s.to_dict() for s in submissions]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch pending deals", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp_business.patch("/admin/deals/<submission_id>")
def decide_deal(submission_id: str) -> tuple[dict[str, object], int]:
    admin_id = get_admin_identity()
    if not admin_id:
        return jsonify({"error": "unauthorized", "message": "Admin login required"}), 401

    try:
        data = parse_payload(SubmissionDecision, request.get_json(silent=True))
        submission = decide_submission(submission_id, data.status, admin_id, data.admin_notes)
        return jsonify({"success": True, "submission": submission.to_dict()}), 200
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update deal status", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
