"""HTTP routes for the DealSpot consumer API."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func, or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from .auth import get_user_identity
from .errors import DealSpotError, NotFoundError, ValidationError
from .extensions import db
from .models import (Business, Category, Deal, Favorite, Reservation, Review, User,
                     as_utc, utc_now)
from .notifications import (create_notification, list_user_notifications, mark_all_read,
                            mark_notification_read)
from .schemas import (FavoriteCreate, NotificationCreate, PurchaseRequest, ReservationCreate,
                      ReservationStatusUpdate, ReviewCreate, VoucherCreate, parse_payload)
from .vouchers import (issue_voucher, list_user_vouchers, notify_voucher_purchased,
                       purchase_deal, use_voucher, voucher_view)

bp = Blueprint("api", __name__)


def register_routes(app) -> None:
    from .routes_business import bp_business

    app.register_blueprint(bp)
    app.register_blueprint(bp_business)


@bp.app_errorhandler(DealSpotError)
def handle_domain_error(exc: DealSpotError):
    return exc.to_response()


def _unauthorized():
    return jsonify({"error": "unauthorized", "message": "Authentication required. Please log in to continue."}), 401


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database."""
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


@bp.get("/auth/user")
def get_current_user() -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"error": "not_found", "message": "user not found"}), 404
    return jsonify({"user": user.to_dict_basic()}), 200


# ============================================================================
# Catalogue
# ============================================================================

@bp.get("/categories")
def list_categories() -> tuple[dict[str, object], int]:
    try:
        categories = Category.query.order_by(Category.name.asc()).all()
        return jsonify({"categories": [c.to_dict() for c in categories]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch categories", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/businesses")
def list_businesses() -> tuple[dict[str, object], int]:
    try:
        city = request.args.get("city", "").strip()
        query = Business.query
        if city:
            query = query.filter(Business.city.ilike(city))
        businesses = query.order_by(Business.name.asc()).all()
        return jsonify({"businesses": [b.to_dict() for b in businesses]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch businesses", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/businesses/<business_id>")
def get_business(business_id: str) -> tuple[dict[str, object], int]:
    try:
        business = db.session.get(Business, business_id)
        if business is None:
            return jsonify({"error": "not_found", "message": "Business not found"}), 404

        payload = business.to_dict()
        payload["deals"] = [
            deal.to_dict()
            for deal in business.deals.filter(Deal.is_active.is_(True)).order_by(Deal.created_at.desc())
        ]
        return jsonify({"business": payload}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch business", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


def _active_deals_query():
    return (
        Deal.query.options(joinedload(Deal.business), joinedload(Deal.category))
        .join(Business, Deal.business_id == Business.id)
        .filter(Deal.is_active.is_(True))
    )


@bp.get("/deals")
def list_deals() -> tuple[dict[str, object], int]:
    """List active deals, filtered by category, free-text search and featured flag.
    ---
    tags:
      - Deals
    parameters:
      - name: category
        in: query
        type: string
      - name: search
        in: query
        type: string
        description: Matches deal title, description or business name (case-insensitive)
      - name: featured
        in: query
        type: boolean
    responses:
      200:
        description: List of deals, newest first
      500:
        description: Database error
    """
    try:
        category_id = request.args.get("category", "").strip()
        search = request.args.get("search", "").strip()
        featured = request.args.get("featured", "false").lower() == "true"

        query = _active_deals_query()
        if category_id:
            query = query.filter(Deal.category_id == category_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Deal.title.ilike(pattern),
                    Deal.description.ilike(pattern),
                    Business.name.ilike(pattern),
                )
            )
        if featured:
            query = query.filter(Deal.is_featured.is_(True))

        deals = query.order_by(Deal.created_at.desc()).all()
        return jsonify({"deals": [deal.to_dict() for deal in deals]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch deals", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/deals/featured")
def list_featured_deals() -> tuple[dict[str, object], int]:
    try:
        deals = (
            _active_deals_query()
            .filter(Deal.is_featured.is_(True))
            .order_by(Deal.created_at.desc())
            .all()
        )
        return jsonify({"deals": [deal.to_dict() for deal in deals]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch featured deals", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/deals/<deal_id>")
def get_deal(deal_id: str) -> tuple[dict[str, object], int]:
    try:
        deal = Deal.query.options(joinedload(Deal.business), joinedload(Deal.category)).filter_by(id=deal_id).first()
        if deal is None:
            return jsonify({"error": "not_found", "message": "Deal not found"}), 404
        return jsonify({"deal": deal.to_dict()}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch deal", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ============================================================================
# Vouchers
# ============================================================================

@bp.get("/vouchers")
def list_vouchers() -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        return jsonify({"vouchers": list_user_vouchers(user_id)}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch vouchers", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/vouchers")
def create_voucher() -> tuple[dict[str, object], int]:
    """Issue a voucher for the authenticated user.
    ---
    tags:
      - Vouchers
    security:
      - Bearer: []
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required:
            - deal_id
          properties:
            deal_id:
              type: string
            expires_at:
              type: string
              format: date-time
              description: Defaults to 30 days after issuance
    responses:
      201:
        description: Voucher issued
      400:
        description: Invalid payload
      401:
        description: Authentication required
      404:
        description: Deal or user not found
      409:
        description: Voucher code collision
    """
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        data = parse_payload(VoucherCreate, request.get_json(silent=True))
        voucher = issue_voucher(user_id, data.deal_id, data.expires_at)
        notify_voucher_purchased(voucher)
        return jsonify({"voucher": voucher_view(voucher)}), 201
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create voucher", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.patch("/vouchers/<voucher_id>/use")
def use_own_voucher(voucher_id: str) -> tuple[dict[str, object], int]:
    """Mark one of the caller's vouchers as used.

    Shares the business redemption path, so the voucher is consumed and the
    business paid at most once whichever endpoint is hit first.
    """
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        voucher = use_voucher(voucher_id, user_id)
        return jsonify({"message": "Voucher used successfully", "voucher": voucher_view(voucher)}), 200
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to use voucher", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/payments/process")
def process_payment() -> tuple[dict[str, object], int]:
    """Charge the user for a deal (mocked) and issue the voucher on success."""
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        data = parse_payload(PurchaseRequest, request.get_json(silent=True))
        voucher, transaction_id = purchase_deal(user_id, data.deal_id, data.payment_method)
        return jsonify({
            "success": True,
            "transaction_id": transaction_id,
            "voucher": voucher_view(voucher),
        }), 201
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to process payment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ============================================================================
# Reservations
# ============================================================================

@bp.get("/reservations")
def list_reservations() -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        reservations = (
            Reservation.query.filter_by(user_id=user_id)
            .order_by(Reservation.reservation_date.desc())
            .all()
        )
        return jsonify({"reservations": [r.to_dict() for r in reservations]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch reservations", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/reservations")
def create_reservation() -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        data = parse_payload(ReservationCreate, request.get_json(silent=True))
        if as_utc(data.reservation_date) <= utc_now():
            raise ValidationError("reservation_date must be in the future", error="invalid_date")

        deal = db.session.get(Deal, data.deal_id)
        if deal is None:
            raise NotFoundError("Deal not found", error="deal_not_found")

        reservation = Reservation(
            user_id=user_id,
            deal_id=deal.id,
            business_id=deal.business_id,
            reservation_date=as_utc(data.reservation_date),
            party_size=data.party_size,
            special_requests=data.special_requests,
        )
        db.session.add(reservation)
        db.session.flush()

        create_notification(
            user_id,
            "Reservation confirmed",
            f"Your reservation for {deal.title} has been confirmed!",
            "reservation_confirmed",
            deal_id=deal.id,
            commit=False,
        )
        db.session.commit()

        return jsonify({"reservation": reservation.to_dict()}), 201
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create reservation", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.patch("/reservations/<reservation_id>/status")
def update_reservation_status(reservation_id: str) -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        data = parse_payload(ReservationStatusUpdate, request.get_json(silent=True))
        reservation = Reservation.query.filter_by(id=reservation_id, user_id=user_id).first()
        if reservation is None:
            return jsonify({"error": "not_found", "message": "Reservation not found"}), 404

        reservation.status = data.status
        db.session.commit()
        return jsonify({"reservation": reservation.to_dict()}), 200
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update reservation", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ============================================================================
# Reviews
# ============================================================================

@bp.get("/businesses/<business_id>/reviews")
def get_business_reviews(business_id: str) -> tuple[dict[str, object], int]:
    try:
        reviews = (
            Review.query.options(joinedload(Review.user))
            .filter_by(business_id=business_id)
            .order_by(Review.created_at.desc())
            .all()
        )
        return jsonify({"reviews": [r.to_dict() for r in reviews]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch reviews", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/deals/<deal_id>/reviews")
def get_deal_reviews(deal_id: str) -> tuple[dict[str, object], int]:
    try:
        reviews = (
            Review.query.options(joinedload(Review.user))
            .filter_by(deal_id=deal_id)
            .order_by(Review.created_at.desc())
            .all()
        )
        return jsonify({"reviews": [r.to_dict() for r in reviews]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch deal reviews", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/reviews")
def create_review() -> tuple[dict[str, object], int]:
    """Create a review and refresh the business's running rating."""
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        data = parse_payload(ReviewCreate, request.get_json(silent=True))
        business = db.session.get(Business, data.business_id)
        if business is None:
            raise NotFoundError("Business not found", error="business_not_found")
        if data.deal_id and db.session.get(Deal, data.deal_id) is None:
            raise NotFoundError("Deal not found", error="deal_not_found")

        review = Review(
            user_id=user_id,
            business_id=business.id,
            deal_id=data.deal_id,
            rating=data.rating,
            comment=data.comment,
        )
        db.session.add(review)
        db.session.flush()

        average, count = (
            db.session.query(func.avg(Review.rating), func.count(Review.id))
            .filter(Review.business_id == business.id)
            .one()
        )
        business.rating = round(float(average or 0), 1)
        business.review_count = count
        db.session.commit()

        return jsonify({"review": review.to_dict(), "business": business.to_dict()}), 201
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create review", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ============================================================================
# Favorites
# ============================================================================

@bp.get("/favorites")
def list_favorites() -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        favorites = (
            Favorite.query.options(joinedload(Favorite.deal))
            .filter_by(user_id=user_id)
            .order_by(Favorite.created_at.desc())
            .all()
        )
        return jsonify({"favorites": [f.deal.to_dict() for f in favorites if f.deal]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch favorites", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/favorites")
def add_favorite() -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        data = parse_payload(FavoriteCreate, request.get_json(silent=True))
        if db.session.get(Deal, data.deal_id) is None:
            raise NotFoundError("Deal not found", error="deal_not_found")

        db.session.add(Favorite(user_id=user_id, deal_id=data.deal_id))
        db.session.commit()
        return jsonify({"message": "Added to favorites"}), 201
    except DealSpotError as exc:
        return exc.to_response()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "already_favorite", "message": "Deal is already in your favorites"}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to add favorite", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.delete("/favorites/<deal_id>")
def remove_favorite(deal_id: str) -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        removed = Favorite.query.filter_by(user_id=user_id, deal_id=deal_id).delete(synchronize_session=False)
        db.session.commit()
        if not removed:
            return jsonify({"error": "not_found", "message": "Deal is not in your favorites"}), 404
        return jsonify({"message": "Removed from favorites"}), 200
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to remove favorite", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/favorites/<deal_id>/check")
def check_favorite(deal_id: str) -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    exists = Favorite.query.filter_by(user_id=user_id, deal_id=deal_id).first() is not None
    return jsonify({"is_favorite": exists}), 200


# ============================================================================
# Notifications
# ============================================================================

@bp.get("/notifications")
def get_notifications() -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        unread_only = request.args.get("unread_only", "false").lower() == "true"
        notifications = list_user_notifications(user_id, unread_only=unread_only)
        return jsonify({
            "notifications": [n.to_dict() for n in notifications],
            "unread_count": sum(1 for n in notifications if not n.is_read),
        }), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch notifications", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/notifications")
def post_notification() -> tuple[dict[str, object], int]:
    try:
        data = parse_payload(NotificationCreate, request.get_json(silent=True))
        if db.session.get(User, data.user_id) is None:
            raise NotFoundError("User not found", error="user_not_found")

        notification = create_notification(data.user_id, data.title, data.message, data.type)
        return jsonify({"success": True, "notification": notification.to_dict()}), 201
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create notification", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.patch("/notifications/<notification_id>/read")
def read_notification(notification_id: str) -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        notification = mark_notification_read(notification_id, user_id)
        return jsonify({"notification": notification.to_dict()}), 200
    except DealSpotError as exc:
        return exc.to_response()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to mark notification as read", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.patch("/notifications/read-all")
def read_all_notifications() -> tuple[dict[str, object], int]:
    user_id = get_user_identity()
    if not user_id:
        return _unauthorized()

    try:
        updated_count = mark_all_read(user_id)
        return jsonify({"message": "all_notifications_marked_as_read", "updated_count": updated_count}), 200
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to mark all notifications as read", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
