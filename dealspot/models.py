"""Database models for the DealSpot backend."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from drivers that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def _money(value: Decimal | None) -> str | None:
    return f"{Decimal(value):.2f}" if value is not None else None


def _enum(*values: str, name: str) -> db.Enum:
    return db.Enum(*values, name=name, native_enum=False, validate_strings=True)


class User(db.Model):
    """Consumer account; the id is the subject claimed by the identity provider."""

    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    email = db.Column(db.String(255), unique=True)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    profile_image_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    vouchers = db.relationship("Voucher", back_populates="user", lazy="dynamic")

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "profile_image_url": self.profile_image_url,
        }


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False)
    name_nl = db.Column(db.String(100), nullable=False)
    icon = db.Column(db.String(50), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "name_nl": self.name_nl,
            "icon": self.icon,
        }


class Business(db.Model):
    """The deal provider and payout recipient."""

    __tablename__ = "businesses"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    address = db.Column(db.Text, nullable=False, default="")
    city = db.Column(db.String(100), nullable=False, default="")
    postal_code = db.Column(db.String(20))
    latitude = db.Column(db.Numeric(10, 8))
    longitude = db.Column(db.Numeric(11, 8))
    phone = db.Column(db.String(30))
    email = db.Column(db.String(255))
    website = db.Column(db.String(255))
    image_url = db.Column(db.String(500))
    # Connected account for real payouts; unset means transfers are simulated.
    stripe_account_id = db.Column(db.String(255))
    rating = db.Column(db.Numeric(2, 1), nullable=False, default=Decimal("0.0"))
    review_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    deals = db.relationship("Deal", back_populates="business", lazy="dynamic")

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
        }

    def to_dict(self) -> dict[str, object]:
        payload = self.to_dict_basic()
        payload.update({
            "description": self.description,
            "postal_code": self.postal_code,
            "latitude": str(self.latitude) if self.latitude is not None else None,
            "longitude": str(self.longitude) if self.longitude is not None else None,
            "phone": self.phone,
            "email": self.email,
            "website": self.website,
            "image_url": self.image_url,
            "rating": str(self.rating) if self.rating is not None else "0.0",
            "review_count": self.review_count,
            "created_at": _iso(self.created_at),
        })
        return payload


class Deal(db.Model):
    __tablename__ = "deals"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    business_id = db.Column(db.String(36), db.ForeignKey("businesses.id"), nullable=False)
    category_id = db.Column(db.String(36), db.ForeignKey("categories.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    original_price = db.Column(db.Numeric(10, 2), nullable=False)
    discounted_price = db.Column(db.Numeric(10, 2), nullable=False)
    discount_percentage = db.Column(db.Integer, nullable=False)
    image_url = db.Column(db.String(500))
    image_urls = db.Column(db.JSON, nullable=True, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    available_count = db.Column(db.Integer)  # None means unlimited
    expires_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    business = db.relationship("Business", back_populates="deals")
    category = db.relationship("Category")

    def is_expired(self, now: datetime | None = None) -> bool:
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and expires_at < (now or utc_now())

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "category_id": self.category_id,
            "title": self.title,
            "description": self.description,
            "original_price": _money(self.original_price),
            "discounted_price": _money(self.discounted_price),
            "discount_percentage": self.discount_percentage,
            "image_url": self.image_url,
            "image_urls": self.image_urls or [],
            "is_active": bool(self.is_active),
            "is_featured": bool(self.is_featured),
            "available_count": self.available_count,
            "expires_at": _iso(self.expires_at),
            "created_at": _iso(self.created_at),
            "business": self.business.to_dict() if self.business else None,
            "category": self.category.to_dict() if self.category else None,
        }


class Voucher(db.Model):
    """A purchase entitlement tying one user to one deal.

    ``status`` only ever moves from ``active`` to ``used``. Expiry is derived
    from ``expires_at`` at read time and is never written back.
    """

    __tablename__ = "vouchers"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    deal_id = db.Column(db.String(36), db.ForeignKey("deals.id"), nullable=False)
    code = db.Column(db.String(40), unique=True, nullable=False, index=True)
    status = db.Column(
        _enum("active", "used", "expired", name="voucher_status"),
        nullable=False,
        default="active",
        server_default="active",
    )
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    user = db.relationship("User", back_populates="vouchers")
    deal = db.relationship("Deal")

    def is_expired(self, now: datetime | None = None) -> bool:
        return as_utc(self.expires_at) < (now or utc_now())

    @property
    def effective_status(self) -> str:
        if self.status == "active" and self.is_expired():
            return "expired"
        return self.status

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "deal_id": self.deal_id,
            "code": self.code,
            "status": self.status,
            "effective_status": self.effective_status,
            "purchased_at": _iso(self.purchased_at),
            "used_at": _iso(self.used_at),
            "expires_at": _iso(self.expires_at),
        }


class Reservation(db.Model):
    __tablename__ = "reservations"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    deal_id = db.Column(db.String(36), db.ForeignKey("deals.id"), nullable=False)
    business_id = db.Column(db.String(36), db.ForeignKey("businesses.id"), nullable=False)
    reservation_date = db.Column(db.DateTime(timezone=True), nullable=False)
    party_size = db.Column(db.Integer, nullable=False)
    special_requests = db.Column(db.Text)
    status = db.Column(
        _enum("pending", "confirmed", "cancelled", name="reservation_status"),
        nullable=False,
        default="pending",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    deal = db.relationship("Deal")
    business = db.relationship("Business")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "deal_id": self.deal_id,
            "business_id": self.business_id,
            "reservation_date": _iso(self.reservation_date),
            "party_size": self.party_size,
            "special_requests": self.special_requests,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "deal": {"id": self.deal.id, "title": self.deal.title} if self.deal else None,
            "business": self.business.to_dict_basic() if self.business else None,
        }


class Review(db.Model):
    __tablename__ = "reviews"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    business_id = db.Column(db.String(36), db.ForeignKey("businesses.id"), nullable=False)
    deal_id = db.Column(db.String(36), db.ForeignKey("deals.id"), nullable=True)
    rating = db.Column(db.Integer, nullable=False)  # 1-5 stars
    comment = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    user = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "business_id": self.business_id,
            "deal_id": self.deal_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": _iso(self.created_at),
            "user": self.user.to_dict_basic() if self.user else None,
        }


class Favorite(db.Model):
    __tablename__ = "favorites"
    __table_args__ = (db.UniqueConstraint("user_id", "deal_id", name="uq_favorite_user_deal"),)

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    deal_id = db.Column(db.String(36), db.ForeignKey("deals.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    deal = db.relationship("Deal")


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    deal_id = db.Column(db.String(36), db.ForeignKey("deals.id"), nullable=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    notification_type = db.Column(
        _enum(
            "new_voucher",
            "voucher_redeemed",
            "reservation_confirmed",
            "deal_approved",
            "deal_rejected",
            "general",
            name="notification_type",
        ),
        nullable=False,
    )
    is_read = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "deal_id": self.deal_id,
            "title": self.title,
            "message": self.message,
            "notification_type": self.notification_type,
            "is_read": bool(self.is_read),
            "created_at": _iso(self.created_at),
        }


class BusinessPayment(db.Model):
    """Payout ledger entry owed to a business for one redeemed voucher."""

    __tablename__ = "business_payments"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    business_id = db.Column(db.String(36), db.ForeignKey("businesses.id"), nullable=False)
    # One payout per voucher, whichever path redeemed it.
    voucher_id = db.Column(db.String(36), db.ForeignKey("vouchers.id"), nullable=False, unique=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    description = db.Column(db.Text)
    stripe_transfer_id = db.Column(db.String(255))
    status = db.Column(
        _enum("pending", "completed", "failed", name="business_payment_status"),
        nullable=False,
        default="pending",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "voucher_id": self.voucher_id,
            "amount": _money(self.amount),
            "description": self.description,
            "stripe_transfer_id": self.stripe_transfer_id,
            "status": self.status,
            "created_at": _iso(self.created_at),
        }


class BusinessUser(db.Model):
    __tablename__ = "business_users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    business_id = db.Column(db.String(36), db.ForeignKey("businesses.id"), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    role = db.Column(
        _enum("owner", "manager", "staff", name="business_user_role"),
        nullable=False,
        default="manager",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    business = db.relationship("Business")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_active": bool(self.is_active),
        }


class AdminUser(db.Model):
    __tablename__ = "admin_users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    username = db.Column(db.String(100), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    role = db.Column(db.String(50), nullable=False, default="admin")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "role": self.role,
        }


class DealSubmission(db.Model):
    """A deal proposed by a business, waiting for admin moderation."""

    __tablename__ = "deal_submissions"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    business_id = db.Column(db.String(36), db.ForeignKey("businesses.id"), nullable=False)
    submitted_by = db.Column(db.String(36), db.ForeignKey("business_users.id"), nullable=True)
    category_id = db.Column(db.String(36), db.ForeignKey("categories.id"), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    original_price = db.Column(db.Numeric(10, 2), nullable=False)
    discounted_price = db.Column(db.Numeric(10, 2), nullable=False)
    image_urls = db.Column(db.JSON, nullable=True, default=list)
    terms = db.Column(db.Text)
    available_count = db.Column(db.Integer)
    valid_from = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(
        _enum("pending", "approved", "rejected", "expired", name="submission_status"),
        nullable=False,
        default="pending",
    )
    admin_notes = db.Column(db.Text)
    approved_by = db.Column(db.String(36), db.ForeignKey("admin_users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True))
    deal_id = db.Column(db.String(36), db.ForeignKey("deals.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    business = db.relationship("Business")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "submitted_by": self.submitted_by,
            "category_id": self.category_id,
            "title": self.title,
            "description": self.description,
            "original_price": _money(self.original_price),
            "discounted_price": _money(self.discounted_price),
            "image_urls": self.image_urls or [],
            "terms": self.terms,
            "available_count": self.available_count,
            "valid_from": _iso(self.valid_from),
            "valid_until": _iso(self.valid_until),
            "status": self.status,
            "admin_notes": self.admin_notes,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "deal_id": self.deal_id,
            "created_at": _iso(self.created_at),
            "business": self.business.to_dict_basic() if self.business else None,
        }


class BusinessDealQuota(db.Model):
    """Free-tier usage counter, one row per business."""

    __tablename__ = "business_deal_quotas"

    business_id = db.Column(db.String(36), db.ForeignKey("businesses.id"), primary_key=True)
    free_deals_used = db.Column(db.Integer, nullable=False, default=0)
    total_deals = db.Column(db.Integer, nullable=False, default=0)
    subscription_status = db.Column(
        _enum("free", "paid", name="subscription_status"),
        nullable=False,
        default="free",
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "business_id": self.business_id,
            "free_deals_used": self.free_deals_used,
            "total_deals": self.total_deals,
            "subscription_status": self.subscription_status,
        }
