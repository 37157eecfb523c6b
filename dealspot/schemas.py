"""Request schemas, one per write operation.

Payloads are validated before any domain logic runs; unknown fields are
rejected. Both snake_case names and the camelCase names used by the web
client are accepted.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import ValidationError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class RequestSchema(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


def parse_payload(schema: Type[SchemaT], payload: object) -> SchemaT:
    """Validate ``payload`` against ``schema`` or raise ``ValidationError``."""
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object", error="invalid_payload")
    try:
        return schema.model_validate(payload)
    except pydantic.ValidationError as exc:
        fields = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError("request payload is invalid", details={"fields": fields}) from exc


# --- Vouchers -------------------------------------------------------------

class VoucherCreate(RequestSchema):
    deal_id: str = Field(min_length=1)
    expires_at: Optional[datetime] = None


class VoucherVerify(RequestSchema):
    code: str = Field(min_length=1, max_length=40)


class VoucherRedeem(RequestSchema):
    code: str = Field(min_length=1, max_length=40)
    business_id: str = Field(min_length=1)


class PurchaseRequest(RequestSchema):
    deal_id: str = Field(min_length=1)
    payment_method: str = Field(default="card", min_length=1)


# --- Consumer activity ----------------------------------------------------

class ReservationCreate(RequestSchema):
    deal_id: str = Field(min_length=1)
    reservation_date: datetime
    party_size: int = Field(ge=1, le=50)
    special_requests: Optional[str] = None


class ReservationStatusUpdate(RequestSchema):
    status: Literal["pending", "confirmed", "cancelled"]


class ReviewCreate(RequestSchema):
    business_id: str = Field(min_length=1)
    deal_id: Optional[str] = None
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None


class FavoriteCreate(RequestSchema):
    deal_id: str = Field(min_length=1)


class NotificationCreate(RequestSchema):
    user_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)
    type: Literal[
        "new_voucher",
        "voucher_redeemed",
        "reservation_confirmed",
        "deal_approved",
        "deal_rejected",
        "general",
    ] = "general"


# --- Business and admin ---------------------------------------------------

class BusinessLogin(RequestSchema):
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class BusinessRegister(RequestSchema):
    business_name: str = Field(min_length=1, max_length=150)
    contact_email: str = Field(min_length=3)
    contact_password: str = Field(min_length=8)
    contact_name: str = Field(default="Owner", min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: str = ""
    city: str = ""
    postal_code: Optional[str] = None

    @field_validator("contact_email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError("must be an email address")
        return value.lower()


class AdminLogin(RequestSchema):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class DealSubmissionCreate(RequestSchema):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    original_price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    discounted_price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    category_id: str = Field(min_length=1)
    valid_until: datetime
    image_urls: list[str] = Field(default_factory=list)
    terms: Optional[str] = None
    available_count: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _discount_below_original(self) -> "DealSubmissionCreate":
        if self.discounted_price >= self.original_price:
            raise ValueError("discounted_price must be lower than original_price")
        return self


class SubmissionDecision(RequestSchema):
    status: Literal["approved", "rejected"]
    admin_notes: Optional[str] = None


class DealCreditPurchase(RequestSchema):
    credit_count: int = Field(default=1, ge=1, le=100)


class BusinessPayoutRequest(RequestSchema):
    business_id: str = Field(min_length=1)
    voucher_id: str = Field(min_length=1)
    description: Optional[str] = None
