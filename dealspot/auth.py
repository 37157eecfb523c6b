"""Signed bearer tokens and credential checks for the three principal kinds.

Consumers are authenticated by the external identity provider; the token
issued here only carries the subject id it vouched for. Business and admin
accounts log in with a password, hashed with werkzeug for both stores.
"""
from __future__ import annotations

from flask import current_app, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import AuthError
from .extensions import db
from .models import AdminUser, BusinessUser

USER_SALT = "auth-token"
BUSINESS_SALT = "business-token"
ADMIN_SALT = "admin-token"


def _serializer(salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=salt)


def build_token(payload: dict[str, object], salt: str = USER_SALT) -> str:
    return _serializer(salt).dumps(payload)


def _read_token(salt: str) -> dict[str, object] | None:
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        payload = _serializer(salt).loads(token, max_age=current_app.config["AUTH_TOKEN_MAX_AGE"])
    except (BadSignature, SignatureExpired):
        # Invalid or expired token
        return None
    return payload if isinstance(payload, dict) else None


def get_user_identity() -> str | None:
    """Return the consumer id from the Authorization header, or None."""
    payload = _read_token(USER_SALT)
    return payload.get("user_id") if payload else None


def get_business_identity() -> dict[str, object] | None:
    """Return ``{"business_user_id", "business_id"}`` for a business token."""
    payload = _read_token(BUSINESS_SALT)
    if not payload or "business_id" not in payload:
        return None
    return payload


def get_admin_identity() -> str | None:
    payload = _read_token(ADMIN_SALT)
    return payload.get("admin_id") if payload else None


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def authenticate_business_user(email: str, password: str) -> BusinessUser:
    user = BusinessUser.query.filter_by(email=email.lower()).first()
    if user is None or not user.is_active:
        raise AuthError("invalid email or password")
    if not check_password_hash(user.password_hash, password):
        raise AuthError("invalid email or password")
    return user


def authenticate_admin(username: str, password: str) -> AdminUser:
    admin = AdminUser.query.filter_by(username=username).first()
    if admin is None or not admin.is_active:
        raise AuthError("invalid credentials")
    if not check_password_hash(admin.password_hash, password):
        raise AuthError("invalid credentials")
    return admin


def create_admin(username: str, password: str, name: str, role: str = "admin") -> AdminUser:
    admin = AdminUser(username=username, password_hash=hash_password(password), name=name, role=role)
    db.session.add(admin)
    db.session.flush()
    return admin
