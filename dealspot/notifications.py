"""Notification helpers shared by the voucher, reservation and moderation flows."""
from __future__ import annotations

from .errors import NotFoundError
from .extensions import db
from .models import BusinessUser, Notification, User


def create_notification(
    user_id: str,
    title: str,
    message: str,
    notification_type: str,
    *,
    deal_id: str | None = None,
    commit: bool = True,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        deal_id=deal_id,
        title=title,
        message=message,
        notification_type=notification_type,
    )
    db.session.add(notification)
    if commit:
        db.session.commit()
    return notification


def list_user_notifications(user_id: str, *, unread_only: bool = False) -> list[Notification]:
    query = Notification.query.filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).all()


def mark_notification_read(notification_id: str, user_id: str | None = None) -> Notification:
    query = Notification.query.filter_by(id=notification_id)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    notification = query.first()
    if notification is None:
        raise NotFoundError("notification not found", error="notification_not_found")

    notification.is_read = True
    db.session.commit()
    return notification


def mark_all_read(user_id: str) -> int:
    updated_count = Notification.query.filter_by(
        user_id=user_id,
        is_read=False,
    ).update({"is_read": True}, synchronize_session=False)
    db.session.commit()
    return updated_count


def notify_business_owners(
    business_id: str,
    title: str,
    message: str,
    notification_type: str,
    *,
    deal_id: str | None = None,
) -> Notification | None:
    """Notify the consumer account of the first active owner or manager.

    Business accounts have no inbox of their own; the notification lands on
    the consumer account registered with the same email, when there is one.
    """
    owner = (
        BusinessUser.query.filter(
            BusinessUser.business_id == business_id,
            BusinessUser.role.in_(("owner", "manager")),
            BusinessUser.is_active.is_(True),
        )
        .order_by(BusinessUser.created_at.asc())
        .first()
    )
    if owner is None:
        return None

    user = User.query.filter_by(email=owner.email).first()
    if user is None:
        return None

    return create_notification(user.id, title, message, notification_type, deal_id=deal_id)
