"""Follower fan-out and single-recipient notifications.

Every helper commits its own rows and never raises: a failed fan-out is logged
and the calling request carries on.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import Listing, Notification, User, UserFollow
from app.models.notification import (
    SETTING_FOR_TYPE,
    TYPE_FOLLOW,
    TYPE_LISTING_UPDATE,
    TYPE_NEW_LISTING,
    TYPE_PRICE_CHANGE,
    TYPE_STATUS_CHANGE,
)


def _format_price(value) -> str:
    number = float(value or 0)
    return str(int(number)) if number.is_integer() else f"{number:.2f}"


def should_send(recipient: User, notification_type: str) -> bool:
    setting = SETTING_FOR_TYPE.get(notification_type)
    if setting is None:
        return True
    return bool(getattr(recipient, setting, True))


def _followers_of(user_id: int) -> list[User]:
    return (
        User.query.join(UserFollow, UserFollow.follower_id == User.id)
        .filter(UserFollow.followed_id == int(user_id))
        .all()
    )


def _fan_out(author: User, listing: Listing, notification_type: str, message: str) -> int:
    try:
        rows = [
            Notification(
                recipient_id=int(follower.id),
                sender_id=int(author.id),
                type=notification_type,
                listing_id=int(listing.id),
                message=message,
            )
            for follower in _followers_of(int(author.id))
            if should_send(follower, notification_type)
        ]
        if rows:
            db.session.add_all(rows)
            db.session.commit()
        return len(rows)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "notify_followers_failed type=%s author_id=%s listing_id=%s",
            notification_type,
            getattr(author, "id", None),
            getattr(listing, "id", None),
        )
        return 0


def notify_followers_new_listing(author: User, listing: Listing) -> int:
    message = f"{author.first_name} posted a new listing: {listing.title}"
    return _fan_out(author, listing, TYPE_NEW_LISTING, message)


def notify_followers_price_change(author: User, listing: Listing, old_price) -> int:
    message = (
        f'The price of "{listing.title}" changed from '
        f"{_format_price(old_price)} to {_format_price(listing.price)}"
    )
    return _fan_out(author, listing, TYPE_PRICE_CHANGE, message)


def notify_followers_status_change(author: User, listing: Listing, old_status: str) -> int:
    message = f'The status of "{listing.title}" changed from {old_status} to {listing.status}'
    return _fan_out(author, listing, TYPE_STATUS_CHANGE, message)


def notify_followers_listing_update(author: User, listing: Listing) -> int:
    message = f'{author.first_name} updated the listing "{listing.title}"'
    return _fan_out(author, listing, TYPE_LISTING_UPDATE, message)


def send_notification(
    *,
    recipient: User,
    notification_type: str,
    message: str,
    sender: User | None = None,
    listing_id: int | None = None,
) -> Notification | None:
    if not should_send(recipient, notification_type):
        return None
    row = Notification(
        recipient_id=int(recipient.id),
        sender_id=int(sender.id) if sender is not None else None,
        type=notification_type,
        listing_id=listing_id,
        message=message,
    )
    try:
        db.session.add(row)
        db.session.commit()
        return row
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("send_notification_failed type=%s recipient_id=%s", notification_type, recipient.id)
        return None


def send_bulk_notifications(items: list[dict]) -> int:
    """items: dicts with recipient (User), notification_type, message, optional sender/listing_id."""
    rows = []
    for item in items:
        recipient = item["recipient"]
        if not should_send(recipient, item["notification_type"]):
            continue
        sender = item.get("sender")
        rows.append(
            Notification(
                recipient_id=int(recipient.id),
                sender_id=int(sender.id) if sender is not None else None,
                type=item["notification_type"],
                listing_id=item.get("listing_id"),
                message=item["message"],
            )
        )
    if not rows:
        return 0
    try:
        db.session.add_all(rows)
        db.session.commit()
        return len(rows)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("send_bulk_notifications_failed count=%s", len(rows))
        return 0


def notify_new_follower(*, follower: User, followed: User) -> Notification | None:
    return send_notification(
        recipient=followed,
        sender=follower,
        notification_type=TYPE_FOLLOW,
        message=f"{follower.full_name} started following you",
    )
