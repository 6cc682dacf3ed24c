"""Mutation-to-event bridge.

The REST layer calls in here once a write has committed. Every call builds a typed event
(see ``schemas.events``), hands it to the dispatcher and swallows whatever goes wrong:
a broadcast failure must never reach the code that performed the mutation.

Typical use from a request handler::

    hooks = CommitHooks()
    ... perform the write inside a transaction ...
    hooks.add(lambda: bridge.portfolio_updated(row))
    transaction.commit()
    hooks.commit()
"""

import functools
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from logging_config import get_logger
from realtime.auth import Identity
from realtime.dispatcher import DispatchResult, EventDispatcher
from realtime.rooms import room_for_portfolio, room_for_user
from schemas.events import build_event

logger = get_logger(__name__)

PORTFOLIO_FIELDS = ("portfolio_id", "user_id", "title", "template_id", "is_published", "updated_at")
SECTION_FIELDS = ("portfolio_id", "section_id", "content", "order")
ANALYTICS_FIELDS = ("analytics_id", "portfolio_id", "page_views", "unique_visitors", "average_time_spent")
CONTACT_FIELDS = ("contact_id", "portfolio_id", "name", "email", "message", "received_at")
TESTIMONIAL_FIELDS = ("testimonial_id", "portfolio_id", "author_name", "content", "date")
BLOG_POST_FIELDS = ("post_id", "title", "content", "created_at")


def _pick(resource: Mapping[str, Any], fields) -> Dict[str, Any]:
    picked = {}
    for name in fields:
        value = resource.get(name)
        if value is None:
            continue
        if isinstance(value, datetime):
            value = value.isoformat()
        elif name.endswith("_id"):
            value = str(value)
        picked[name] = value
    return picked


def broadcast_safely(method):
    """Helpers build payloads from raw rows; a missing key must not escape either."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as e:
            logger.error(f"Error broadcasting {method.__name__}: {e}", exc_info=True)
            return None

    return wrapper


class CommitHooks:
    """Callbacks to run only once the surrounding unit of work has committed."""

    def __init__(self):
        self._callbacks: List[Callable[[], Any]] = []

    def add(self, callback: Callable[[], Any]):
        self._callbacks.append(callback)

    def commit(self):
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Post-commit callback {callback!r} failed: {e}", exc_info=True)

    def rollback(self):
        dropped = len(self._callbacks)
        self._callbacks = []
        if dropped:
            logger.debug(f"Discarded {dropped} post-commit callbacks after rollback")


class MutationBridge:
    def __init__(self, dispatcher: EventDispatcher):
        self.dispatcher = dispatcher

    def notify(self, event_type: str, room_id: str, payload: Dict[str, Any]) -> Optional[DispatchResult]:
        """Broadcast one committed mutation. Returns None when the event was not sent."""
        try:
            event = build_event(event_type, room_id, payload)
        except ValidationError as e:
            logger.error(f"Rejected {event_type} event for room {room_id}: {e.error_count()} validation errors: {e}")
            return None
        except Exception as e:
            logger.error(f"Error building {event_type} event for room {room_id}: {e}", exc_info=True)
            return None

        return self.publish(event)

    def publish(self, event) -> Optional[DispatchResult]:
        """Dispatch an event that is already built and validated."""
        try:
            return self.dispatcher.dispatch(event)
        except Exception as e:
            logger.error(f"Error dispatching {event.event_type} event to room {event.room_id}: {e}", exc_info=True)
            return None

    # Portfolios

    @broadcast_safely
    def portfolio_created(self, portfolio: Mapping[str, Any]):
        payload = _pick(portfolio, PORTFOLIO_FIELDS)
        payload["change"] = "created"
        return self.notify("portfolio_update", room_for_portfolio(portfolio["portfolio_id"]), payload)

    @broadcast_safely
    def portfolio_updated(self, portfolio: Mapping[str, Any]):
        payload = _pick(portfolio, PORTFOLIO_FIELDS)
        payload["change"] = "updated"
        return self.notify("portfolio_update", room_for_portfolio(portfolio["portfolio_id"]), payload)

    @broadcast_safely
    def blog_post_added(self, blog_post: Mapping[str, Any]):
        portfolio_id = str(blog_post["portfolio_id"])
        payload = {
            "portfolio_id": portfolio_id,
            "change": "blog_post_added",
            "blog_post": _pick(blog_post, BLOG_POST_FIELDS),
        }
        return self.notify("portfolio_update", room_for_portfolio(portfolio_id), payload)

    # Sections

    def _section_changed(self, section: Mapping[str, Any], change: str):
        payload = _pick(section, SECTION_FIELDS)
        if section.get("type") is not None:
            payload["section_type"] = section["type"]
        payload["change"] = change
        return self.notify("section_changed", room_for_portfolio(section["portfolio_id"]), payload)

    @broadcast_safely
    def section_added(self, section: Mapping[str, Any]):
        return self._section_changed(section, "added")

    @broadcast_safely
    def section_updated(self, section: Mapping[str, Any]):
        return self._section_changed(section, "updated")

    @broadcast_safely
    def section_deleted(self, portfolio_id, section_id):
        payload = {"portfolio_id": str(portfolio_id), "section_id": str(section_id), "change": "deleted"}
        return self.notify("section_changed", room_for_portfolio(portfolio_id), payload)

    @broadcast_safely
    def section_changed_with_portfolio(self, section: Mapping[str, Any], portfolio: Mapping[str, Any], change: str = "updated"):
        """Section edit that also touched the portfolio row: section first, then the portfolio."""
        return [
            self._section_changed(section, change),
            self.portfolio_updated(portfolio),
        ]

    # Visitors

    @broadcast_safely
    def analytics_recorded(self, analytics: Mapping[str, Any]):
        payload = _pick(analytics, ANALYTICS_FIELDS)
        return self.notify("analytics_update", room_for_portfolio(analytics["portfolio_id"]), payload)

    @broadcast_safely
    def contact_form_submitted(self, contact: Mapping[str, Any], owner_user_id, notification_id=None):
        """Tell the portfolio owner about a new message. Both events go to the owner's room only."""
        owner_room = room_for_user(owner_user_id)
        notification = {
            "kind": "contact_form",
            "message": f"New contact form submission from {contact.get('name')}",
        }
        if notification_id is not None:
            notification["notification_id"] = str(notification_id)
        return [
            self.notify("notification", owner_room, notification),
            self.notify("contact_form_submitted", owner_room, _pick(contact, CONTACT_FIELDS)),
        ]

    @broadcast_safely
    def testimonial_added(self, testimonial: Mapping[str, Any]):
        payload = _pick(testimonial, TESTIMONIAL_FIELDS)
        return self.notify("testimonial_added", room_for_portfolio(testimonial["portfolio_id"]), payload)

    # Accounts

    @broadcast_safely
    def user_signed_in(self, identity: Identity):
        payload = {"kind": "authentication", "message": f"Signed in as {identity.email}"}
        return self.notify("notification", room_for_user(identity.user_id), payload)
