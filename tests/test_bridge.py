"""Tests for the mutation-to-event bridge and the event union it builds."""

import pytest
from pydantic import ValidationError

from conftest import ALICE, BOB, drain
from realtime.bridge import CommitHooks
from realtime.hub import RealtimeHub
from schemas.events import (
    ContactFormSubmittedEvent,
    NotificationEvent,
    PortfolioUpdateEvent,
    build_event,
)

PORTFOLIO = {"portfolio_id": "p1", "user_id": "u1", "title": "Renamed", "template_id": "t1", "is_published": True}


@pytest.fixture
def alice_watching(hub: RealtimeHub):
    """Alice's connection joined to portfolio:p1, Bob's connection joined to nothing."""
    a = hub.registry.register("a", ALICE)
    hub.registry.join("a", "portfolio:p1")
    b = hub.registry.register("b", BOB)
    return a, b


class TestBuildEvent:
    def test_picks_class_from_event_type(self) -> None:
        event = build_event("notification", "user:u1", {"message": "hi"})
        assert isinstance(event, NotificationEvent)
        assert event.payload.kind == "system"

    def test_unknown_event_type(self) -> None:
        with pytest.raises(ValidationError):
            build_event("chat_message", "portfolio:p1", {"portfolio_id": "p1"})

    def test_notification_only_to_personal_rooms(self) -> None:
        with pytest.raises(ValidationError):
            build_event("notification", "portfolio:p1", {"message": "hi"})

    def test_resource_event_must_match_portfolio_room(self) -> None:
        with pytest.raises(ValidationError):
            build_event("portfolio_update", "portfolio:p2", {"portfolio_id": "p1"})

    def test_malformed_room(self) -> None:
        with pytest.raises(ValidationError):
            build_event("notification", "nowhere", {"message": "hi"})

    def test_extra_payload_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            build_event("analytics_update", "portfolio:p1", {"portfolio_id": "p1", "page_views": 1, "unique_visitors": 1, "bounce": 3})

    def test_blog_post_change_requires_blog_post(self) -> None:
        with pytest.raises(ValidationError):
            build_event("portfolio_update", "portfolio:p1", {"portfolio_id": "p1", "change": "blog_post_added"})

    def test_wire_message_flattens_payload(self) -> None:
        event = build_event("portfolio_update", "portfolio:p1", {"portfolio_id": "p1", "title": "T"})
        assert isinstance(event, PortfolioUpdateEvent)
        message = event.to_message()
        assert message["type"] == "portfolio_update"
        assert message["title"] == "T"
        assert message["change"] == "updated"
        assert message["timestamp"] == event.emitted_at.isoformat()
        assert "template_id" not in message


class TestNotify:
    def test_title_update_reaches_watcher_only(self, hub: RealtimeHub, alice_watching) -> None:
        a, b = alice_watching

        result = hub.bridge.portfolio_updated(PORTFOLIO)

        assert result.room_id == "portfolio:p1"
        assert result.delivered == 1
        [message] = drain(a.channel)
        assert message["type"] == "portfolio_update"
        assert message["title"] == "Renamed"
        assert drain(b.channel) == []

    def test_contact_form_goes_to_owner_room_only(self, hub: RealtimeHub, alice_watching) -> None:
        a, b = alice_watching
        owner_other_tab = hub.registry.register("a2", ALICE)
        hub.registry.join("b", "portfolio:p1")
        contact = {"contact_id": "k1", "portfolio_id": "p1", "name": "Visitor", "email": "v@example.com", "message": "Hello"}

        results = hub.bridge.contact_form_submitted(contact, owner_user_id="u1", notification_id="n1")

        assert [r.room_id for r in results] == ["user:u1", "user:u1"]
        for channel in (a.channel, owner_other_tab.channel):
            messages = drain(channel)
            assert [m["type"] for m in messages] == ["notification", "contact_form_submitted"]
            assert messages[0]["kind"] == "contact_form"
            assert messages[0]["message"] == "New contact form submission from Visitor"
            assert messages[1]["email"] == "v@example.com"
        assert drain(b.channel) == []

    def test_section_then_portfolio_order(self, hub: RealtimeHub, alice_watching) -> None:
        a, _ = alice_watching
        section = {"section_id": "s1", "portfolio_id": "p1", "type": "about", "content": "Hi", "order": 1}

        hub.bridge.section_changed_with_portfolio(section, PORTFOLIO)

        messages = drain(a.channel)
        assert [m["type"] for m in messages] == ["section_changed", "portfolio_update"]
        assert messages[0]["section_type"] == "about"
        assert messages[0]["change"] == "updated"

    def test_resource_helpers(self, hub: RealtimeHub, alice_watching) -> None:
        a, _ = alice_watching

        hub.bridge.portfolio_created(PORTFOLIO)
        hub.bridge.section_added({"section_id": "s1", "portfolio_id": "p1", "type": "hero", "order": 0})
        hub.bridge.section_deleted("p1", "s1")
        hub.bridge.blog_post_added({"post_id": "b1", "portfolio_id": "p1", "title": "First post", "content": "..."})
        hub.bridge.analytics_recorded({"analytics_id": "an1", "portfolio_id": "p1", "page_views": 3, "unique_visitors": 2, "average_time_spent": 0})
        hub.bridge.testimonial_added({"testimonial_id": "t1", "portfolio_id": "p1", "author_name": "Carol", "content": "Great"})

        messages = drain(a.channel)
        assert [(m["type"], m.get("change")) for m in messages] == [
            ("portfolio_update", "created"),
            ("section_changed", "added"),
            ("section_changed", "deleted"),
            ("portfolio_update", "blog_post_added"),
            ("analytics_update", None),
            ("testimonial_added", None),
        ]
        assert messages[3]["blog_post"]["title"] == "First post"
        assert messages[4]["page_views"] == 3

    def test_user_signed_in(self, hub: RealtimeHub, alice_watching) -> None:
        a, b = alice_watching
        hub.bridge.user_signed_in(ALICE)
        [message] = drain(a.channel)
        assert message["kind"] == "authentication"
        assert drain(b.channel) == []

    def test_room_id_is_normalised_before_dispatch(self, hub: RealtimeHub, alice_watching) -> None:
        a, _ = alice_watching

        result = hub.bridge.notify("notification", "user: u1 ", {"message": "hi"})

        assert result.room_id == "user:u1"
        assert result.delivered == 1
        [message] = drain(a.channel)
        assert message["room_id"] == "user:u1"

    def test_invalid_payload_is_swallowed(self, hub: RealtimeHub, alice_watching) -> None:
        a, _ = alice_watching
        assert hub.bridge.notify("analytics_update", "portfolio:p1", {"portfolio_id": "p1", "page_views": -1}) is None
        assert drain(a.channel) == []

    def test_missing_key_is_swallowed(self, hub: RealtimeHub) -> None:
        assert hub.bridge.portfolio_updated({"title": "no id"}) is None

    def test_dispatcher_failure_is_swallowed(self, hub: RealtimeHub, alice_watching) -> None:
        def broken_dispatch(event):
            raise RuntimeError("boom")

        hub.bridge.dispatcher.dispatch = broken_dispatch

        assert hub.bridge.portfolio_updated(PORTFOLIO) is None


class TestCommitHooks:
    def test_runs_only_on_commit(self, hub: RealtimeHub, alice_watching) -> None:
        a, _ = alice_watching
        hooks = CommitHooks()
        hooks.add(lambda: hub.bridge.portfolio_updated(PORTFOLIO))

        assert drain(a.channel) == []
        hooks.commit()
        assert len(drain(a.channel)) == 1

        hooks.commit()
        assert drain(a.channel) == []

    def test_rollback_discards(self, hub: RealtimeHub, alice_watching) -> None:
        a, _ = alice_watching
        hooks = CommitHooks()
        hooks.add(lambda: hub.bridge.portfolio_updated(PORTFOLIO))

        hooks.rollback()
        hooks.commit()

        assert drain(a.channel) == []

    def test_callback_error_does_not_stop_others(self, hub: RealtimeHub, alice_watching) -> None:
        a, _ = alice_watching
        hooks = CommitHooks()
        hooks.add(lambda: 1 / 0)
        hooks.add(lambda: hub.bridge.portfolio_updated(PORTFOLIO))

        hooks.commit()

        assert len(drain(a.channel)) == 1


def test_contact_event_rejects_shared_room() -> None:
    with pytest.raises(ValidationError):
        ContactFormSubmittedEvent(
            room_id="portfolio:p1",
            payload={"contact_id": "k1", "portfolio_id": "p1", "name": "V", "email": "v@example.com", "message": "m"},
        )
