from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from realtime.errors import RoomError
from realtime.rooms import parse_room_id, room_for_portfolio

EVENT_TYPES = (
    "notification",
    "portfolio_update",
    "section_changed",
    "analytics_update",
    "contact_form_submitted",
    "testimonial_added",
)


class Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NotificationPayload(Payload):
    kind: Literal["contact_form", "authentication", "system"] = "system"
    message: str
    notification_id: Optional[str] = None


class BlogPostSummary(Payload):
    post_id: str
    title: str
    content: Optional[str] = None
    created_at: Optional[str] = None


class PortfolioUpdatePayload(Payload):
    portfolio_id: str
    change: Literal["created", "updated", "blog_post_added"] = "updated"
    user_id: Optional[str] = None
    title: Optional[str] = None
    template_id: Optional[str] = None
    is_published: Optional[bool] = None
    updated_at: Optional[str] = None
    blog_post: Optional[BlogPostSummary] = None

    @model_validator(mode="after")
    def blog_post_matches_change(self):
        if (self.change == "blog_post_added") != (self.blog_post is not None):
            raise ValueError("blog_post is required exactly when change is 'blog_post_added'")
        return self


class SectionChangedPayload(Payload):
    portfolio_id: str
    section_id: str
    change: Literal["added", "updated", "deleted"]
    section_type: Optional[str] = None
    content: Optional[str] = None
    order: Optional[int] = None


class AnalyticsUpdatePayload(Payload):
    portfolio_id: str
    analytics_id: Optional[str] = None
    page_views: int = Field(ge=0)
    unique_visitors: int = Field(ge=0)
    average_time_spent: float = Field(default=0, ge=0)


class ContactFormSubmittedPayload(Payload):
    contact_id: str
    portfolio_id: str
    name: str
    email: str
    message: str
    received_at: Optional[str] = None


class TestimonialAddedPayload(Payload):
    testimonial_id: str
    portfolio_id: str
    author_name: str
    content: str
    date: Optional[str] = None


class Event(BaseModel):
    """A transient broadcast. Subclasses pin ``event_type`` and the payload shape."""

    room_id: str
    emitted_at: datetime = Field(default_factory=datetime.now)

    # personal rooms only, or the room of payload.portfolio_id
    personal_room_only: ClassVar[bool] = False

    @model_validator(mode="after")
    def room_matches_event(self):
        try:
            room = parse_room_id(self.room_id)
        except RoomError as exc:
            raise ValueError(f"malformed room id {self.room_id!r}") from exc
        self.room_id = str(room)
        if self.personal_room_only:
            if not room.is_personal:
                raise ValueError(f"{self.event_type} events must target a user room")
        else:
            expected = room_for_portfolio(self.payload.portfolio_id)
            if self.room_id != expected:
                raise ValueError(f"{self.event_type} events must target {expected}")
        return self

    def to_message(self) -> Dict[str, Any]:
        """Wire form sent to clients: the payload fields flattened next to type and timestamp."""
        message = {"type": self.event_type, "room_id": self.room_id}
        message.update(self.payload.model_dump(mode="json", exclude_none=True))
        message["timestamp"] = self.emitted_at.isoformat()
        return message


class NotificationEvent(Event):
    event_type: Literal["notification"] = "notification"
    payload: NotificationPayload
    personal_room_only: ClassVar[bool] = True


class PortfolioUpdateEvent(Event):
    event_type: Literal["portfolio_update"] = "portfolio_update"
    payload: PortfolioUpdatePayload


class SectionChangedEvent(Event):
    event_type: Literal["section_changed"] = "section_changed"
    payload: SectionChangedPayload


class AnalyticsUpdateEvent(Event):
    event_type: Literal["analytics_update"] = "analytics_update"
    payload: AnalyticsUpdatePayload


class ContactFormSubmittedEvent(Event):
    event_type: Literal["contact_form_submitted"] = "contact_form_submitted"
    payload: ContactFormSubmittedPayload
    # carries the visitor's email, so it only goes to the owner
    personal_room_only: ClassVar[bool] = True


class TestimonialAddedEvent(Event):
    event_type: Literal["testimonial_added"] = "testimonial_added"
    payload: TestimonialAddedPayload


AnyEvent = Annotated[
    Union[
        NotificationEvent,
        PortfolioUpdateEvent,
        SectionChangedEvent,
        AnalyticsUpdateEvent,
        ContactFormSubmittedEvent,
        TestimonialAddedEvent,
    ],
    Field(discriminator="event_type"),
]

event_adapter = TypeAdapter(AnyEvent)


def build_event(event_type: str, room_id: str, payload: Dict[str, Any]) -> Event:
    """Validate raw notify arguments into one of the six event classes."""
    return event_adapter.validate_python({"event_type": event_type, "room_id": room_id, "payload": payload})


class NotifyRequest(BaseModel):
    event_type: Literal[EVENT_TYPES]
    room_id: str
    payload: Dict[str, Any]


class NotifyResponse(BaseModel):
    room_id: str
    event_type: str
    recipients: int
    delivered: int
    dropped: int
