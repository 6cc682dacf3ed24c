from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from realtime.rooms import room_for_portfolio


class JoinRoomMessage(BaseModel):
    type: Literal["join_room"]
    room_id: str


class LeaveRoomMessage(BaseModel):
    type: Literal["leave_room"]
    room_id: str


class JoinPortfolioMessage(BaseModel):
    """Older clients name the portfolio instead of the room."""
    type: Literal["join_portfolio"]
    portfolio_id: str

    @property
    def room_id(self) -> str:
        return room_for_portfolio(self.portfolio_id)


class LeavePortfolioMessage(BaseModel):
    type: Literal["leave_portfolio"]
    portfolio_id: str

    @property
    def room_id(self) -> str:
        return room_for_portfolio(self.portfolio_id)


ClientMessage = Annotated[
    Union[JoinRoomMessage, LeaveRoomMessage, JoinPortfolioMessage, LeavePortfolioMessage],
    Field(discriminator="type"),
]

client_message_adapter = TypeAdapter(ClientMessage)

JOIN_TYPES = ("join_room", "join_portfolio")


class RoomDetailsResponse(BaseModel):
    room_id: str
    kind: str
    online_count: int


class HealthResponse(BaseModel):
    status: str
    connections: int
    rooms: int
    redis: Optional[str] = None
