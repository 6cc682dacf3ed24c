import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from logging_config import get_logger
from realtime.auth import Identity, extract_bearer
from realtime.errors import AuthError, RoomError
from realtime.rooms import parse_room_id, room_for_user
from schemas.events import NotifyRequest, NotifyResponse, build_event
from schemas.messages import HealthResponse, RoomDetailsResponse

logger = get_logger(__name__)

realtime_router = APIRouter(tags=["realtime"])


def get_hub(request: Request):
    return request.app.state.hub


async def require_identity(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    """Per-request version of the socket handshake: same credential, same checks."""
    hub = get_hub(request)
    try:
        return await hub.authenticator.authenticate(extract_bearer(authorization))
    except AuthError as e:
        logger.warning(f"Request to {request.url.path} refused: {e.code}")
        raise HTTPException(status_code=401, detail=e.code)


def require_internal_token(request: Request, x_internal_token: Optional[str] = Header(None)):
    expected = request.app.state.internal_api_token
    if not expected:
        raise HTTPException(status_code=403, detail="Internal events endpoint is disabled")
    if not x_internal_token or not hmac.compare_digest(x_internal_token, expected):
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"Rejected internal event from {client_host}: bad token")
        raise HTTPException(status_code=401, detail="Invalid internal token")


@realtime_router.post("/events", status_code=202, response_model=NotifyResponse, dependencies=[Depends(require_internal_token)])
def post_event(body: NotifyRequest, request: Request):
    """Out-of-process producers report a committed mutation here.

    Validation problems are the producer's to fix, so they come back as 422. Delivery
    problems are not: the response only reports how many members got the event.
    """
    hub = get_hub(request)
    try:
        event = build_event(body.event_type, body.room_id, body.payload)
    except ValidationError as e:
        logger.warning(f"Invalid {body.event_type} event for room {body.room_id}: {e.error_count()} errors")
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False, include_input=False))

    result = hub.bridge.publish(event)
    if result is None:
        return NotifyResponse(room_id=body.room_id, event_type=body.event_type, recipients=0, delivered=0, dropped=0)
    return NotifyResponse(
        room_id=result.room_id,
        event_type=result.event_type,
        recipients=result.recipients,
        delivered=result.delivered,
        dropped=result.dropped,
    )


@realtime_router.get("/rooms/{room_id}", response_model=RoomDetailsResponse)
def get_room_details(room_id: str, request: Request, identity: Identity = Depends(require_identity)):
    hub = get_hub(request)
    try:
        room = parse_room_id(room_id)
    except RoomError as e:
        raise HTTPException(status_code=400, detail=e.code)
    if room.is_personal and str(room) != room_for_user(identity.user_id):
        raise HTTPException(status_code=403, detail="forbidden")

    online_count = hub.rooms.member_count(str(room))
    logger.info(f"Room details retrieved for {room}: {online_count} connections online")
    return RoomDetailsResponse(room_id=str(room), kind=room.kind, online_count=online_count)


@realtime_router.get("/health", response_model=HealthResponse)
def health(request: Request):
    hub = get_hub(request)
    backend = request.app.state.backend
    redis_status = None
    if backend is not None:
        redis_status = "ok" if backend.ping() else "unavailable"
    return HealthResponse(
        status="ok",
        connections=len(hub.registry),
        rooms=len(hub.rooms.room_ids()),
        redis=redis_status,
    )
