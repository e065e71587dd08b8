"""
WebSocket event models and validation.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError


class EventType(str, Enum):
    """Inbound event types."""
    CREATE_ROOM = "create_room"
    JOIN = "join"
    SPECTATE = "spectate"
    TAKE_SEAT = "take_seat"
    SWITCH_SEAT = "switch_seat"
    RESUME = "resume"
    LEAVE_SEAT = "leave_seat"
    SET_READY = "set_ready"
    EXTEND_LOBBY = "extend_lobby"
    SET_TIMER = "set_timer"
    SET_MATCH_LIMIT = "set_match_limit"
    START = "start"
    DRAW = "draw"
    DISCARD = "discard"
    END_TURN = "end_turn"
    GIVE_DISCARD = "give_discard"
    LAY_GROUP = "lay_group"
    LAY_RUN = "lay_run"
    HIT = "hit"
    NEXT_HAND = "next_hand"
    CLOSE_ROOM = "close_room"
    CHAT = "chat"
    LIST_ROOMS = "list_rooms"
    LIST_RECENT = "list_recent"
    REQUEST_STATE = "request_state"


class OutboundEventType(str, Enum):
    """Outbound event types."""
    ACK = "ack"
    STATE = "state"
    EVENT = "event"
    CHAT = "chat"
    ROOM_CLOSED = "room_closed"
    LOBBY_TIMEOUT = "lobby_timeout"
    SPECTATOR_JOINED = "spectator_joined"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Gateway-level error codes. Engine codes are passed through as they are."""
    INVALID_EVENT = "invalid_event"
    NOT_IN_ROOM = "not_player"
    INTERNAL = "internal"


# Inbound event models
class BaseEvent(BaseModel):
    """Base event model."""
    type: EventType
    request_id: Optional[Union[str, int]] = None


class CreateRoomEvent(BaseEvent):
    """Create a room and take its first seat."""
    type: EventType = EventType.CREATE_ROOM
    name: str = Field(..., min_length=1, max_length=30)
    match_limit_minutes: Optional[int] = None


class JoinEvent(BaseEvent):
    """Join room event."""
    type: EventType = EventType.JOIN
    room_id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=30)
    seat_index: Optional[int] = None


class SpectateEvent(BaseEvent):
    type: EventType = EventType.SPECTATE
    room_id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=30)


class TakeSeatEvent(BaseEvent):
    """A spectator takes a seat, optionally at an index."""
    type: EventType = EventType.TAKE_SEAT
    name: Optional[str] = Field(default=None, max_length=30)
    seat_index: Optional[int] = None


class SwitchSeatEvent(BaseEvent):
    type: EventType = EventType.SWITCH_SEAT
    seat_index: int


class ResumeEvent(BaseEvent):
    """Rebind a new connection to a seat after a disconnect."""
    type: EventType = EventType.RESUME
    room_id: str = Field(..., min_length=1, max_length=50)
    player_id: str = Field(..., min_length=1, max_length=50)
    token: str = Field(..., min_length=1, max_length=64)


class LeaveSeatEvent(BaseEvent):
    type: EventType = EventType.LEAVE_SEAT


class SetReadyEvent(BaseEvent):
    type: EventType = EventType.SET_READY
    ready: bool = True


class ExtendLobbyEvent(BaseEvent):
    type: EventType = EventType.EXTEND_LOBBY
    seconds: Optional[float] = Field(default=None, gt=0)


class SetTimerEvent(BaseEvent):
    type: EventType = EventType.SET_TIMER
    seconds: float


class SetMatchLimitEvent(BaseEvent):
    type: EventType = EventType.SET_MATCH_LIMIT
    minutes: Optional[int] = None


class StartEvent(BaseEvent):
    """Start game event."""
    type: EventType = EventType.START


class DrawEvent(BaseEvent):
    type: EventType = EventType.DRAW
    source: str = "pile"


class DiscardEvent(BaseEvent):
    type: EventType = EventType.DISCARD
    index: int


class EndTurnEvent(BaseEvent):
    type: EventType = EventType.END_TURN


class GiveDiscardEvent(BaseEvent):
    type: EventType = EventType.GIVE_DISCARD
    target_id: str = Field(..., min_length=1)


class LayGroupEvent(BaseEvent):
    type: EventType = EventType.LAY_GROUP
    indices: List[int] = Field(..., max_length=12)


class LayRunEvent(BaseEvent):
    type: EventType = EventType.LAY_RUN
    indices: List[int] = Field(..., max_length=12)


class HitEvent(BaseEvent):
    """Add hand cards to a meld on the table."""
    type: EventType = EventType.HIT
    target_id: str = Field(..., min_length=1)
    meld_type: Literal["group", "run"]
    meld_index: int
    indices: List[int] = Field(..., max_length=12)


class NextHandEvent(BaseEvent):
    type: EventType = EventType.NEXT_HAND


class CloseRoomEvent(BaseEvent):
    type: EventType = EventType.CLOSE_ROOM


class ChatEvent(BaseEvent):
    """Chat message event. Long messages are truncated by the engine."""
    type: EventType = EventType.CHAT
    text: str = Field(..., min_length=1, max_length=2000)


class ListRoomsEvent(BaseEvent):
    type: EventType = EventType.LIST_ROOMS


class ListRecentEvent(BaseEvent):
    type: EventType = EventType.LIST_RECENT


class RequestStateEvent(BaseEvent):
    """Request full state event."""
    type: EventType = EventType.REQUEST_STATE


# Union type for all inbound events
InboundEvent = Union[
    CreateRoomEvent,
    JoinEvent,
    SpectateEvent,
    TakeSeatEvent,
    SwitchSeatEvent,
    ResumeEvent,
    LeaveSeatEvent,
    SetReadyEvent,
    ExtendLobbyEvent,
    SetTimerEvent,
    SetMatchLimitEvent,
    StartEvent,
    DrawEvent,
    DiscardEvent,
    EndTurnEvent,
    GiveDiscardEvent,
    LayGroupEvent,
    LayRunEvent,
    HitEvent,
    NextHandEvent,
    CloseRoomEvent,
    ChatEvent,
    ListRoomsEvent,
    ListRecentEvent,
    RequestStateEvent,
]

EVENT_MAP = {
    EventType.CREATE_ROOM: CreateRoomEvent,
    EventType.JOIN: JoinEvent,
    EventType.SPECTATE: SpectateEvent,
    EventType.TAKE_SEAT: TakeSeatEvent,
    EventType.SWITCH_SEAT: SwitchSeatEvent,
    EventType.RESUME: ResumeEvent,
    EventType.LEAVE_SEAT: LeaveSeatEvent,
    EventType.SET_READY: SetReadyEvent,
    EventType.EXTEND_LOBBY: ExtendLobbyEvent,
    EventType.SET_TIMER: SetTimerEvent,
    EventType.SET_MATCH_LIMIT: SetMatchLimitEvent,
    EventType.START: StartEvent,
    EventType.DRAW: DrawEvent,
    EventType.DISCARD: DiscardEvent,
    EventType.END_TURN: EndTurnEvent,
    EventType.GIVE_DISCARD: GiveDiscardEvent,
    EventType.LAY_GROUP: LayGroupEvent,
    EventType.LAY_RUN: LayRunEvent,
    EventType.HIT: HitEvent,
    EventType.NEXT_HAND: NextHandEvent,
    EventType.CLOSE_ROOM: CloseRoomEvent,
    EventType.CHAT: ChatEvent,
    EventType.LIST_ROOMS: ListRoomsEvent,
    EventType.LIST_RECENT: ListRecentEvent,
    EventType.REQUEST_STATE: RequestStateEvent,
}


# Outbound event models
class AckEvent(BaseModel):
    """Exactly one of these answers every inbound message."""
    type: OutboundEventType = OutboundEventType.ACK
    request_id: Optional[Union[str, int]] = None
    ok: bool
    error: Optional[str] = None
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class StateEvent(BaseModel):
    """Sanitized room snapshot for one viewer."""
    type: OutboundEventType = OutboundEventType.STATE
    state: Dict[str, Any]
    timestamp: float


class LogLineEvent(BaseModel):
    """Human-readable game log line."""
    type: OutboundEventType = OutboundEventType.EVENT
    room_id: str
    text: str
    timestamp: float


class NoticeEvent(BaseModel):
    """Room lifecycle notice: room_closed, lobby_timeout or spectator_joined."""
    type: OutboundEventType
    room_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float


class ChatMessageEvent(BaseModel):
    """Chat message event."""
    type: OutboundEventType = OutboundEventType.CHAT
    room_id: str
    sender_id: str
    name: str
    text: str
    timestamp: float


def parse_inbound_event(data: Dict[str, Any]) -> InboundEvent:
    """
    Parse raw event data into appropriate event model.

    Args:
        data: Raw event data from WebSocket

    Returns:
        Parsed event model

    Raises:
        ValueError: If event type is invalid or data is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("Event must be a JSON object")

    event_type = data.get("type")
    if not event_type:
        raise ValueError("Missing event type")

    try:
        event_type = EventType(event_type)
    except ValueError:
        raise ValueError(f"Invalid event type: {event_type}")

    event_class = EVENT_MAP.get(event_type)
    if not event_class:
        raise ValueError(f"No handler for event type: {event_type}")

    try:
        return event_class(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid event data: {e.errors()[0]['msg']}")


def create_ack_event(request_id: Optional[Union[str, int]], ok: bool, error: Optional[str] = None,
                     message: Optional[str] = None,
                     data: Optional[Dict[str, Any]] = None) -> AckEvent:
    return AckEvent(request_id=request_id, ok=ok, error=error, message=message, data=data or {})


def create_state_event(state: Dict[str, Any]) -> StateEvent:
    """Create a state event."""
    return StateEvent(state=state, timestamp=time.time())


def create_log_event(room_id: str, text: str) -> LogLineEvent:
    return LogLineEvent(room_id=room_id, text=text, timestamp=time.time())


def create_notice_event(notice: Dict[str, Any], room_id: str) -> NoticeEvent:
    """Create a lifecycle notice from an engine notice dict."""
    payload = dict(notice)
    kind = OutboundEventType(payload.pop("type"))
    payload.pop("room_id", None)
    return NoticeEvent(type=kind, room_id=room_id, data=payload, timestamp=time.time())


def create_chat_event(room_id: str, sender_id: str, name: str, text: str) -> ChatMessageEvent:
    """Create a chat message event."""
    return ChatMessageEvent(
        room_id=room_id,
        sender_id=sender_id,
        name=name,
        text=text,
        timestamp=time.time()
    )
