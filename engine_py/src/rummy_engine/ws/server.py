"""
FastAPI WebSocket gateway for the Rummy server.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

import orjson
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from ..engine import ActionResult, RoomUpdate, RummyEngine
from ..errors import NOT_FOUND
from ..rules import RuleConfig, load_rules_from_env
from ..serialization import room_summary, sanitize_state, serialize_recent
from ..timers import TimerManager
from .events import (
    ChatEvent, CloseRoomEvent, CreateRoomEvent, DiscardEvent, DrawEvent,
    EndTurnEvent, ErrorCode, EventType, ExtendLobbyEvent, GiveDiscardEvent,
    HitEvent, JoinEvent, LayGroupEvent, LayRunEvent, ResumeEvent,
    SetMatchLimitEvent, SetReadyEvent, SetTimerEvent, SpectateEvent,
    SwitchSeatEvent, TakeSeatEvent, create_ack_event, create_chat_event,
    create_log_event, create_notice_event, create_state_event,
    parse_inbound_event,
)

logger = logging.getLogger(__name__)


@dataclass
class Binding:
    """Who a connection acts as."""
    room_id: str
    player_id: Optional[str] = None
    spectator_id: Optional[str] = None

    @property
    def member_id(self) -> Optional[str]:
        return self.player_id or self.spectator_id


class ConnectionManager:
    """Manages WebSocket connections and their room bindings."""

    def __init__(self):
        self.room_connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.bindings: Dict[WebSocket, Binding] = {}

    def bind(self, websocket: WebSocket, room_id: str, player_id: Optional[str] = None,
             spectator_id: Optional[str] = None):
        self.unbind(websocket)
        self.bindings[websocket] = Binding(room_id, player_id, spectator_id)
        self.room_connections[room_id].add(websocket)
        logger.info(f"Connection bound to room {room_id} as {player_id or spectator_id}")

    def unbind(self, websocket: WebSocket) -> Optional[Binding]:
        binding = self.bindings.pop(websocket, None)
        if binding:
            conns = self.room_connections.get(binding.room_id)
            if conns is not None:
                conns.discard(websocket)
                if not conns:
                    del self.room_connections[binding.room_id]
        return binding

    def binding(self, websocket: WebSocket) -> Optional[Binding]:
        return self.bindings.get(websocket)

    def connections(self, room_id: str) -> List[WebSocket]:
        return list(self.room_connections.get(room_id, ()))

    def is_player_connected(self, room_id: str, player_id: str) -> bool:
        return any(
            b.room_id == room_id and b.player_id == player_id
            for b in self.bindings.values()
        )

    def drop_room(self, room_id: str):
        for websocket in self.connections(room_id):
            self.unbind(websocket)

    def count(self) -> int:
        return len(self.bindings)


def _encode(event) -> str:
    return orjson.dumps(event.model_dump(mode="json")).decode()


def _not_seated() -> ActionResult:
    return ActionResult.error(ErrorCode.NOT_IN_ROOM.value, "Not seated in a room")


class GameGateway:
    """
    Routes inbound events to the engine and fans room updates out.

    Engine updates are queued by the listener and sent by ``flush``. All
    sends happen under one asyncio lock, so a connection always receives the
    ack for its request before the broadcast it caused.
    """

    def __init__(self, engine: Optional[RummyEngine] = None, rules: Optional[RuleConfig] = None):
        self.engine = engine or RummyEngine(timers=TimerManager(), rules=rules)
        self.engine.listener = self.enqueue
        self.manager = ConnectionManager()
        self._updates: List[RoomUpdate] = []
        self._send_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # Outbound

    def enqueue(self, update: RoomUpdate):
        self._updates.append(update)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop yet; the next request drains the queue
        self._spawn(loop, self.flush())

    def _spawn(self, loop, coro):
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background send failed: {task.exception()!r}")

    async def flush(self):
        async with self._send_lock:
            await self._drain()

    async def _drain(self):
        while self._updates:
            update = self._updates.pop(0)
            await self.broadcast(update)

    async def _send(self, websocket: WebSocket, event) -> bool:
        try:
            await websocket.send_text(_encode(event))
            return True
        except Exception as e:
            logger.error(f"Error sending to connection: {e}")
            self.manager.unbind(websocket)
            return False

    async def broadcast(self, update: RoomUpdate):
        for websocket in self.manager.connections(update.room_id):
            binding = self.manager.binding(websocket)
            if binding is None:
                continue
            if update.state is not None:
                state = sanitize_state(update.state, binding.player_id)
                if not await self._send(websocket, create_state_event(state)):
                    continue
            for text in update.events:
                await self._send(websocket, create_log_event(update.room_id, text))
            for notice in update.notices:
                await self._send(websocket, create_notice_event(notice, update.room_id))
        if update.closed:
            self.manager.drop_room(update.room_id)

    # Inbound

    async def handle_connection(self, websocket: WebSocket):
        await websocket.accept()
        logger.info("WebSocket connection accepted")
        try:
            while True:
                raw = await websocket.receive_text()
                await self.handle_message(websocket, raw)
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected")
        finally:
            await self.handle_disconnect(websocket)

    async def handle_message(self, websocket: WebSocket, raw: str):
        """Answer one inbound message with exactly one ack."""
        async with self._send_lock:
            request_id = None
            try:
                data = orjson.loads(raw)
                if isinstance(data, dict) and isinstance(data.get("request_id"), (str, int)):
                    request_id = data["request_id"]
                event = parse_inbound_event(data)
                result = self.dispatch(websocket, event)
            except ValueError as e:
                result = ActionResult.error(ErrorCode.INVALID_EVENT.value, str(e))
            except Exception:
                logger.exception("Error handling event")
                result = ActionResult.error(ErrorCode.INTERNAL.value, "Internal server error")

            ack = create_ack_event(
                request_id, result.success, result.error_code, result.error_message, result.data
            )
            await self._send(websocket, ack)
            await self._drain()

    async def handle_disconnect(self, websocket: WebSocket):
        binding = self.manager.unbind(websocket)
        if binding is None:
            return
        room_id = binding.room_id
        if binding.player_id:
            if not self.manager.is_player_connected(room_id, binding.player_id):
                self.engine.disconnect(room_id, binding.player_id)
        elif binding.spectator_id:
            self.engine.remove_spectator(room_id, binding.spectator_id)
        await self.flush()

    def dispatch(self, websocket: WebSocket, event) -> ActionResult:
        handler = self._handlers.get(event.type)
        if handler is None:
            raise ValueError(f"Unhandled event type: {event.type}")
        return handler(self, websocket, event)

    # Handlers

    def _seat(self, websocket: WebSocket) -> Optional[Binding]:
        binding = self.manager.binding(websocket)
        if binding and binding.player_id:
            return binding
        return None

    def _create_room(self, websocket: WebSocket, event: CreateRoomEvent) -> ActionResult:
        created = self.engine.create_room(event.match_limit_minutes)
        room_id = created.data["room_id"]
        joined = self.engine.join_room(room_id, event.name)
        if not joined.success:
            return joined
        self.manager.bind(websocket, room_id, player_id=joined.data["player_id"])
        return ActionResult.ok({"room_id": room_id, **joined.data})

    def _join(self, websocket: WebSocket, event: JoinEvent) -> ActionResult:
        binding = self.manager.binding(websocket)
        spectator_id = None
        if binding and binding.room_id == event.room_id:
            spectator_id = binding.spectator_id
        result = self.engine.join_room(event.room_id, event.name, event.seat_index, spectator_id)
        if result.success:
            self.manager.bind(websocket, event.room_id, player_id=result.data["player_id"])
            result.data["room_id"] = event.room_id
        return result

    def _spectate(self, websocket: WebSocket, event: SpectateEvent) -> ActionResult:
        result = self.engine.spectate(event.room_id, event.name)
        if result.success:
            self.manager.bind(websocket, event.room_id, spectator_id=result.data["spectator_id"])
            result.data["room_id"] = event.room_id
        return result

    def _take_seat(self, websocket: WebSocket, event: TakeSeatEvent) -> ActionResult:
        binding = self.manager.binding(websocket)
        if not binding or not binding.spectator_id:
            return ActionResult.error(NOT_FOUND, "Watch a room before taking a seat")
        name = event.name
        if not name:
            room = self.engine.get_room(binding.room_id)
            spectator = room.find_spectator(binding.spectator_id) if room else None
            name = spectator.name if spectator else ""
        result = self.engine.join_room(
            binding.room_id, name, event.seat_index, binding.spectator_id
        )
        if result.success:
            self.manager.bind(websocket, binding.room_id, player_id=result.data["player_id"])
        return result

    def _switch_seat(self, websocket: WebSocket, event: SwitchSeatEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.switch_seat(binding.room_id, binding.player_id, event.seat_index)

    def _resume(self, websocket: WebSocket, event: ResumeEvent) -> ActionResult:
        result = self.engine.resume(event.room_id, event.player_id, event.token)
        if result.success:
            self.manager.bind(websocket, event.room_id, player_id=event.player_id)
        return result

    def _leave_seat(self, websocket: WebSocket, event) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        result = self.engine.leave_seat(binding.room_id, binding.player_id)
        if result.success:
            self.manager.bind(websocket, binding.room_id, spectator_id=result.data["spectator_id"])
        return result

    def _set_ready(self, websocket: WebSocket, event: SetReadyEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.set_ready(binding.room_id, binding.player_id, event.ready)

    def _extend_lobby(self, websocket: WebSocket, event: ExtendLobbyEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.extend_lobby(binding.room_id, binding.player_id, event.seconds)

    def _set_timer(self, websocket: WebSocket, event: SetTimerEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.set_turn_timer(binding.room_id, binding.player_id, event.seconds)

    def _set_match_limit(self, websocket: WebSocket, event: SetMatchLimitEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.set_match_limit(binding.room_id, binding.player_id, event.minutes)

    def _start(self, websocket: WebSocket, event) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.start_match(binding.room_id, binding.player_id)

    def _draw(self, websocket: WebSocket, event: DrawEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.draw(binding.room_id, binding.player_id, event.source)

    def _discard(self, websocket: WebSocket, event: DiscardEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.discard(binding.room_id, binding.player_id, event.index)

    def _end_turn(self, websocket: WebSocket, event: EndTurnEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.end_turn(binding.room_id, binding.player_id)

    def _give_discard(self, websocket: WebSocket, event: GiveDiscardEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.give_discard(binding.room_id, binding.player_id, event.target_id)

    def _lay_group(self, websocket: WebSocket, event: LayGroupEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.lay_group(binding.room_id, binding.player_id, event.indices)

    def _lay_run(self, websocket: WebSocket, event: LayRunEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.lay_run(binding.room_id, binding.player_id, event.indices)

    def _hit(self, websocket: WebSocket, event: HitEvent) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.hit(
            binding.room_id, binding.player_id, event.target_id,
            event.meld_type, event.meld_index, event.indices,
        )

    def _next_hand(self, websocket: WebSocket, event) -> ActionResult:
        binding = self._seat(websocket)
        if not binding:
            return _not_seated()
        return self.engine.next_hand(binding.room_id, binding.player_id)

    def _close_room(self, websocket: WebSocket, event: CloseRoomEvent) -> ActionResult:
        binding = self.manager.binding(websocket)
        if not binding:
            return _not_seated()
        return self.engine.close_room(binding.room_id, binding.member_id)

    def _chat(self, websocket: WebSocket, event: ChatEvent) -> ActionResult:
        binding = self.manager.binding(websocket)
        if not binding:
            return _not_seated()
        result = self.engine.chat(binding.room_id, binding.member_id, event.text)
        if result.success:
            message = create_chat_event(
                binding.room_id, result.data["sender_id"], result.data["name"], result.data["text"]
            )
            self._spawn(asyncio.get_running_loop(), self._relay(binding.room_id, message))
        return result

    async def _relay(self, room_id: str, message):
        async with self._send_lock:
            for websocket in self.manager.connections(room_id):
                await self._send(websocket, message)

    def _list_rooms(self, websocket: WebSocket, event) -> ActionResult:
        return ActionResult.ok({"rooms": [room_summary(r) for r in self.engine.list_rooms()]})

    def _list_recent(self, websocket: WebSocket, event) -> ActionResult:
        return ActionResult.ok({"matches": serialize_recent(self.engine.recent_matches())})

    def _request_state(self, websocket: WebSocket, event) -> ActionResult:
        binding = self.manager.binding(websocket)
        if not binding:
            return _not_seated()
        snapshot = self.engine.get_snapshot(binding.room_id)
        if snapshot is None:
            return ActionResult.error(NOT_FOUND, "Room not found")
        return ActionResult.ok({"state": sanitize_state(snapshot, binding.player_id)})

    _handlers = {
        EventType.CREATE_ROOM: _create_room,
        EventType.JOIN: _join,
        EventType.SPECTATE: _spectate,
        EventType.TAKE_SEAT: _take_seat,
        EventType.SWITCH_SEAT: _switch_seat,
        EventType.RESUME: _resume,
        EventType.LEAVE_SEAT: _leave_seat,
        EventType.SET_READY: _set_ready,
        EventType.EXTEND_LOBBY: _extend_lobby,
        EventType.SET_TIMER: _set_timer,
        EventType.SET_MATCH_LIMIT: _set_match_limit,
        EventType.START: _start,
        EventType.DRAW: _draw,
        EventType.DISCARD: _discard,
        EventType.END_TURN: _end_turn,
        EventType.GIVE_DISCARD: _give_discard,
        EventType.LAY_GROUP: _lay_group,
        EventType.LAY_RUN: _lay_run,
        EventType.HIT: _hit,
        EventType.NEXT_HAND: _next_hand,
        EventType.CLOSE_ROOM: _close_room,
        EventType.CHAT: _chat,
        EventType.LIST_ROOMS: _list_rooms,
        EventType.LIST_RECENT: _list_recent,
        EventType.REQUEST_STATE: _request_state,
    }


def create_app(engine: Optional[RummyEngine] = None, rules: Optional[RuleConfig] = None) -> FastAPI:
    """Build the FastAPI app around one gateway and engine."""
    gateway = GameGateway(engine, rules or load_rules_from_env())

    app = FastAPI(title="Rummy Game Server", version="1.0.0")
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"message": "Rummy Game Server", "version": "1.0.0"}

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "rooms": len(gateway.engine.registry),
            "connections": gateway.manager.count(),
        }

    @app.get("/rooms")
    async def list_rooms():
        return {"rooms": [room_summary(r) for r in gateway.engine.list_rooms()]}

    @app.get("/recent")
    async def recent_matches():
        return {"matches": serialize_recent(gateway.engine.recent_matches())}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await gateway.handle_connection(websocket)

    return app
