"""Room and match state machine: seating, turns, melds, hand lifecycle and timers"""

import copy
import logging
import random
import secrets
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .constants import (
    END_COMPLETE, END_FORFEIT, END_LOBBY_CLOSE, END_LOBBY_TIMEOUT, END_TIMEOUT,
    MELD_GROUP, MELD_RUN, MIN_GROUP_LENGTH, MIN_RUN_LENGTH, NUM_ROUNDS,
    SOURCE_DISCARD, SOURCE_PILE,
)
from .errors import (
    ALREADY_DISCARDED, ALREADY_DRAWN, COUNT, EMPTY, FULL, HAND_COMPLETE,
    IN_PROGRESS, INTERNAL_ERROR, INVALID, LIMIT, NEED_DISCARD, NEED_DRAW,
    NEED_LAID, NEED_PLAYERS, NOT_EMPTY, NOT_FOUND, NOT_PLAYER, NOT_STARTED,
    STARTED, TURN, GameError, raise_error,
)
from .models import Card, PlayerSeat, RecentMatch, RoomState, Spectator
from .registry import RoomRegistry
from .rules import RuleConfig, default_rules, get_deal_size, get_meld_quota, quota_met
from .scoring import forfeit_scores, score_seats, standings
from .serialization import serialize_room
from .shuffle import Deck, create_double_deck, deal_cards
from .timers import TimerKind, TimerManager
from .validate import is_valid_meld, why_meld_invalid

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Outcome of one engine operation."""
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None) -> 'ActionResult':
        return cls(success=True, data=data or {})

    @classmethod
    def error(cls, code: str, message: str) -> 'ActionResult':
        return cls(success=False, error_code=code, error_message=message)


@dataclass
class RoomUpdate:
    """What the gateway broadcasts after a room changes."""
    room_id: str
    state: Optional[Dict[str, Any]]  # None once the room is gone
    events: List[str] = field(default_factory=list)
    notices: List[Dict[str, Any]] = field(default_factory=list)
    closed: bool = False


def new_id() -> str:
    return str(uuid.uuid4())[:8]


def _describe(cards: List[Card]) -> str:
    return " ".join(str(c) for c in cards)


class RummyEngine:
    def __init__(self, registry: Optional[RoomRegistry] = None,
                 timers: Optional[TimerManager] = None,
                 rules: Optional[RuleConfig] = None,
                 rng: Optional[random.Random] = None,
                 listener: Optional[Callable[[RoomUpdate], None]] = None):
        self.rules = rules or default_rules
        self.registry = registry or RoomRegistry(self.rules.recent_matches_limit)
        self.timers = timers or TimerManager()
        self.rng = rng or random.Random()
        self.listener = listener
        self.room_locks = defaultdict(threading.Lock)
        self._pending_events: Dict[str, List[str]] = defaultdict(list)
        self._pending_notices: Dict[str, List[Dict[str, Any]]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def get_room(self, room_id: str) -> Optional[RoomState]:
        return self.registry.get(room_id)

    def get_snapshot(self, room_id: str) -> Optional[Dict[str, Any]]:
        room = self.registry.get(room_id)
        return serialize_room(room) if room else None

    def _apply(self, room_id: str, action: Callable, *args) -> ActionResult:
        """
        Run one action against a room under its lock.

        Actions validate before they mutate and raise GameError on the first
        failed check. Any other exception restores the room from the copy
        taken before the action and the action is dropped.
        """
        lock = self.room_locks.get(room_id)
        if lock is None:
            return ActionResult.error(NOT_FOUND, "Room not found")
        with lock:
            room = self.registry.get(room_id)
            if not room:
                return ActionResult.error(NOT_FOUND, "Room not found")
            backup = copy.deepcopy(room)
            try:
                data = action(room, *args)
            except GameError as e:
                self._drop_pending(room_id)
                return ActionResult.error(e.code, e.message)
            except Exception:
                logger.exception(f"Dropped {action.__name__} in room {room_id}")
                self.registry.replace(backup)
                self.room_locks.setdefault(room_id, lock)
                self._drop_pending(room_id)
                return ActionResult.error(INTERNAL_ERROR, "Internal error")
            room.version += 1
        self._publish(room_id)
        return ActionResult.ok(data)

    def _on_timer(self, room_id: str, handler: Callable, *args):
        """Timer entry point. Handlers return False when the fire is stale."""
        lock = self.room_locks.get(room_id)
        if lock is None:
            return
        with lock:
            room = self.registry.get(room_id)
            if not room:
                return
            backup = copy.deepcopy(room)
            try:
                changed = handler(room, *args)
            except Exception:
                logger.exception(f"Timer handler {handler.__name__} failed in room {room_id}")
                self.registry.replace(backup)
                self.room_locks.setdefault(room_id, lock)
                self._drop_pending(room_id)
                return
            if not changed:
                return
            room.version += 1
        self._publish(room_id)

    def _emit(self, room: RoomState, text: str):
        room.game_log.append(text)
        if len(room.game_log) > self.rules.game_log_limit:
            del room.game_log[:-self.rules.game_log_limit]
        self._pending_events[room.id].append(text)

    def _notify(self, room_id: str, kind: str, **payload):
        self._pending_notices[room_id].append({"type": kind, **payload})

    def _drop_pending(self, room_id: str):
        self._pending_events.pop(room_id, None)
        self._pending_notices.pop(room_id, None)

    def _publish(self, room_id: str):
        events = self._pending_events.pop(room_id, [])
        notices = self._pending_notices.pop(room_id, [])
        if self.listener is None:
            return
        room = self.registry.get(room_id)
        update = RoomUpdate(
            room_id=room_id,
            state=serialize_room(room) if room else None,
            events=events,
            notices=notices,
            closed=room is None,
        )
        try:
            self.listener(update)
        except Exception:
            logger.exception(f"Update listener failed for room {room_id}")

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_seat(self, room: RoomState, player_id: str) -> PlayerSeat:
        seat = room.find_player(player_id)
        if not seat:
            raise_error(NOT_PLAYER, "You are not seated in this room")
        return seat

    def _require_turn(self, room: RoomState, player_id: str) -> PlayerSeat:
        if not room.started:
            raise_error(NOT_STARTED, "The match has not started")
        if room.hand_complete:
            raise_error(HAND_COMPLETE, "The hand is over")
        seat = self._require_seat(room, player_id)
        if room.current_player() is not seat:
            raise_error(TURN, "Not your turn")
        return seat

    def _require_positions(self, seat: PlayerSeat, indices: List[int]) -> List[Card]:
        if len(set(indices)) != len(indices):
            raise_error(NOT_FOUND, "A card was selected twice")
        for i in indices:
            if not isinstance(i, int) or i < 0 or i >= len(seat.hand):
                raise_error(NOT_FOUND, f"No card at position {i}")
        if len(indices) >= len(seat.hand):
            raise_error(COUNT, "You must keep a card to discard")
        return [seat.hand[i] for i in indices]

    # ------------------------------------------------------------------
    # Seat and turn pointer helpers
    # ------------------------------------------------------------------

    def _retarget_turn(self, room: RoomState, current_id: Optional[str],
                       removed_index: Optional[int] = None):
        """
        Point current_index back at the seat that held the turn.

        If that seat is gone, the turn passes to whoever now sits at the
        removed index (the next seat in order).
        """
        if not room.players:
            room.current_index = 0
            return
        index = room.seat_index(current_id)
        if index >= 0:
            room.current_index = index
        elif removed_index is not None:
            room.current_index = removed_index % len(room.players)
        else:
            room.current_index = min(room.current_index, len(room.players) - 1)

    def _current_id(self, room: RoomState) -> Optional[str]:
        current = room.current_player()
        return current.id if current else None

    def _vacate(self, room: RoomState, player_id: str, as_spectator: bool) -> PlayerSeat:
        index = room.seat_index(player_id)
        seat = room.players[index]
        current_id = self._current_id(room)
        forfeit = room.in_hand

        room.players.pop(index)
        self.timers.cancel(room.id, TimerKind.DISCONNECT, tag=player_id)

        # Cards the seat held go under the draw pile
        returned = list(seat.hand)
        for meld in seat.laid_groups + seat.laid_runs:
            returned.extend(meld)
        room.draw_pile[:0] = returned
        seat.reset_hand_state()

        if as_spectator:
            room.spectators.append(Spectator(id=seat.id, name=seat.name))

        self._retarget_turn(room, current_id, removed_index=index)
        if forfeit:
            self._forfeit(room, seat)
        return seat

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm_turn_timer(self, room: RoomState):
        room.turn_deadline = self.timers.arm(
            room.id, TimerKind.TURN, room.turn_seconds,
            self._on_timer, room.id, self._turn_expired, room.turn_serial,
        )

    def _arm_lobby_timer(self, room: RoomState, deadline: float):
        room.lobby_deadline = self.timers.arm(
            room.id, TimerKind.LOBBY, deadline - self.timers.now(),
            self._on_timer, room.id, self._lobby_expired,
        )

    def _refresh_lobby(self, room: RoomState):
        """Activity in a lobby pushes its deadline out to at least a full timeout."""
        if room.started:
            return
        deadline = self.timers.now() + self.rules.lobby_timeout
        if room.lobby_deadline and room.lobby_deadline > deadline:
            deadline = room.lobby_deadline
        self._arm_lobby_timer(room, deadline)

    def _turn_expired(self, room: RoomState, serial: int) -> bool:
        if not room.in_hand or room.closing or room.turn_serial != serial:
            return False
        seat = room.current_player()
        if seat is None:
            return False

        if not seat.has_drawn:
            card = self._take_from_pile(room)
            if card is not None:
                seat.hand.append(card)
            seat.has_drawn = True
        if not seat.did_discard and seat.hand:
            card = seat.hand.pop()
            room.discard_pile.append(card)
            seat.did_discard = True
            self._emit(room, f"{seat.name} ran out of time and discarded {card}")
        else:
            self._emit(room, f"{seat.name} ran out of time")

        if not seat.hand:
            self._finish_hand(room, f"{seat.name} went out")
        else:
            self._advance_turn(room)
        return True

    def _lobby_expired(self, room: RoomState) -> bool:
        if room.started:
            return False
        if not room.players:
            logger.info(f"Lobby {room.id} expired with no seated players")
            self._notify(room.id, "lobby_timeout")
            self._close_room(room, END_LOBBY_TIMEOUT)
            return True
        # Populated lobbies never expire on their own
        self._arm_lobby_timer(room, self.timers.now() + self.rules.lobby_timeout)
        return True

    def _match_expired(self, room: RoomState) -> bool:
        if room.closing:
            return False
        self._emit(room, "Match time limit reached")
        if room.in_hand:
            self._finish_hand(room, "The hand was stopped")
        self._schedule_teardown(room, END_TIMEOUT)
        return True

    def _disconnect_expired(self, room: RoomState, player_id: str) -> bool:
        seat = room.find_player(player_id)
        if not seat or seat.connected:
            return False
        self._emit(room, f"{seat.name} did not come back and lost their seat")
        self._vacate(room, player_id, as_spectator=False)
        return True

    def _teardown_expired(self, room: RoomState) -> bool:
        self._close_room(room, room.end_reason or END_COMPLETE)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _begin_turn(self, room: RoomState):
        room.current_player().reset_turn_state()
        room.turn_serial += 1
        self._arm_turn_timer(room)

    def _advance_turn(self, room: RoomState):
        room.current_index = (room.current_index + 1) % len(room.players)
        self._begin_turn(room)
        self._emit(room, f"{room.current_player().name}'s turn")

    def _deal(self, room: RoomState):
        deck = Deck(create_double_deck())
        deck.shuffle(self.rng)
        for seat in room.players:
            seat.reset_hand_state()
        room.discard_pile = []
        deal_cards(deck, room.players, get_deal_size(room.round_number))
        room.discard_pile.append(deck.draw())
        room.draw_pile = deck.to_list()
        room.hand_complete = False
        room.last_scores = []
        room.current_index = 0
        self._begin_turn(room)

        quota = get_meld_quota(room.round_number)
        self._emit(
            room,
            f"Round {room.round_number}: {get_deal_size(room.round_number)} cards each, "
            f"lay {quota.groups} group(s) and {quota.runs} run(s). "
            f"{room.current_player().name} starts",
        )
        logger.info(f"Dealt round {room.round_number} in room {room.id}")

    def _finish_hand(self, room: RoomState, reason: str):
        self.timers.cancel(room.id, TimerKind.TURN)
        room.turn_deadline = None
        room.hand_complete = True
        room.last_scores = score_seats(room.players)
        summary = ", ".join(f"{line.name} +{line.hand}" for line in room.last_scores)
        self._emit(room, f"{reason}. Hand {room.round_number} scores: {summary}")
        logger.info(f"Hand {room.round_number} complete in room {room.id}")

    def _forfeit(self, room: RoomState, leaver: PlayerSeat):
        self.timers.cancel(room.id, TimerKind.TURN)
        room.turn_deadline = None
        room.hand_complete = True
        room.last_scores = forfeit_scores(room.players)
        self._emit(room, f"{leaver.name} left mid-hand. The match is forfeited")
        logger.info(f"Forfeit in room {room.id} after {leaver.name} left")
        self._schedule_teardown(room, END_FORFEIT)

    def _schedule_teardown(self, room: RoomState, reason: str):
        room.closing = True
        room.end_reason = reason
        for kind in (TimerKind.TURN, TimerKind.LOBBY, TimerKind.MATCH):
            self.timers.cancel(room.id, kind)
        room.turn_deadline = None
        room.lobby_deadline = None
        room.match_deadline = None
        self.timers.arm(
            room.id, TimerKind.TEARDOWN, self.rules.teardown_grace,
            self._on_timer, room.id, self._teardown_expired,
        )
        logger.info(f"Room {room.id} closing ({reason})")

    def _close_room(self, room: RoomState, reason: str):
        self.timers.cancel_room(room.id)
        if room.started:
            self.registry.record_recent(RecentMatch(
                id=room.id,
                ended=self.timers.now(),
                reason=reason,
                players=standings(room.players),
            ))
        self.registry.remove(room.id)
        self.room_locks.pop(room.id, None)
        self._notify(room.id, "room_closed", reason=reason)
        logger.info(f"Room {room.id} closed ({reason})")

    # ------------------------------------------------------------------
    # Rooms and seats
    # ------------------------------------------------------------------

    def create_room(self, match_limit_minutes: Optional[int] = None) -> ActionResult:
        room_id = new_id()
        with self.room_locks[room_id]:
            room = RoomState(
                id=room_id,
                turn_seconds=self.rules.turn_timeout,
                match_limit_minutes=self.rules.clamp_match_minutes(match_limit_minutes),
                created_at=self.timers.now(),
            )
            self.registry.add(room)
            self._arm_lobby_timer(room, room.created_at + self.rules.lobby_timeout)
            self._emit(room, "Room created")
            logger.info(f"Created room {room_id}")
        self._publish(room_id)
        return ActionResult.ok({"room_id": room_id})

    def join_room(self, room_id: str, name: str, seat_index: Optional[int] = None,
                  spectator_id: Optional[str] = None) -> ActionResult:
        """Take a seat, optionally at a given index. Returns the new player id."""
        return self._apply(room_id, self._join, name, seat_index, spectator_id)

    def _join(self, room: RoomState, name: str, seat_index: Optional[int],
              spectator_id: Optional[str]) -> Dict[str, Any]:
        if room.closing:
            raise_error(STARTED, "This room is closing")
        if room.in_hand:
            raise_error(IN_PROGRESS, "A hand is in progress")
        if len(room.players) >= self.rules.max_players:
            raise_error(FULL, "Room is full")

        name = (name or "").strip() or f"Player {len(room.players) + 1}"
        if seat_index is None:
            index = len(room.players)
        else:
            index = max(0, min(len(room.players), seat_index))

        current_id = self._current_id(room)
        seat = PlayerSeat(id=new_id(), name=name, token=secrets.token_hex(16))
        room.players.insert(index, seat)
        self._retarget_turn(room, current_id)

        spectator = room.find_spectator(spectator_id)
        if spectator:
            room.spectators.remove(spectator)

        self._refresh_lobby(room)
        self._emit(room, f"{name} took seat {index + 1}")
        return {"player_id": seat.id, "seat_index": index, "token": seat.token}

    def spectate(self, room_id: str, name: str) -> ActionResult:
        return self._apply(room_id, self._spectate, name)

    def _spectate(self, room: RoomState, name: str) -> Dict[str, Any]:
        name = (name or "").strip() or "Spectator"
        spectator = Spectator(id=new_id(), name=name)
        room.spectators.append(spectator)
        self._refresh_lobby(room)
        self._notify(room.id, "spectator_joined", name=name, spectator_id=spectator.id)
        self._emit(room, f"{name} is watching")
        return {"spectator_id": spectator.id}

    def remove_spectator(self, room_id: str, spectator_id: str) -> ActionResult:
        return self._apply(room_id, self._remove_spectator, spectator_id)

    def _remove_spectator(self, room: RoomState, spectator_id: str):
        spectator = room.find_spectator(spectator_id)
        if not spectator:
            raise_error(NOT_FOUND, "Spectator not found")
        room.spectators.remove(spectator)

    def switch_seat(self, room_id: str, player_id: str, to_index: int) -> ActionResult:
        return self._apply(room_id, self._switch_seat, player_id, to_index)

    def _switch_seat(self, room: RoomState, player_id: str, to_index: int) -> Dict[str, Any]:
        if room.in_hand:
            raise_error(IN_PROGRESS, "Cannot change seats during a hand")
        seat = self._require_seat(room, player_id)
        index = max(0, min(len(room.players) - 1, to_index))

        current_id = self._current_id(room)
        room.players.remove(seat)
        room.players.insert(index, seat)
        self._retarget_turn(room, current_id)
        self._emit(room, f"{seat.name} moved to seat {index + 1}")
        return {"seat_index": index}

    def leave_seat(self, room_id: str, player_id: str) -> ActionResult:
        """Give up a seat and keep watching. Leaving mid-hand forfeits the match."""
        return self._apply(room_id, self._leave_seat, player_id)

    def _leave_seat(self, room: RoomState, player_id: str) -> Dict[str, Any]:
        seat = self._require_seat(room, player_id)
        forfeit = room.in_hand
        self._emit(room, f"{seat.name} left their seat")
        self._vacate(room, player_id, as_spectator=True)
        return {"spectator_id": seat.id, "forfeit": forfeit}

    def resume(self, room_id: str, player_id: str, token: str) -> ActionResult:
        """Reclaim a seat with the token handed out when it was taken."""
        return self._apply(room_id, self._resume, player_id, token)

    def _resume(self, room: RoomState, player_id: str, token: str) -> Dict[str, Any]:
        seat = self._require_seat(room, player_id)
        if not token or not secrets.compare_digest(seat.token.encode(), token.encode()):
            raise_error(NOT_PLAYER, "That seat belongs to someone else")
        self.timers.cancel(room.id, TimerKind.DISCONNECT, tag=player_id)
        if not seat.connected:
            seat.connected = True
            self._emit(room, f"{seat.name} reconnected")
        return {"player_id": seat.id}

    def disconnect(self, room_id: str, player_id: str) -> ActionResult:
        """Mark a seat disconnected and start its grace timer."""
        return self._apply(room_id, self._disconnect, player_id)

    def _disconnect(self, room: RoomState, player_id: str):
        seat = self._require_seat(room, player_id)
        seat.connected = False
        self.timers.arm(
            room.id, TimerKind.DISCONNECT, self.rules.disconnect_grace,
            self._on_timer, room.id, self._disconnect_expired, player_id,
            tag=player_id,
        )
        self._emit(room, f"{seat.name} disconnected")

    def set_ready(self, room_id: str, player_id: str, ready: bool) -> ActionResult:
        return self._apply(room_id, self._set_ready, player_id, ready)

    def _set_ready(self, room: RoomState, player_id: str, ready: bool):
        if room.started:
            raise_error(STARTED, "The match has already started")
        seat = self._require_seat(room, player_id)
        seat.ready = bool(ready)
        self._refresh_lobby(room)
        self._emit(room, f"{seat.name} is {'ready' if seat.ready else 'not ready'}")

    def extend_lobby(self, room_id: str, player_id: str,
                     seconds: Optional[float] = None) -> ActionResult:
        return self._apply(room_id, self._extend_lobby, player_id, seconds)

    def _extend_lobby(self, room: RoomState, player_id: str,
                      seconds: Optional[float]) -> Dict[str, Any]:
        if room.started:
            raise_error(STARTED, "The match has already started")
        seat = self._require_seat(room, player_id)
        seconds = max(1, seconds or self.rules.lobby_extension)
        base = max(room.lobby_deadline or 0, self.timers.now())
        self._arm_lobby_timer(room, base + seconds)
        self._emit(room, f"{seat.name} extended the lobby by {int(seconds)}s")
        return {"lobby_deadline": room.lobby_deadline}

    def set_turn_timer(self, room_id: str, player_id: str, seconds: float) -> ActionResult:
        return self._apply(room_id, self._set_turn_timer, player_id, seconds)

    def _set_turn_timer(self, room: RoomState, player_id: str, seconds: float) -> Dict[str, Any]:
        seat = self._require_seat(room, player_id)
        room.turn_seconds = self.rules.clamp_turn_seconds(seconds)
        if room.in_hand and not room.closing:
            self._arm_turn_timer(room)
        self._emit(room, f"{seat.name} set the turn timer to {int(room.turn_seconds)}s")
        return {"turn_seconds": room.turn_seconds}

    def set_match_limit(self, room_id: str, player_id: str, minutes: Optional[int]) -> ActionResult:
        return self._apply(room_id, self._set_match_limit, player_id, minutes)

    def _set_match_limit(self, room: RoomState, player_id: str,
                         minutes: Optional[int]) -> Dict[str, Any]:
        seat = self._require_seat(room, player_id)
        if room.started:
            raise_error(IN_PROGRESS, "The match limit is fixed once the match starts")
        room.match_limit_minutes = self.rules.clamp_match_minutes(minutes)
        self._emit(room, f"{seat.name} set the match limit to {room.match_limit_minutes} minutes")
        return {"match_limit_minutes": room.match_limit_minutes}

    def close_room(self, room_id: str, actor_id: str) -> ActionResult:
        """Close a lobby that has at most one seated player."""
        return self._apply(room_id, self._close_lobby, actor_id)

    def _close_lobby(self, room: RoomState, actor_id: str):
        if not room.find_player(actor_id) and not room.find_spectator(actor_id):
            raise_error(NOT_PLAYER, "You are not in this room")
        if room.started:
            raise_error(STARTED, "The match has already started")
        if len(room.players) > 1:
            raise_error(NOT_EMPTY, "Other players are still seated")
        self._close_room(room, END_LOBBY_CLOSE)

    def chat(self, room_id: str, sender_id: str, text: str) -> ActionResult:
        """Resolve a chat line's sender. Chat is relayed, not kept on the room."""
        room = self.registry.get(room_id)
        if not room:
            return ActionResult.error(NOT_FOUND, "Room not found")
        member = room.find_player(sender_id) or room.find_spectator(sender_id)
        if not member:
            return ActionResult.error(NOT_PLAYER, "You are not in this room")
        text = (text or "").strip()[:self.rules.chat_max_length]
        if not text:
            return ActionResult.error(INVALID, "Empty message")
        return ActionResult.ok({"name": member.name, "sender_id": member.id, "text": text})

    def list_rooms(self) -> List[RoomState]:
        return self.registry.list_rooms()

    def recent_matches(self) -> List[RecentMatch]:
        return self.registry.recent()

    # ------------------------------------------------------------------
    # Match flow
    # ------------------------------------------------------------------

    def start_match(self, room_id: str, player_id: str) -> ActionResult:
        return self._apply(room_id, self._start_match, player_id)

    def _start_match(self, room: RoomState, player_id: str):
        seat = self._require_seat(room, player_id)
        if room.started:
            raise_error(STARTED, "The match has already started")
        if not self.rules.validate_player_count(len(room.players)):
            raise_error(NEED_PLAYERS, f"Need at least {self.rules.min_players} players")

        room.started = True
        room.round_number = 1
        self.timers.cancel(room.id, TimerKind.LOBBY)
        room.lobby_deadline = None
        room.match_deadline = self.timers.arm(
            room.id, TimerKind.MATCH, room.match_limit_minutes * 60,
            self._on_timer, room.id, self._match_expired,
        )
        self._emit(room, f"{seat.name} started the match")
        logger.info(f"Match started in room {room.id} with {len(room.players)} players")
        self._deal(room)

    def next_hand(self, room_id: str, player_id: str) -> ActionResult:
        return self._apply(room_id, self._next_hand, player_id)

    def _next_hand(self, room: RoomState, player_id: str) -> Dict[str, Any]:
        self._require_seat(room, player_id)
        if not room.started:
            raise_error(NOT_STARTED, "The match has not started")
        if not room.hand_complete:
            raise_error(IN_PROGRESS, "The hand is still being played")
        if room.closing:
            raise_error(STARTED, "The match is over")

        if room.round_number >= NUM_ROUNDS:
            self._emit(room, "Match complete")
            self._schedule_teardown(room, END_COMPLETE)
            return {"match_complete": True}

        if len(room.players) < self.rules.min_players:
            raise_error(NEED_PLAYERS, f"Need at least {self.rules.min_players} players")
        room.round_number += 1
        self._deal(room)
        return {"match_complete": False, "round": room.round_number}

    def draw(self, room_id: str, player_id: str, source: str) -> ActionResult:
        return self._apply(room_id, self._draw, player_id, source)

    def _pile_available(self, room: RoomState) -> int:
        """Cards a pile draw can reach, counting a reshuffle of the discard pile."""
        if room.draw_pile:
            return len(room.draw_pile)
        if len(room.discard_pile) >= 2:
            return len(room.discard_pile) - 1
        return 0

    def _take_from_pile(self, room: RoomState) -> Optional[Card]:
        if not room.draw_pile and len(room.discard_pile) >= 2:
            top = room.discard_pile.pop()
            room.draw_pile = room.discard_pile
            self.rng.shuffle(room.draw_pile)
            room.discard_pile = [top]
            self._emit(room, "The discard pile was shuffled into a new draw pile")
        if not room.draw_pile:
            return None
        return room.draw_pile.pop()

    def _draw(self, room: RoomState, player_id: str, source: str) -> Dict[str, Any]:
        seat = self._require_turn(room, player_id)
        if seat.has_drawn:
            raise_error(ALREADY_DRAWN, "You already drew this turn")
        if source not in (SOURCE_PILE, SOURCE_DISCARD):
            raise_error(INVALID, f"Unknown draw source: {source}")

        if source == SOURCE_DISCARD:
            if not room.discard_pile:
                raise_error(EMPTY, "The discard pile is empty")
            card = room.discard_pile.pop()
            self._emit(room, f"{seat.name} took {card} from the discard pile")
        else:
            if not self._pile_available(room):
                raise_error(EMPTY, "The draw pile is empty")
            card = self._take_from_pile(room)
            self._emit(room, f"{seat.name} drew from the pile")

        seat.hand.append(card)
        seat.has_drawn = True
        return {"card": card.id}

    def discard(self, room_id: str, player_id: str, index: int) -> ActionResult:
        return self._apply(room_id, self._discard, player_id, index)

    def _discard(self, room: RoomState, player_id: str, index: int) -> Dict[str, Any]:
        seat = self._require_turn(room, player_id)
        if not seat.has_drawn:
            raise_error(NEED_DRAW, "Draw before discarding")
        if seat.did_discard:
            raise_error(ALREADY_DISCARDED, "You already discarded this turn")
        if not isinstance(index, int) or index < 0 or index >= len(seat.hand):
            raise_error(NOT_FOUND, f"No card at position {index}")

        card = seat.hand.pop(index)
        room.discard_pile.append(card)
        seat.did_discard = True
        self._emit(room, f"{seat.name} discarded {card}")

        if not seat.hand:
            self._finish_hand(room, f"{seat.name} went out")
            return {"card": card.id, "went_out": True}
        return {"card": card.id, "went_out": False}

    def end_turn(self, room_id: str, player_id: str) -> ActionResult:
        return self._apply(room_id, self._end_turn, player_id)

    def _end_turn(self, room: RoomState, player_id: str):
        seat = self._require_turn(room, player_id)
        if not seat.did_discard:
            raise_error(NEED_DISCARD, "Discard before ending your turn")
        self._advance_turn(room)

    def give_discard(self, room_id: str, player_id: str, target_id: str) -> ActionResult:
        """Hand the top discard plus a bonus card to another seat, then draw."""
        return self._apply(room_id, self._give_discard, player_id, target_id)

    def _give_discard(self, room: RoomState, player_id: str, target_id: str):
        seat = self._require_turn(room, player_id)
        if seat.has_drawn:
            raise_error(ALREADY_DRAWN, "You already drew this turn")
        target = room.find_player(target_id)
        if not target or target is seat:
            raise_error(NOT_FOUND, "Choose another seated player")
        if not room.discard_pile:
            raise_error(EMPTY, "The discard pile is empty")
        reachable = len(room.draw_pile) + max(0, len(room.discard_pile) - 2)
        if reachable < 2:
            raise_error(EMPTY, "Not enough cards left to give the discard")

        gift = room.discard_pile.pop()
        target.hand.append(gift)
        target.hand.append(self._take_from_pile(room))
        seat.hand.append(self._take_from_pile(room))
        seat.has_drawn = True
        self._emit(room, f"{seat.name} gave {gift} and a bonus card to {target.name}")

    def lay_group(self, room_id: str, player_id: str, indices: List[int]) -> ActionResult:
        return self._apply(room_id, self._lay, player_id, indices, MELD_GROUP)

    def lay_run(self, room_id: str, player_id: str, indices: List[int]) -> ActionResult:
        return self._apply(room_id, self._lay, player_id, indices, MELD_RUN)

    def _lay(self, room: RoomState, player_id: str, indices: List[int],
             meld_type: str) -> Dict[str, Any]:
        seat = self._require_turn(room, player_id)
        if not seat.has_drawn:
            raise_error(NEED_DRAW, "Draw before laying down")
        minimum = MIN_GROUP_LENGTH if meld_type == MELD_GROUP else MIN_RUN_LENGTH
        if len(indices) < minimum:
            raise_error(COUNT, f"Pick at least {minimum} cards for a {meld_type}")
        cards = self._require_positions(seat, indices)

        quota = get_meld_quota(room.round_number)
        melds = seat.laid_groups if meld_type == MELD_GROUP else seat.laid_runs
        allowed = quota.groups if meld_type == MELD_GROUP else quota.runs
        if len(melds) >= allowed:
            raise_error(LIMIT, f"No more {meld_type}s needed this round")
        if not is_valid_meld(meld_type, cards):
            raise_error(INVALID, why_meld_invalid(meld_type, cards) or f"Not a valid {meld_type}")

        for i in sorted(indices, reverse=True):
            seat.hand.pop(i)
        melds.append(cards)
        seat.laid_complete = quota_met(
            room.round_number, len(seat.laid_groups), len(seat.laid_runs)
        )
        self._emit(room, f"{seat.name} laid a {meld_type}: {_describe(cards)}")
        return {"meld_index": len(melds) - 1, "laid_complete": seat.laid_complete}

    def hit(self, room_id: str, player_id: str, target_id: str, meld_type: str,
            meld_index: int, indices: List[int]) -> ActionResult:
        """Add hand cards to a meld already on the table."""
        return self._apply(
            room_id, self._hit, player_id, target_id, meld_type, meld_index, indices
        )

    def _hit(self, room: RoomState, player_id: str, target_id: str, meld_type: str,
             meld_index: int, indices: List[int]):
        seat = self._require_turn(room, player_id)
        if not seat.has_drawn:
            raise_error(NEED_DRAW, "Draw before hitting")
        if not seat.laid_complete:
            raise_error(NEED_LAID, "Lay down this round's melds first")
        target = room.find_player(target_id)
        if not target:
            raise_error(NOT_FOUND, "Player not found")
        if meld_type == MELD_GROUP:
            melds = target.laid_groups
        elif meld_type == MELD_RUN:
            melds = target.laid_runs
        else:
            melds = []
        if not isinstance(meld_index, int) or meld_index < 0 or meld_index >= len(melds):
            raise_error(NOT_FOUND, "Meld not found")
        if not indices:
            raise_error(COUNT, "Pick at least one card")
        cards = self._require_positions(seat, indices)

        combined = melds[meld_index] + cards
        if not is_valid_meld(meld_type, combined):
            raise_error(INVALID, why_meld_invalid(meld_type, combined) or f"Not a valid {meld_type}")

        for i in sorted(indices, reverse=True):
            seat.hand.pop(i)
        melds[meld_index] = combined
        self._emit(room, f"{seat.name} added {_describe(cards)} to {target.name}'s {meld_type}")
