"""
Per-room timer management.

Every timer is keyed by ``(room_id, kind, tag)``. Arming a key always cancels
whatever handle was armed under it before, so a key never has two pending
fires.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class TimerKind(str, Enum):
    TURN = "turn"
    LOBBY = "lobby"
    MATCH = "match"
    DISCONNECT = "disconnect"  # tagged by seat id
    TEARDOWN = "teardown"


TimerKey = Tuple[str, TimerKind, Optional[str]]


class TimerManager:
    """Schedules timer callbacks on an asyncio loop."""

    def __init__(self, loop=None, clock: Callable[[], float] = time.time):
        self._loop = loop
        self._clock = clock
        self._handles: Dict[TimerKey, object] = {}

    def now(self) -> float:
        return self._clock()

    def _get_loop(self):
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def arm(self, room_id: str, kind: TimerKind, delay: float, callback: Callable,
            *args, tag: Optional[str] = None) -> float:
        """
        Schedule ``callback(*args)`` after ``delay`` seconds.

        Returns:
            The deadline as an epoch timestamp
        """
        key = (room_id, kind, tag)
        self.cancel(room_id, kind, tag=tag)
        delay = max(0.0, delay)
        handle = self._get_loop().call_later(delay, self._fire, key, callback, args)
        self._handles[key] = handle
        logger.debug(f"Armed {kind.value} timer for room {room_id} ({tag}) in {delay:.1f}s")
        return self.now() + delay

    def _fire(self, key: TimerKey, callback: Callable, args: tuple):
        self._handles.pop(key, None)
        room_id, kind, tag = key
        logger.debug(f"{kind.value} timer fired for room {room_id} ({tag})")
        try:
            callback(*args)
        except Exception:
            logger.exception(f"{kind.value} timer callback failed for room {room_id}")

    def cancel(self, room_id: str, kind: TimerKind, tag: Optional[str] = None) -> bool:
        handle = self._handles.pop((room_id, kind, tag), None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_room(self, room_id: str):
        """Cancel every timer belonging to a room."""
        for key in [k for k in self._handles if k[0] == room_id]:
            self._handles.pop(key).cancel()

    def cancel_all(self):
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def is_armed(self, room_id: str, kind: TimerKind, tag: Optional[str] = None) -> bool:
        return (room_id, kind, tag) in self._handles

    def pending(self, room_id: Optional[str] = None) -> int:
        if room_id is None:
            return len(self._handles)
        return sum(1 for k in self._handles if k[0] == room_id)
