"""Live rooms and the bounded list of recently finished matches"""

from collections import deque
from typing import Dict, List, Optional

from .constants import RECENT_MATCHES_LIMIT
from .models import RecentMatch, RoomState


class RoomRegistry:
    def __init__(self, recent_limit: int = RECENT_MATCHES_LIMIT):
        self.rooms: Dict[str, RoomState] = {}
        self._recent = deque(maxlen=recent_limit)

    def add(self, room: RoomState):
        self.rooms[room.id] = room

    def get(self, room_id: Optional[str]) -> Optional[RoomState]:
        if room_id is None:
            return None
        return self.rooms.get(room_id)

    def replace(self, room: RoomState):
        """Swap in a restored copy of a room, if the room is still live."""
        if room.id in self.rooms:
            self.rooms[room.id] = room

    def remove(self, room_id: str) -> Optional[RoomState]:
        return self.rooms.pop(room_id, None)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self.rooms

    def __len__(self) -> int:
        return len(self.rooms)

    def list_rooms(self) -> List[RoomState]:
        return list(self.rooms.values())

    def record_recent(self, match: RecentMatch):
        self._recent.appendleft(match)

    def recent(self) -> List[RecentMatch]:
        """Recently finished matches, newest first."""
        return list(self._recent)
