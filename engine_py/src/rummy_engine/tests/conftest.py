"""
Shared fixtures: a hand-cranked event loop for timers and a seeded engine.
"""

import random

import pytest

from rummy_engine.constants import parse_card
from rummy_engine.engine import RummyEngine
from rummy_engine.timers import TimerManager


class FakeHandle:
    def __init__(self, when, seq, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Just enough of an asyncio loop for TimerManager; time only moves on advance()."""

    def __init__(self, start=1000.0):
        self.now = start
        self._seq = 0
        self._handles = []

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.now + delay, self._seq, callback, args)
        self._seq += 1
        self._handles.append(handle)
        return handle

    def advance(self, seconds):
        """Move time forward, firing due callbacks in deadline order."""
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = max(self.now, handle.when)
            handle.callback(*handle.args)
        self.now = target
        self._handles = [h for h in self._handles if not h.cancelled]

    def pending(self):
        return [h for h in self._handles if not h.cancelled]


class Rig:
    """Rearrange a live room for a test while keeping every card accounted for."""

    @staticmethod
    def _take(room, card, exclude):
        # Look in the draw pile first, then hands, then the discard pile
        sources = [room.draw_pile]
        sources += [s.hand for s in room.players if s.hand is not exclude]
        sources.append(room.discard_pile)
        for source in sources:
            for i, candidate in enumerate(source):
                if candidate == card:
                    taken = source.pop(i)
                    if source is not room.draw_pile:
                        source.insert(i, room.draw_pile.pop())
                    return taken
        raise AssertionError(f"{card.id} is not available")

    @classmethod
    def hand(cls, room, player_id, card_ids):
        seat = room.find_player(player_id)
        room.draw_pile[:0] = seat.hand
        seat.hand = []
        for card_id in card_ids:
            seat.hand.append(cls._take(room, parse_card(card_id), seat.hand))
        return seat

    @classmethod
    def discard_top(cls, room, card_id):
        card = cls._take(room, parse_card(card_id), None)
        room.discard_pile.append(card)


@pytest.fixture
def fake_loop():
    return FakeLoop()


@pytest.fixture
def timers(fake_loop):
    return TimerManager(loop=fake_loop, clock=fake_loop.time)


@pytest.fixture
def updates():
    return []


@pytest.fixture
def engine(timers, updates):
    return RummyEngine(timers=timers, rng=random.Random(7), listener=updates.append)


@pytest.fixture
def rig():
    return Rig


@pytest.fixture
def lobby(engine):
    """A lobby with Alice and Bob seated. Returns (room_id, [alice_id, bob_id])."""
    room_id = engine.create_room().data["room_id"]
    alice = engine.join_room(room_id, "Alice").data["player_id"]
    bob = engine.join_room(room_id, "Bob").data["player_id"]
    return room_id, [alice, bob]


@pytest.fixture
def started(engine, lobby):
    """Alice and Bob in round 1, Alice to play."""
    room_id, players = lobby
    result = engine.start_match(room_id, players[0])
    assert result.success
    return room_id, players
