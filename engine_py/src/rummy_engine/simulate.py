"""
Headless self-play.

Seats a few simple players in one room and drives a whole match through the
engine, checking that every card of the shoe is accounted for after every
action.

    python -m rummy_engine.simulate --players 3 --seed 7
"""

import argparse
import asyncio
import logging
import random
import sys
from collections import Counter, defaultdict
from typing import Dict, List, Optional

from .comparator import rank_value, split_wilds
from .constants import MELD_GROUP, MELD_RUN, MIN_RUN_ORDINAL, NUM_ROUNDS, SOURCE_PILE
from .engine import ActionResult, RummyEngine
from .errors import EMPTY
from .models import Card, PlayerSeat, RoomState
from .rules import create_rules, get_meld_quota
from .scoring import card_points
from .shuffle import create_double_deck
from .timers import TimerManager
from .validate import is_valid_meld

logger = logging.getLogger(__name__)

FULL_SHOE = Counter(card.id for card in create_double_deck())


class ConservationError(AssertionError):
    pass


def room_cards(room: RoomState) -> Counter:
    """Count every card in hands, melds and both piles."""
    counts = Counter(card.id for card in room.draw_pile)
    counts.update(card.id for card in room.discard_pile)
    for seat in room.players:
        counts.update(card.id for card in seat.hand)
        for meld in seat.laid_groups + seat.laid_runs:
            counts.update(card.id for card in meld)
    return counts


def check_conservation(room: RoomState):
    counts = room_cards(room)
    if counts != FULL_SHOE:
        missing = FULL_SHOE - counts
        extra = counts - FULL_SHOE
        raise ConservationError(f"Card mismatch in room {room.id}: missing={dict(missing)} extra={dict(extra)}")


def find_group(hand: List[Card]) -> Optional[List[int]]:
    """Positions of three cards forming a group, naturals first."""
    by_rank: Dict[object, List[int]] = defaultdict(list)
    wilds = []
    for i, card in enumerate(hand):
        if card.is_wild:
            wilds.append(i)
        else:
            by_rank[card.rank].append(i)
    for positions in sorted(by_rank.values(), key=len, reverse=True):
        need = 3 - len(positions)
        if need <= 0:
            return positions[:3]
        if need <= len(wilds):
            return positions + wilds[:need]
    return None


def find_run(hand: List[Card]) -> Optional[List[int]]:
    """Positions of four cards forming a run, using as few wilds as possible."""
    wilds = [i for i, card in enumerate(hand) if card.is_wild]
    by_suit: Dict[str, Dict[int, int]] = defaultdict(dict)
    for i, card in enumerate(hand):
        if not card.is_wild:
            by_suit[card.suit].setdefault(rank_value(card.rank), i)

    best = None
    for ordinals in by_suit.values():
        for start in range(MIN_RUN_ORDINAL, 12):
            window = range(start, start + 4)
            present = [ordinals[o] for o in window if o in ordinals]
            missing = 4 - len(present)
            if not present or missing > len(wilds):
                continue
            if best is None or missing < best[0]:
                best = (missing, present + wilds[:missing])
    return best[1] if best else None


def find_hit(room: RoomState, seat: PlayerSeat):
    """First single card that extends any meld on the table."""
    for i, card in enumerate(seat.hand):
        for target in room.players:
            for meld_type, melds in ((MELD_GROUP, target.laid_groups), (MELD_RUN, target.laid_runs)):
                for meld_index, meld in enumerate(melds):
                    if is_valid_meld(meld_type, meld + [card]):
                        return target.id, meld_type, meld_index, i
    return None


def _is_connected(card: Card, hand: List[Card]) -> bool:
    """Whether a natural card pairs with another by rank or sits near one in suit."""
    for other in hand:
        if other is card or other.is_wild:
            continue
        if other.rank == card.rank:
            return True
        if other.suit == card.suit and abs(rank_value(other.rank) - rank_value(card.rank)) <= 2:
            return True
    return False


def choose_discard(hand: List[Card]) -> int:
    """Throw the most expensive loose natural card; wilds are kept."""
    natural, _ = split_wilds(hand)
    loose = [c for c in natural if not _is_connected(c, hand)]
    pool = loose or natural or hand
    worst = max(pool, key=card_points)
    return next(i for i, c in enumerate(hand) if c is worst)


class SelfPlay:
    def __init__(self, players: int = 3, seed: Optional[int] = None, max_turns: int = 400):
        self.loop = asyncio.new_event_loop()
        self.engine = RummyEngine(
            timers=TimerManager(loop=self.loop),
            rules=create_rules(teardown_grace=0),
            rng=random.Random(seed),
        )
        self.num_players = players
        self.max_turns = max_turns
        self.actions = 0
        self.room_id = None
        self.player_ids: List[str] = []

    def close(self):
        self.engine.timers.cancel_all()
        self.loop.close()

    @property
    def room(self) -> RoomState:
        return self.engine.get_room(self.room_id)

    def act(self, result: ActionResult) -> ActionResult:
        self.actions += 1
        room = self.room
        if room is not None and room.started:
            check_conservation(room)
        return result

    def setup(self):
        self.room_id = self.engine.create_room().data["room_id"]
        for n in range(self.num_players):
            result = self.act(self.engine.join_room(self.room_id, f"Bot {n + 1}"))
            self.player_ids.append(result.data["player_id"])
        started = self.act(self.engine.start_match(self.room_id, self.player_ids[0]))
        if not started.success:
            raise RuntimeError(f"Could not start: {started.error_message}")

    def play_turn(self) -> bool:
        """Play one turn for the seat holding it. Returns True when the hand ended."""
        room = self.room
        seat = room.current_player()

        drawn = self.act(self.engine.draw(self.room_id, seat.id, SOURCE_PILE))
        if not drawn.success:
            if drawn.error_code != EMPTY:
                raise RuntimeError(f"Draw failed: {drawn.error_message}")
            self.act(self.engine.draw(self.room_id, seat.id, "discard"))

        quota = get_meld_quota(room.round_number)
        while len(seat.laid_groups) < quota.groups:
            indices = find_group(seat.hand)
            if not indices or len(indices) >= len(seat.hand):
                break
            if not self.act(self.engine.lay_group(self.room_id, seat.id, indices)).success:
                break
        while len(seat.laid_runs) < quota.runs:
            indices = find_run(seat.hand)
            if not indices or len(indices) >= len(seat.hand):
                break
            if not self.act(self.engine.lay_run(self.room_id, seat.id, indices)).success:
                break

        while seat.laid_complete and len(seat.hand) > 1:
            hit = find_hit(room, seat)
            if hit is None:
                break
            target_id, meld_type, meld_index, position = hit
            result = self.act(self.engine.hit(
                self.room_id, seat.id, target_id, meld_type, meld_index, [position]
            ))
            if not result.success:
                break

        discarded = self.act(self.engine.discard(self.room_id, seat.id, choose_discard(seat.hand)))
        if discarded.data.get("went_out"):
            return True
        self.act(self.engine.end_turn(self.room_id, seat.id))
        return False

    def run(self) -> Dict[str, object]:
        self.setup()
        hands_played = 0
        stalled = False
        while True:
            for _ in range(self.max_turns):
                if self.play_turn():
                    break
            else:
                stalled = True
                break
            hands_played += 1
            room = self.room
            logger.info(f"Round {room.round_number} done: {[(s.name, s.total_score) for s in room.players]}")
            result = self.act(self.engine.next_hand(self.room_id, self.player_ids[0]))
            if result.data.get("match_complete"):
                break

        room = self.room
        return {
            "room_id": self.room_id,
            "hands_played": hands_played,
            "complete": hands_played == NUM_ROUNDS and not stalled,
            "actions": self.actions,
            "scores": {s.name: s.total_score for s in room.players},
        }


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Headless Rummy self-play")
    parser.add_argument("--players", type=int, default=3, help="Number of seats (2-6)")
    parser.add_argument("--seed", type=int, default=None, help="Shuffle seed")
    parser.add_argument("--max-turns", type=int, default=400, help="Turn cap per hand")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    sim = SelfPlay(players=args.players, seed=args.seed, max_turns=args.max_turns)
    try:
        summary = sim.run()
    except ConservationError as e:
        logger.error(str(e))
        return 1
    finally:
        sim.close()

    print(f"Played {summary['hands_played']} hands in {summary['actions']} actions")
    for name, total in sorted(summary["scores"].items(), key=lambda kv: kv[1]):
        print(f"  {name}: {total}")
    return 0 if summary["complete"] else 2


if __name__ == "__main__":
    sys.exit(main())
