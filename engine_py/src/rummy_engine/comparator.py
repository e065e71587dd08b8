"""
Rank ordinals and cosmetic display ordering for melds.
"""

from typing import Dict, List, Sequence

from .constants import FACE_VALUES, JOKER, MIN_RUN_ORDINAL, suit_index
from .models import Card, Rank


def rank_value(rank: Rank) -> int:
    """Get the run ordinal of a rank (J=11 .. A=14). Jokers have no ordinal."""
    if rank == JOKER:
        return 0
    if rank in FACE_VALUES:
        return FACE_VALUES[rank]
    return int(rank)


def split_wilds(cards: Sequence[Card]):
    """Split cards into (non_wild, wild) lists, preserving order."""
    natural = [c for c in cards if not c.is_wild]
    wild = [c for c in cards if c.is_wild]
    return natural, wild


def display_key(card: Card):
    return rank_value(card.rank), suit_index(card.suit)


def arrange_group(cards: Sequence[Card]) -> List[Card]:
    """Order a group for display: naturals by (rank, suit), then the wilds."""
    natural, wild = split_wilds(cards)
    return sorted(natural, key=display_key) + wild


def arrange_run(cards: Sequence[Card]) -> List[Card]:
    """
    Order a run for display by rebuilding its ascending sequence.

    Wilds fill the holes between naturals first; leftover wilds extend the run
    to the left (down to 3) and then to the right. Selections that are not a
    valid run, and all-wild runs, are returned unchanged.
    """
    from .validate import is_valid_run

    natural, wild = split_wilds(cards)
    if not natural or not is_valid_run(cards):
        return list(cards)

    by_ordinal: Dict[int, Card] = {rank_value(c.rank): c for c in natural}
    first = min(by_ordinal)
    last = max(by_ordinal)
    pool = list(wild)

    middle = []
    for ordinal in range(first, last + 1):
        middle.append(by_ordinal[ordinal] if ordinal in by_ordinal else pool.pop(0))

    left_room = first - MIN_RUN_ORDINAL
    left_count = min(left_room, len(pool))
    left = pool[:left_count]
    right = pool[left_count:]
    return left + middle + right


def run_ordinals(cards: Sequence[Card]) -> List[int]:
    """Ordinal each slot of a displayed run stands for; empty if not a natural run."""
    arranged = arrange_run(cards)
    natural = [c for c in arranged if not c.is_wild]
    if not natural:
        return []
    anchor = arranged.index(natural[0])
    start = rank_value(natural[0].rank) - anchor
    return list(range(start, start + len(arranged)))
