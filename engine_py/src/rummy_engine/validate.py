"""
Meld validation: groups and runs, with wild-card substitution.
"""

from typing import Optional, Sequence

from .comparator import rank_value, split_wilds
from .constants import (
    MAX_RUN_LENGTH, MAX_RUN_ORDINAL, MELD_GROUP, MELD_RUN, MIN_GROUP_LENGTH,
    MIN_RUN_LENGTH, MIN_RUN_ORDINAL,
)
from .models import Card


def is_valid_group(cards: Sequence[Card]) -> bool:
    """
    Check whether cards form a group: at least three cards, every non-wild
    card sharing one rank. Any number of wilds is allowed, including a group
    made only of wilds.
    """
    if len(cards) < MIN_GROUP_LENGTH:
        return False
    natural, _ = split_wilds(cards)
    return len({c.rank for c in natural}) <= 1


def _run_problem(cards: Sequence[Card]) -> Optional[str]:
    """Evaluate the run rules in order and describe the first one broken."""
    if len(cards) < MIN_RUN_LENGTH:
        return f"Pick at least {MIN_RUN_LENGTH} cards for a run"
    if len(cards) > MAX_RUN_LENGTH:
        return f"Runs cannot be longer than {MAX_RUN_LENGTH} cards"

    natural, wild = split_wilds(cards)
    if not natural:
        return None  # all wilds, nothing to line up

    if len({c.suit for c in natural}) > 1:
        return "All non-wild cards must be the same suit"

    values = sorted(rank_value(c.rank) for c in natural)
    if any(v < MIN_RUN_ORDINAL or v > MAX_RUN_ORDINAL for v in values):
        return "Runs use ranks 3 through A (A is high)"
    if len(set(values)) != len(values):
        return "Duplicate ranks among non-wilds"

    first, last = values[0], values[-1]
    needed_wilds = sum(b - a - 1 for a, b in zip(values, values[1:]))
    remaining_wilds = len(wild) - needed_wilds
    if remaining_wilds < 0:
        return "Not enough wilds to fill the gaps"

    max_extend = (first - MIN_RUN_ORDINAL) + (MAX_RUN_ORDINAL - last)
    if remaining_wilds > max_extend:
        return "Too many wilds left over to extend the sequence"

    span = last - first + 1
    if span + remaining_wilds != len(cards):
        return "Wilds do not match run length"
    return None


def is_valid_run(cards: Sequence[Card]) -> bool:
    """Check whether cards form a run of one suit, 4 to 12 cards, ranks 3..A."""
    return _run_problem(cards) is None


def why_run_invalid(cards: Sequence[Card]) -> Optional[str]:
    """
    Explain why cards are not a valid run.

    Returns:
        Human-readable reason for the first failing rule, or None if the cards
        form a valid run.
    """
    return _run_problem(cards)


def is_valid_meld(meld_type: str, cards: Sequence[Card]) -> bool:
    if meld_type == MELD_GROUP:
        return is_valid_group(cards)
    if meld_type == MELD_RUN:
        return is_valid_run(cards)
    return False


def why_meld_invalid(meld_type: str, cards: Sequence[Card]) -> Optional[str]:
    """Reason a meld of the given type is invalid, or None if it is valid."""
    if meld_type == MELD_RUN:
        return why_run_invalid(cards)
    if meld_type == MELD_GROUP:
        if is_valid_group(cards):
            return None
        if len(cards) < MIN_GROUP_LENGTH:
            return f"Pick at least {MIN_GROUP_LENGTH} cards for a group"
        return "All non-wild cards in a group must share one rank"
    return f"Unknown meld type: {meld_type}"
