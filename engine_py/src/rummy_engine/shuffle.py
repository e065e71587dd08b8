"""
Deck construction, shuffling and dealing utilities.
"""

import random
from typing import Iterable, List, Optional

from .constants import DECKS_PER_SHOE, JOKER, JOKERS_PER_DECK, RANKS, SUITS
from .models import Card, PlayerSeat


def create_standard_deck(use_jokers: bool = True) -> List[Card]:
    """Create a single 52-card deck, plus two Jokers when enabled."""
    deck = []

    for suit in SUITS:
        for rank in RANKS:
            deck.append(Card(suit, rank))

    if use_jokers:
        deck.extend(Card(None, JOKER) for _ in range(JOKERS_PER_DECK))

    return deck


def create_double_deck(use_jokers: bool = True) -> List[Card]:
    """Create the 108-card shoe the game is dealt from."""
    deck = []
    for _ in range(DECKS_PER_SHOE):
        deck.extend(create_standard_deck(use_jokers))
    return deck


class Deck:
    """Ordered, mutable card source. The top of the deck is the last element."""

    def __init__(self, cards: Iterable[Card]):
        self._cards = list(cards)

    def shuffle(self, rng: Optional[random.Random] = None):
        (rng or random).shuffle(self._cards)

    def draw(self) -> Optional[Card]:
        """Remove and return the top card, or None when the deck is exhausted."""
        if not self._cards:
            return None
        return self._cards.pop()

    def size(self) -> int:
        return len(self._cards)

    def to_list(self) -> List[Card]:
        return list(self._cards)

    def __len__(self) -> int:
        return len(self._cards)


def deal_cards(deck: Deck, players: List[PlayerSeat], count: int):
    """
    Deal ``count`` cards to every seat, one at a time in seat order.

    Dealing stops early for a seat only if the deck runs out, which cannot
    happen with a full shoe and at most six seats.
    """
    for _ in range(count):
        for player in players:
            card = deck.draw()
            if card is None:
                return
            player.hand.append(card)
