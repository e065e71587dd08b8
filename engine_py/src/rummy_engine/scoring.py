"""
End-of-hand penalty scoring.
"""

from typing import Iterable, List

from .constants import JOKER
from .models import Card, PlayerSeat, ScoreLine

# Penalty points per card left in hand
JOKER_POINTS = 50
TWO_POINTS = 20
ACE_POINTS = 15
TEN_POINTS = 10
FACE_POINTS = 10
LOW_POINTS = 5


def card_points(card: Card) -> int:
    """Get the penalty value of a single card."""
    if card.rank == JOKER:
        return JOKER_POINTS
    if card.rank == 2:
        return TWO_POINTS
    if card.rank == 'A':
        return ACE_POINTS
    if card.rank in ('J', 'Q', 'K'):
        return FACE_POINTS
    if card.rank == 10:
        return TEN_POINTS
    return LOW_POINTS


def score_hand(cards: Iterable[Card]) -> int:
    """Sum the penalty points of the cards left in a hand. Lower is better."""
    return sum(card_points(card) for card in cards)


def score_seats(players: List[PlayerSeat]) -> List[ScoreLine]:
    """
    Score every seat's remaining hand and add it to the running total.

    Args:
        players: Seats in turn order

    Returns:
        One ScoreLine per seat, in the same order
    """
    lines = []
    for player in players:
        points = score_hand(player.hand)
        player.total_score += points
        lines.append(ScoreLine(
            player_id=player.id,
            name=player.name,
            hand=points,
            total=player.total_score,
        ))
    return lines


def forfeit_scores(players: List[PlayerSeat]) -> List[ScoreLine]:
    """Credit every remaining seat a 0-point hand; totals are left as they are."""
    return [
        ScoreLine(player_id=p.id, name=p.name, hand=0, total=p.total_score)
        for p in players
    ]


def standings(players: List[PlayerSeat]) -> List[dict]:
    """Final standings, lowest total first."""
    ordered = sorted(players, key=lambda p: p.total_score)
    return [{'name': p.name, 'total_score': p.total_score} for p in ordered]
