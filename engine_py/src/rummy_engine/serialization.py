"""
State serialization and sanitization utilities.
"""

import copy
from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Optional

from .comparator import arrange_group, arrange_run
from .constants import NUM_ROUNDS
from .models import Card, PlayerSeat, RecentMatch, RoomState
from .rules import get_deal_size, get_meld_quota


def serialize_card(card: Card) -> Dict[str, Any]:
    return {
        "id": card.id,
        "suit": card.suit,
        "rank": card.rank,
        "wild": card.is_wild,
        "label": str(card),
    }


def serialize_cards(cards: Iterable[Card]) -> List[Dict[str, Any]]:
    return [serialize_card(card) for card in cards]


def _serialize_seat(seat: PlayerSeat, index: int) -> Dict[str, Any]:
    return {
        "id": seat.id,
        "name": seat.name,
        "seat": index,
        "hand": serialize_cards(seat.hand),
        "hand_count": len(seat.hand),
        "has_drawn": seat.has_drawn,
        "did_discard": seat.did_discard,
        "laid_groups": [serialize_cards(arrange_group(meld)) for meld in seat.laid_groups],
        "laid_runs": [serialize_cards(arrange_run(meld)) for meld in seat.laid_runs],
        "laid_complete": seat.laid_complete,
        "total_score": seat.total_score,
        "ready": seat.ready,
        "connected": seat.connected,
    }


def serialize_room(room: RoomState) -> Dict[str, Any]:
    """
    Full snapshot of a room as plain dicts and lists.

    Every hand and both piles are included; use ``sanitize_state`` before
    sending a snapshot to a particular viewer. Melds are in display order.
    """
    current = room.current_player()
    quota = get_meld_quota(room.round_number)
    return {
        "id": room.id,
        "version": room.version,
        "round": room.round_number,
        "num_rounds": NUM_ROUNDS,
        "deal_size": get_deal_size(room.round_number),
        "meld_quota": {"groups": quota.groups, "runs": quota.runs},
        "started": room.started,
        "hand_complete": room.hand_complete,
        "closing": room.closing,
        "end_reason": room.end_reason,
        "current_index": room.current_index,
        "current_player_id": current.id if current else None,
        "players": [_serialize_seat(seat, i) for i, seat in enumerate(room.players)],
        "spectators": [{"id": s.id, "name": s.name} for s in room.spectators],
        "draw_pile": serialize_cards(room.draw_pile),
        "discard_pile": serialize_cards(room.discard_pile),
        "last_scores": [asdict(line) for line in room.last_scores],
        "turn_seconds": room.turn_seconds,
        "turn_deadline": room.turn_deadline,
        "lobby_deadline": room.lobby_deadline,
        "match_limit_minutes": room.match_limit_minutes,
        "match_deadline": room.match_deadline,
        "game_log": list(room.game_log),
    }


def sanitize_state(state: Dict[str, Any], viewer_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Sanitize a room snapshot for transmission to one viewer.

    Args:
        state: Snapshot produced by ``serialize_room``
        viewer_id: Seat id of the viewer; spectators and anonymous viewers
            pass None or their spectator id and see no hands

    Returns:
        Copy of the snapshot where other seats' hands are reduced to counts,
        the draw pile to a count and the discard pile to its top card
    """
    sanitized = copy.deepcopy(state)

    for player in sanitized["players"]:
        if player["id"] != viewer_id:
            del player["hand"]

    draw_pile = sanitized.pop("draw_pile")
    discard_pile = sanitized.pop("discard_pile")
    sanitized["draw_count"] = len(draw_pile)
    sanitized["discard_count"] = len(discard_pile)
    sanitized["discard_top"] = discard_pile[-1] if discard_pile else None
    sanitized["viewer_id"] = viewer_id
    return sanitized


def room_summary(room: RoomState) -> Dict[str, Any]:
    """Get public information about a room for the room directory."""
    return {
        "id": room.id,
        "round": room.round_number,
        "started": room.started,
        "hand_complete": room.hand_complete,
        "closing": room.closing,
        "players": [
            {"name": seat.name, "total_score": seat.total_score}
            for seat in room.players
        ],
        "spectators": len(room.spectators),
    }


def serialize_recent(matches: Iterable[RecentMatch]) -> List[Dict[str, Any]]:
    return [
        {
            "id": match.id,
            "ended": match.ended,
            "reason": match.reason,
            "players": [dict(p) for p in match.players],
        }
        for match in matches
    ]
