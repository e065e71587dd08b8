"""Game constants and utilities"""

from typing import Dict, List, Optional

JOKER = 'JOKER'
WILD_RANKS = (2, JOKER)

# Canonical suit order, also used to break ties when sorting for display
SUITS = ['Clubs', 'Diamonds', 'Hearts', 'Spades']
SUIT_CODES: Dict[str, str] = {'Clubs': 'C', 'Diamonds': 'D', 'Hearts': 'H', 'Spades': 'S'}
CODE_SUITS: Dict[str, str] = {code: suit for suit, code in SUIT_CODES.items()}
SUIT_SYMBOLS: Dict[str, str] = {'Clubs': '♣', 'Diamonds': '♦', 'Hearts': '♥', 'Spades': '♠'}

RANKS = [2, 3, 4, 5, 6, 7, 8, 9, 10, 'J', 'Q', 'K', 'A']
FACE_VALUES = {'J': 11, 'Q': 12, 'K': 13, 'A': 14}

# Run ordinals (Ace high only)
MIN_RUN_ORDINAL = 3
MAX_RUN_ORDINAL = 14

MIN_GROUP_LENGTH = 3
MIN_RUN_LENGTH = 4
MAX_RUN_LENGTH = 12

DECKS_PER_SHOE = 2
JOKERS_PER_DECK = 2
SHOE_SIZE = DECKS_PER_SHOE * (len(SUITS) * len(RANKS) + JOKERS_PER_DECK)

NUM_ROUNDS = 6

# Seat capacity, applied on every seat-taking path
MAX_SEATS = 6
MIN_PLAYERS = 2

# Timer defaults (seconds)
UNBOUNDED_TURN_SECONDS = 24 * 60 * 60
MIN_TURN_SECONDS = 5
MAX_TURN_SECONDS = 120
LOBBY_TIMEOUT_SECONDS = 120
LOBBY_EXTENSION_SECONDS = 30
DISCONNECT_GRACE_SECONDS = 60
TEARDOWN_GRACE_SECONDS = 15
DEFAULT_MATCH_MINUTES = 30
MIN_MATCH_MINUTES = 10
MAX_MATCH_MINUTES = 120

RECENT_MATCHES_LIMIT = 20
CHAT_MAX_LENGTH = 300
GAME_LOG_LIMIT = 100

# Draw sources
SOURCE_PILE = 'pile'
SOURCE_DISCARD = 'discard'

# Meld types
MELD_GROUP = 'group'
MELD_RUN = 'run'

# Room end reasons
END_FORFEIT = 'forfeit'
END_TIMEOUT = 'timeout'
END_COMPLETE = 'complete'
END_LOBBY_CLOSE = 'lobby_close'
END_LOBBY_TIMEOUT = 'lobby_timeout'


def rank_label(rank) -> str:
    if rank == JOKER:
        return 'Joker'
    return str(rank)


def parse_rank(token: str):
    if token == JOKER:
        return JOKER
    if token in FACE_VALUES:
        return token
    value = int(token)
    if value not in RANKS:
        raise ValueError(f"Invalid rank: {token}")
    return value


def parse_card(card_id: str):
    """Parse a compact card id such as ``'10H'``, ``'QS'`` or ``'JOKER'``."""
    from .models import Card

    if card_id.upper().startswith(JOKER):
        return Card(None, JOKER)
    suit_code = card_id[-1].upper()
    if suit_code not in CODE_SUITS:
        raise ValueError(f"Invalid suit in card id: {card_id}")
    return Card(CODE_SUITS[suit_code], parse_rank(card_id[:-1].upper()))


def parse_cards(card_ids: List[str]) -> list:
    return [parse_card(card_id) for card_id in card_ids]


def suit_index(suit: Optional[str]) -> int:
    if suit is None:
        return len(SUITS)
    return SUITS.index(suit)
