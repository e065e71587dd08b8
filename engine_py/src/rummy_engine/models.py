"""Game models and data structures"""

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Union

from .constants import (
    DEFAULT_MATCH_MINUTES, JOKER, SUIT_CODES, SUIT_SYMBOLS, UNBOUNDED_TURN_SECONDS,
    rank_label,
)

Rank = Union[int, Literal['J', 'Q', 'K', 'A', 'JOKER']]


@dataclass(frozen=True)
class Card:
    suit: Optional[str]  # None for a Joker
    rank: Rank

    @property
    def is_joker(self) -> bool:
        return self.rank == JOKER

    @property
    def is_wild(self) -> bool:
        return self.rank == JOKER or self.rank == 2

    @property
    def id(self) -> str:
        if self.is_joker:
            return JOKER
        return f"{self.rank}{SUIT_CODES[self.suit]}"

    def __str__(self) -> str:
        if self.is_joker:
            return 'Joker'
        return f"{rank_label(self.rank)}{SUIT_SYMBOLS[self.suit]}"


@dataclass
class PlayerSeat:
    id: str
    name: str
    hand: List[Card] = field(default_factory=list)
    has_drawn: bool = False
    did_discard: bool = False
    laid_groups: List[List[Card]] = field(default_factory=list)
    laid_runs: List[List[Card]] = field(default_factory=list)
    laid_complete: bool = False
    total_score: int = 0
    ready: bool = False
    connected: bool = True
    token: str = field(default="", repr=False)  # resume secret, never serialized

    def reset_turn_state(self):
        self.has_drawn = False
        self.did_discard = False

    def reset_hand_state(self):
        self.hand = []
        self.reset_turn_state()
        self.laid_groups = []
        self.laid_runs = []
        self.laid_complete = False


@dataclass
class Spectator:
    id: str
    name: str


@dataclass
class ScoreLine:
    player_id: str
    name: str
    hand: int
    total: int


@dataclass
class RecentMatch:
    id: str
    ended: float
    reason: str
    players: List[dict] = field(default_factory=list)  # {'name', 'total_score'}


@dataclass
class RoomState:
    id: str
    version: int = 0
    round_number: int = 1
    players: List[PlayerSeat] = field(default_factory=list)  # seat order == turn order
    current_index: int = 0
    draw_pile: List[Card] = field(default_factory=list)  # top is the last element
    discard_pile: List[Card] = field(default_factory=list)  # top is the last element
    started: bool = False
    hand_complete: bool = False
    last_scores: List[ScoreLine] = field(default_factory=list)
    spectators: List[Spectator] = field(default_factory=list)
    turn_seconds: float = UNBOUNDED_TURN_SECONDS
    turn_deadline: Optional[float] = None
    lobby_deadline: Optional[float] = None
    match_limit_minutes: int = DEFAULT_MATCH_MINUTES
    match_deadline: Optional[float] = None
    closing: bool = False  # teardown scheduled
    end_reason: Optional[str] = None
    turn_serial: int = 0  # bumped whenever a new turn begins
    game_log: List[str] = field(default_factory=list)
    created_at: float = 0.0

    def find_player(self, player_id: Optional[str]) -> Optional[PlayerSeat]:
        return next((p for p in self.players if p.id == player_id), None)

    def find_spectator(self, spectator_id: Optional[str]) -> Optional[Spectator]:
        return next((s for s in self.spectators if s.id == spectator_id), None)

    def seat_index(self, player_id: Optional[str]) -> int:
        return next((i for i, p in enumerate(self.players) if p.id == player_id), -1)

    def current_player(self) -> Optional[PlayerSeat]:
        if not self.players:
            return None
        return self.players[self.current_index]

    @property
    def in_hand(self) -> bool:
        """A hand is being played (Active and not HandComplete)."""
        return self.started and not self.hand_complete
