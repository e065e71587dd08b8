"""
Round configuration and room rule settings.
"""

import os
from typing import NamedTuple

from pydantic import BaseModel, Field, field_validator

from .constants import (
    CHAT_MAX_LENGTH, DEFAULT_MATCH_MINUTES, DISCONNECT_GRACE_SECONDS,
    GAME_LOG_LIMIT, LOBBY_EXTENSION_SECONDS, LOBBY_TIMEOUT_SECONDS,
    MAX_MATCH_MINUTES, MAX_SEATS, MAX_TURN_SECONDS, MIN_MATCH_MINUTES,
    MIN_PLAYERS, MIN_TURN_SECONDS, RECENT_MATCHES_LIMIT,
    TEARDOWN_GRACE_SECONDS, UNBOUNDED_TURN_SECONDS,
)


class MeldQuota(NamedTuple):
    groups: int
    runs: int


DEAL_SIZES = {1: 7, 2: 8, 3: 9, 4: 10, 5: 11, 6: 12}
DEFAULT_DEAL_SIZE = 7

MELD_QUOTAS = {
    1: MeldQuota(groups=2, runs=0),
    2: MeldQuota(groups=1, runs=1),
    3: MeldQuota(groups=0, runs=2),
    4: MeldQuota(groups=3, runs=0),
    5: MeldQuota(groups=2, runs=1),
    6: MeldQuota(groups=1, runs=2),
}
NO_QUOTA = MeldQuota(groups=0, runs=0)


def get_deal_size(round_number: int) -> int:
    """Cards dealt to every seat at the start of a round."""
    return DEAL_SIZES.get(round_number, DEFAULT_DEAL_SIZE)


def get_meld_quota(round_number: int) -> MeldQuota:
    """Minimum groups and runs a seat must lay before hitting. Unknown rounds need nothing."""
    return MELD_QUOTAS.get(round_number, NO_QUOTA)


def quota_met(round_number: int, groups_laid: int, runs_laid: int) -> bool:
    quota = get_meld_quota(round_number)
    return groups_laid >= quota.groups and runs_laid >= quota.runs


class RuleConfig(BaseModel):
    """Configuration for room capacity, timers and limits."""

    min_players: int = Field(
        default=MIN_PLAYERS,
        ge=MIN_PLAYERS,
        le=MAX_SEATS,
        description="Minimum number of seated players required to start"
    )
    max_players: int = Field(
        default=MAX_SEATS,
        ge=MIN_PLAYERS,
        le=MAX_SEATS,
        description="Seat capacity, applied to every way of taking a seat"
    )
    turn_timeout: float = Field(
        default=UNBOUNDED_TURN_SECONDS,
        gt=0,
        description="Default turn length in seconds (effectively unbounded)"
    )
    min_turn_timeout: int = Field(default=MIN_TURN_SECONDS, ge=1)
    max_turn_timeout: int = Field(default=MAX_TURN_SECONDS, ge=1)
    match_limit_minutes: int = Field(
        default=DEFAULT_MATCH_MINUTES,
        ge=MIN_MATCH_MINUTES,
        le=MAX_MATCH_MINUTES,
        description="Default match duration limit in minutes"
    )
    min_match_minutes: int = Field(default=MIN_MATCH_MINUTES, ge=1)
    max_match_minutes: int = Field(default=MAX_MATCH_MINUTES, ge=1)
    lobby_timeout: float = Field(
        default=LOBBY_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds an idle lobby waits before it is checked"
    )
    lobby_extension: float = Field(
        default=LOBBY_EXTENSION_SECONDS,
        gt=0,
        description="Default seconds added by an extend request"
    )
    disconnect_grace: float = Field(
        default=DISCONNECT_GRACE_SECONDS,
        gt=0,
        description="Seconds a dropped seat is held before it is vacated"
    )
    teardown_grace: float = Field(
        default=TEARDOWN_GRACE_SECONDS,
        ge=0,
        description="Seconds a finished room stays visible before it closes"
    )
    recent_matches_limit: int = Field(default=RECENT_MATCHES_LIMIT, ge=1)
    chat_max_length: int = Field(default=CHAT_MAX_LENGTH, ge=1)
    game_log_limit: int = Field(default=GAME_LOG_LIMIT, ge=1)

    @field_validator('max_players')
    @classmethod
    def validate_max_players(cls, v, info):
        """Validate maximum players isn't below the minimum."""
        min_players = info.data.get('min_players', MIN_PLAYERS)
        if v < min_players:
            raise ValueError(f'max_players ({v}) must be >= min_players ({min_players})')
        return v

    @field_validator('max_turn_timeout')
    @classmethod
    def validate_turn_bounds(cls, v, info):
        low = info.data.get('min_turn_timeout', MIN_TURN_SECONDS)
        if v < low:
            raise ValueError(f'max_turn_timeout ({v}) must be >= min_turn_timeout ({low})')
        return v

    @field_validator('max_match_minutes')
    @classmethod
    def validate_match_bounds(cls, v, info):
        low = info.data.get('min_match_minutes', MIN_MATCH_MINUTES)
        if v < low:
            raise ValueError(f'max_match_minutes ({v}) must be >= min_match_minutes ({low})')
        return v

    def validate_player_count(self, player_count: int) -> bool:
        """Check if a player count is valid for starting a match."""
        return self.min_players <= player_count <= self.max_players

    def clamp_turn_seconds(self, seconds: float) -> float:
        return max(self.min_turn_timeout, min(self.max_turn_timeout, seconds))

    def clamp_match_minutes(self, minutes) -> int:
        if not minutes:
            return self.match_limit_minutes
        return max(self.min_match_minutes, min(self.max_match_minutes, int(minutes)))


# Default configuration instance
default_rules = RuleConfig()


def create_rules(**overrides) -> RuleConfig:
    """Create a RuleConfig with optional overrides."""
    config_dict = default_rules.model_dump()
    config_dict.update(overrides)
    return RuleConfig(**config_dict)


ENV_PREFIX = "RUMMY_"


def load_rules_from_env(environ=None) -> RuleConfig:
    """
    Build a RuleConfig from ``RUMMY_*`` environment variables.

    ``RUMMY_TURN_TIMEOUT=30`` overrides ``turn_timeout`` and so on; unknown
    variables are ignored and values are coerced by the model.
    """
    environ = os.environ if environ is None else environ
    overrides = {}
    for name in RuleConfig.model_fields:
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return create_rules(**overrides)
