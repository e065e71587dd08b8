# engine_py/src/rummy_engine/errors.py

class GameError(Exception):
    """Base exception for game-related errors."""
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")

# Lookup failures
NOT_FOUND = "not_found"

# Authority
NOT_PLAYER = "not_player"
TURN = "turn"

# Phase order within a turn
ALREADY_DRAWN = "already_drawn"
NEED_DRAW = "need_draw"
NEED_DISCARD = "need_discard"
NEED_LAID = "need_laid"
ALREADY_DISCARDED = "already_discarded"

# Melds
COUNT = "count"
LIMIT = "limit"
INVALID = "invalid"

# Piles
EMPTY = "empty"

# Room lifecycle
IN_PROGRESS = "in_progress"
FULL = "full"
STARTED = "started"
NOT_STARTED = "not_started"
HAND_COMPLETE = "hand_complete"
NEED_PLAYERS = "need_players"
NOT_EMPTY = "not_empty"

INTERNAL_ERROR = "internal"

# Helper function to raise common errors
def raise_error(code: str, message: str):
    raise GameError(code, message)
