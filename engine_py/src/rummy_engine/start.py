#!/usr/bin/env python3
"""Run the Rummy game server under uvicorn.

Environment:
    HOST, PORT        bind address (default 0.0.0.0:8000)
    RELOAD            "true" to restart on code changes
    LOG_LEVEL         uvicorn and app log level (default info)
    RUMMY_*           room rule overrides, e.g. RUMMY_TURN_TIMEOUT=45
"""

import os
import sys

import uvicorn
from pydantic import ValidationError

from .rules import load_rules_from_env


def main():
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))

    # Validate RUMMY_* before uvicorn imports the app
    try:
        rules = load_rules_from_env()
    except ValidationError as e:
        print(f"Invalid RUMMY_* setting: {e}", file=sys.stderr)
        sys.exit(2)

    print(f"Rummy game server on {host}:{port} "
          f"({rules.min_players}-{rules.max_players} seats, "
          f"{rules.match_limit_minutes} min match limit)")
    print(f"WebSocket endpoint: ws://{host}:{port}/ws")

    uvicorn.run(
        "rummy_engine.main:app",
        host=host,
        port=port,
        reload=os.getenv("RELOAD", "false").lower() == "true",
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
