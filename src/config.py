# config.py
# Game constants and environment-driven settings shared by the engine, the API and the CLI.

import logging
import os
from pathlib import Path

# --- Fixed game configuration ---

GRID_SIZE = 4
WINNING_TILE = 2048
SEED_TILE_COUNT = 2
FOUR_TILE_PROBABILITY = 0.1

SCORE_HISTORY_LIMIT = 10
LEADERBOARD_LIMIT = 100
LEADERBOARD_MAX_RECORDS = 10000

# --- Environment settings ---

LOG_LEVEL = os.environ.get("MERGE2048_LOG_LEVEL", "INFO")
RATE_LIMIT = os.environ.get("MERGE2048_RATE_LIMIT", "100/minute")


def history_path() -> Path:
    """Location of the CLI's local score history file."""
    raw = os.environ.get("MERGE2048_HISTORY_PATH")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".merge2048" / "score-history.json"


def configure_logging(level=None) -> None:
    """
    Configures root logging for an entry point (API or CLI).
    Args:
        level: A logging level name or number. Defaults to MERGE2048_LOG_LEVEL.
    """
    logging.basicConfig(
        level=level if level is not None else LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
