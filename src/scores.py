# scores.py
# Score persistence collaborators: a leaderboard of submitted scores and a
# player's local top-N score history. Neither has any say in game progression.

import heapq
import json
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Deque, Dict, List, Optional

from config import LEADERBOARD_LIMIT, LEADERBOARD_MAX_RECORDS, SCORE_HISTORY_LIMIT

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ScoreEntry:
    """A finishing score and when it was recorded (epoch milliseconds)."""
    value: int
    timestamp: int


class ScoreHistory:
    """
    A capped, descending list of a player's own finishing scores.

    New scores are inserted, the list is re-sorted highest first and trimmed to
    `limit` entries. When `path` is given the list is stored there as JSON.
    """

    def __init__(self, path: Optional[Path] = None, limit: int = SCORE_HISTORY_LIMIT):
        if limit <= 0:
            raise ValueError("History limit must be a positive integer.")
        self.path = Path(path) if path is not None else None
        self.limit = limit
        self._entries: List[ScoreEntry] = []

    @property
    def entries(self) -> List[ScoreEntry]:
        return list(self._entries)

    def load(self) -> List[ScoreEntry]:
        """
        Reads the stored history. A missing file means an empty history.
        Raises:
            ValueError: If the file exists but does not hold a list of score entries.
        """
        if self.path is None or not self.path.exists():
            self._entries = []
            return self.entries

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            entries = [ScoreEntry(value=int(item["value"]), timestamp=int(item["timestamp"])) for item in raw]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Malformed score history file {self.path}: {e}") from e

        self._entries = sorted(entries, key=lambda entry: entry.value, reverse=True)[: self.limit]
        return self.entries

    def add(self, score: int, timestamp: Optional[int] = None) -> Optional[ScoreEntry]:
        """
        Records a finishing score. Scores of zero or less are not kept.
        Returns:
            The stored entry, or None when the score was not recorded.
        """
        if score <= 0:
            return None

        entry = ScoreEntry(value=score, timestamp=timestamp if timestamp is not None else _now_ms())
        updated = self._entries + [entry]
        updated.sort(key=lambda item: item.value, reverse=True)
        self._entries = updated[: self.limit]
        self._save()
        return entry

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps([asdict(entry) for entry in self._entries]), encoding="utf-8")


@dataclass(frozen=True)
class LeaderboardRecord:
    player_id: str
    score: int
    created_at: datetime


@dataclass(frozen=True)
class PlayerProfile:
    player_id: str
    username: str
    updated_at: datetime


class Leaderboard:
    """
    In-process stand-in for a remote score table, with per-day and all-time rankings.

    Only the most recent `max_records` submissions are retained; older ones are dropped.
    """

    def __init__(self, max_records: int = LEADERBOARD_MAX_RECORDS):
        if max_records <= 0:
            raise ValueError("max_records must be a positive integer.")
        self._records: Deque[LeaderboardRecord] = deque(maxlen=max_records)
        self._players: Dict[str, PlayerProfile] = {}
        self._lock = threading.Lock()

    def submit_score(self, player_id: str, score: int, created_at: Optional[datetime] = None) -> LeaderboardRecord:
        """
        Appends a finishing score for a player.
        Raises:
            ValueError: If player_id is empty or score is negative.
        """
        if not player_id:
            raise ValueError("A player id is required to submit a score.")
        if score < 0:
            raise ValueError("Score must be a non-negative integer.")

        record = LeaderboardRecord(
            player_id=player_id,
            score=score,
            created_at=created_at if created_at is not None else datetime.now(timezone.utc),
        )
        with self._lock:
            self._records.append(record)
        logger.info("Recorded score %d for player %s", score, player_id)
        return record

    def upsert_player(self, player_id: str, username: str) -> PlayerProfile:
        if not player_id or not username:
            raise ValueError("Both player id and username are required.")
        profile = PlayerProfile(player_id=player_id, username=username, updated_at=datetime.now(timezone.utc))
        with self._lock:
            self._players[player_id] = profile
        return profile

    def get_player(self, player_id: str) -> Optional[PlayerProfile]:
        with self._lock:
            return self._players.get(player_id)

    def all_time_scores(self, limit: int = LEADERBOARD_LIMIT) -> List[LeaderboardRecord]:
        """Top scores of all time, highest first (a player may appear several times)."""
        with self._lock:
            return heapq.nlargest(limit, self._records, key=lambda record: record.score)

    def daily_scores(self, day: Optional[date] = None, limit: int = LEADERBOARD_LIMIT) -> List[LeaderboardRecord]:
        """
        Best score per player for one UTC day (today by default), highest first.
        """
        day = day if day is not None else datetime.now(timezone.utc).date()
        with self._lock:
            todays = [r for r in self._records if r.created_at.astimezone(timezone.utc).date() == day]

        best: Dict[str, LeaderboardRecord] = {}
        for record in todays:
            current = best.get(record.player_id)
            if current is None or record.score > current.score:
                best[record.player_id] = record

        ranked = sorted(best.values(), key=lambda record: record.score, reverse=True)
        return ranked[:limit]
