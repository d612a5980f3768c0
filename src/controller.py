# controller.py
# Turn-by-turn game state on top of the stateless core: the win prompt,
# "keep playing", game over, and handing the final score to the score stores.

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

import core
from config import GRID_SIZE, WINNING_TILE
from core import Direction, Grid, MoveOutcome
from scores import Leaderboard, ScoreHistory

logger = logging.getLogger(__name__)


class GamePhase(Enum):
    """Where a game is in its lifecycle."""
    PLAYING = "playing"
    WON_PENDING_DECISION = "won_pending_decision"
    WON_KEEP_PLAYING = "won_keep_playing"
    GAME_OVER = "game_over"


_ACCEPTS_MOVES = (GamePhase.PLAYING, GamePhase.WON_KEEP_PLAYING)
_WIN_PHASES = (GamePhase.WON_PENDING_DECISION, GamePhase.WON_KEEP_PLAYING)


class InvalidTransition(ValueError):
    """Raised when a transition is requested from a phase that does not allow it."""


@dataclass(frozen=True)
class GameState:
    """
    Snapshot of one game. `has_won` records that the winning tile was reached
    at some point and survives into GAME_OVER.
    """
    grid: Grid
    score: int = 0
    phase: GamePhase = GamePhase.PLAYING
    has_won: bool = False

    def __post_init__(self):
        if self.phase in _WIN_PHASES and not self.has_won:
            raise ValueError(f"Phase {self.phase.value} requires the winning tile to have been reached.")

    @property
    def game_over(self) -> bool:
        return self.phase is GamePhase.GAME_OVER

    @property
    def won(self) -> bool:
        return self.has_won

    @property
    def keep_playing(self) -> bool:
        return self.phase is GamePhase.WON_KEEP_PLAYING

    @property
    def accepts_moves(self) -> bool:
        return self.phase in _ACCEPTS_MOVES


@dataclass(frozen=True)
class TurnResult:
    """
    What one move command did. `outcome` is None when the command was ignored
    because the game was suspended; `finished` is True only on the turn that
    entered GAME_OVER.
    """
    state: GameState
    outcome: Optional[MoveOutcome]
    accepted: bool
    finished: bool = False


# --- Transition functions ---

def new_game(rng=None, size: int = GRID_SIZE) -> GameState:
    return GameState(grid=core.initialize(size, rng=rng))


def play_turn(state: GameState, direction: Direction, rng=None, winning_value: int = WINNING_TILE) -> TurnResult:
    """
    Applies one move command to a game.
    Args:
        state: The current game.
        direction: The move to make.
        rng: Source of randomness for the spawned tile.
        winning_value: Tile value that triggers the win prompt.
    Returns:
        TurnResult: The next state and the engine outcome.
    """
    if not state.accepts_moves:
        return TurnResult(state=state, outcome=None, accepted=False)

    outcome = core.apply_move(state.grid, direction, winning_value)
    if not outcome.changed:
        return TurnResult(state=state, outcome=outcome, accepted=False)

    grid = core.place_random_tile(outcome.resulting_grid, rng)
    score = state.score + outcome.score_delta

    # A win on a board that is also stuck still shows the win prompt first.
    if state.phase is GamePhase.PLAYING and outcome.reached_winning_value:
        phase = GamePhase.WON_PENDING_DECISION
    elif not core.has_legal_move(grid):
        phase = GamePhase.GAME_OVER
    else:
        phase = state.phase

    next_state = GameState(
        grid=grid,
        score=score,
        phase=phase,
        has_won=state.has_won or outcome.reached_winning_value,
    )
    return TurnResult(
        state=next_state,
        outcome=outcome,
        accepted=True,
        finished=phase is GamePhase.GAME_OVER,
    )


def keep_playing(state: GameState) -> GameState:
    """
    Continues a won game past the win prompt. A board with no legal move left
    goes straight to GAME_OVER.
    Raises:
        InvalidTransition: If the game is not waiting for the win decision.
    """
    if state.phase is not GamePhase.WON_PENDING_DECISION:
        raise InvalidTransition(f"Cannot keep playing from phase {state.phase.value}.")
    if not core.has_legal_move(state.grid):
        return replace(state, phase=GamePhase.GAME_OVER)
    return replace(state, phase=GamePhase.WON_KEEP_PLAYING)


def stop(state: GameState) -> GameState:
    """
    Ends a won game at the win prompt.
    Raises:
        InvalidTransition: If the game is not waiting for the win decision.
    """
    if state.phase is not GamePhase.WON_PENDING_DECISION:
        raise InvalidTransition(f"Cannot stop from phase {state.phase.value}.")
    return replace(state, phase=GamePhase.GAME_OVER)


# --- Input mapping ---

_INPUT_DIRECTIONS = {
    "w": Direction.UP,
    "a": Direction.LEFT,
    "s": Direction.DOWN,
    "d": Direction.RIGHT,
    "up": Direction.UP,
    "down": Direction.DOWN,
    "left": Direction.LEFT,
    "right": Direction.RIGHT,
    "arrowup": Direction.UP,
    "arrowdown": Direction.DOWN,
    "arrowleft": Direction.LEFT,
    "arrowright": Direction.RIGHT,
}


def parse_direction(raw: str) -> Optional[Direction]:
    """Maps a raw key or word (w/a/s/d, up, ArrowLeft, ...) to a Direction, or None."""
    if not raw:
        return None
    return _INPUT_DIRECTIONS.get(raw.strip().lower())


# --- Session controller ---

class GameController:
    """
    Owns the live game of one session.

    `player_id` is the session's scoring identity; a guest session passes None and
    its scores are only kept in the local history. Score hand-off happens once per
    game, on the transition into GAME_OVER, and can never fail a turn.
    """

    def __init__(
        self,
        rng=None,
        player_id: Optional[str] = None,
        history: Optional[ScoreHistory] = None,
        leaderboard: Optional[Leaderboard] = None,
        winning_value: int = WINNING_TILE,
        state: Optional[GameState] = None,
    ):
        self.rng = rng
        self.player_id = player_id
        self.history = history
        self.leaderboard = leaderboard
        self.winning_value = winning_value
        self._busy = threading.Lock()
        if state is None:
            state = new_game(self.rng)
            logger.info("Started new game")
        self._state = state

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def has_scoring_identity(self) -> bool:
        return bool(self.player_id)

    def move(self, direction: Direction) -> TurnResult:
        """Processes one move command to completion. Commands arriving mid-move are dropped."""
        if not self._busy.acquire(blocking=False):
            logger.debug("Dropped %s: a move is already being processed", direction)
            return TurnResult(state=self._state, outcome=None, accepted=False)
        try:
            result = play_turn(self._state, direction, self.rng, self.winning_value)
            if result.outcome is None:
                logger.debug("Ignored %s while in phase %s", direction, self._state.phase.value)
            elif not result.accepted:
                logger.debug("Move %s did not change the grid", direction)

            self._state = result.state
            if result.accepted and result.state.phase is GamePhase.WON_PENDING_DECISION:
                logger.info("Winning tile reached with score %d", result.state.score)
            if result.finished:
                self._finish()
            return result
        finally:
            self._busy.release()

    def keep_playing(self) -> GameState:
        self._state = keep_playing(self._state)
        if self._state.game_over:
            self._finish()
        else:
            logger.info("Continuing past the winning tile")
        return self._state

    def restart(self) -> GameState:
        """Discards the current game. A game waiting at the win prompt is finalized first."""
        if self._state.phase is GamePhase.WON_PENDING_DECISION:
            self._state = stop(self._state)
            self._finish()
        self._state = new_game(self.rng)
        logger.info("Restarted game")
        return self._state

    def _finish(self) -> None:
        score = self._state.score
        logger.info("Game over with score %d", score)

        if self.history is not None:
            try:
                self.history.add(score)
            except Exception:
                logger.exception("Failed to save score %d to local history", score)

        if self.leaderboard is not None and self.has_scoring_identity and score > 0:
            try:
                self.leaderboard.submit_score(self.player_id, score)
            except Exception:
                logger.exception("Failed to submit score %d for player %s", score, self.player_id)
