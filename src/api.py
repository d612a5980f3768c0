import logging
import random
from datetime import date, datetime
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

import config
import controller
import core
from scores import Leaderboard, LeaderboardRecord

config.configure_logging()
logger = logging.getLogger(__name__)

# Initialize the rate limiter
limiter = Limiter(key_func=get_remote_address)
app = FastAPI(
    title="2048 Game API",
    description="A stateless API for playing the 2048 game. "\
                "Manage your game state (board, score, phase) on the client side.",
    version="1.0.0"
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_leaderboard = Leaderboard()


def get_leaderboard() -> Leaderboard:
    return _leaderboard

# --- Pydantic Models for API requests and responses ---

class NewGameSettings(BaseModel):
    """Settings for creating a new game."""
    win_tile: int = Field(
        default=config.WINNING_TILE,
        gt=2,
        description="The tile value to achieve for winning the game (e.g., 2048)."
    )
    seed: Optional[int] = Field(
        default=None,
        description="Optional seed for the starting tiles, for reproducible games."
    )

class GameStateData(BaseModel):
    """Represents the complete state of a game instance."""
    board: List[List[int]] = Field(..., description="The N x N game board, represented as a list of lists.")
    score: int = Field(..., ge=0, description="Current score of the game.")
    phase: controller.GamePhase = Field(
        ...,
        description="Current phase (playing, won_pending_decision, won_keep_playing, game_over)."
    )
    has_won: bool = Field(..., description="True once the winning tile has been reached in this game.")
    win_tile: int = Field(..., gt=2, description="The tile value required to win this game instance.")
    board_size: int = Field(..., gt=0, description="The dimension N of the N x N board.")


class GameStateRequest(BaseModel):
    """A client-held game state sent back for a transition."""
    board: List[List[int]] = Field(..., description="Current N x N game board state.")
    score: int = Field(..., ge=0, description="Current score.")
    phase: controller.GamePhase = Field(default=controller.GamePhase.PLAYING)
    has_won: bool = Field(default=False)
    win_tile: int = Field(default=config.WINNING_TILE, gt=2, description="The win condition tile for this game instance.")
    player_id: Optional[str] = Field(
        default=None,
        description="Scoring identity of the player. Guests omit it and their scores are not submitted."
    )


class MoveRequestData(GameStateRequest):
    """Data required to make a move."""
    direction: core.Direction = Field(..., description="Direction of the move (up, down, left, right).")


class MergeEventData(BaseModel):
    row: int
    col: int
    value: int


class MoveResponseData(GameStateData):
    """Response after a move, including the new game state and move effectiveness."""
    move_was_effective: bool = Field(
        ...,
        description="True if the move resulted in a change to the board state, False otherwise."
    )
    score_delta: int = Field(default=0, ge=0, description="Score gained by this move.")
    merge_events: List[MergeEventData] = Field(default_factory=list, description="Merges in discovery order.")
    message: Optional[str] = Field(
        default=None,
        description="An optional message, e.g., if a move was ignored, game ended, or other info."
    )


class PlayerProfileRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)


class PlayerProfileData(BaseModel):
    player_id: str
    username: str
    updated_at: datetime


class LeaderboardEntryData(BaseModel):
    rank: int
    player_id: str
    username: Optional[str] = None
    score: int
    created_at: datetime

# --- Helpers ---

def _state_from_request(data: GameStateRequest) -> controller.GameState:
    try:
        grid = core.to_grid(data.board)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid board structure in request: {str(e)}")
    if len(grid) != config.GRID_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid board structure in request: board must be {config.GRID_SIZE}x{config.GRID_SIZE}."
        )
    try:
        return controller.GameState(grid=grid, score=data.score, phase=data.phase, has_won=data.has_won)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid game state in request: {str(e)}")


def _state_data(state: controller.GameState, win_tile: int) -> GameStateData:
    return GameStateData(
        board=[list(row) for row in state.grid],
        score=state.score,
        phase=state.phase,
        has_won=state.has_won,
        win_tile=win_tile,
        board_size=len(state.grid),
    )


def _submit_score(leaderboard: Leaderboard, player_id: str, score: int) -> None:
    try:
        leaderboard.submit_score(player_id, score)
    except Exception:
        logger.exception("Failed to submit score %d for player %s", score, player_id)


def _ranked(leaderboard: Leaderboard, records: List[LeaderboardRecord]) -> List[LeaderboardEntryData]:
    entries = []
    for rank, record in enumerate(records, start=1):
        profile = leaderboard.get_player(record.player_id)
        entries.append(LeaderboardEntryData(
            rank=rank,
            player_id=record.player_id,
            username=profile.username if profile else None,
            score=record.score,
            created_at=record.created_at,
        ))
    return entries

# --- API Endpoints ---

@app.post("/game/new", response_model=GameStateData, summary="Start a New 2048 Game")
@limiter.limit(config.RATE_LIMIT)
async def start_new_game(request: Request, settings: NewGameSettings):
    """
    Initializes a new 2048 game.

    - **win_tile**: Tile value to reach to win (e.g., 2048). Default is 2048.
    - **seed**: Optional seed for the two starting tiles.

    Returns the initial game state: a 4x4 board with two random tiles,
    score 0 and phase `playing`.
    """
    try:
        rng = random.Random(settings.seed) if settings.seed is not None else None
        state = controller.new_game(rng)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Unexpected error in /game/new")
        raise HTTPException(status_code=500, detail=f"An unexpected error occurred during game creation: {str(e)}")

    logger.info("Started new game (win tile %d)", settings.win_tile)
    return _state_data(state, settings.win_tile)


@app.post("/game/move", response_model=MoveResponseData, summary="Make a Move in the Game")
@limiter.limit(config.RATE_LIMIT)
async def make_move(request: Request, request_data: MoveRequestData, background_tasks: BackgroundTasks,
                    leaderboard: Leaderboard = Depends(get_leaderboard)):
    """
    Processes a player's move in the game.

    The API will:
    1. Ignore the move if the game is over or waiting for the win decision.
    2. Slide and merge the tiles in the chosen direction.
    3. If the move changed the board, add a new random tile (2 or 4).
    4. Determine the next phase (win prompt, game over, or still playing).

    When the move ends the game and a `player_id` is given, the final score is
    submitted to the leaderboard after the response is sent.
    """
    state = _state_from_request(request_data)

    try:
        result = controller.play_turn(state, request_data.direction, winning_value=request_data.win_tile)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Error processing move: {str(e)}")
    except Exception as e:
        logger.exception("Unexpected error in /game/move")
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while processing the move: {str(e)}")

    message_for_client: Optional[str] = None
    if result.outcome is None:
        message_for_client = f"Move ignored; game is in phase {state.phase.value}."
    elif not result.accepted:
        message_for_client = "Move was not effective; board state unchanged by slide."

    next_state = result.state
    if result.accepted and next_state.phase is controller.GamePhase.WON_PENDING_DECISION:
        message_for_client = "Congratulations! You won! Keep playing or stop."
    elif result.finished:
        message_for_client = "Game Over. No more valid moves."
        logger.info("Game over with score %d", next_state.score)
        if request_data.player_id and next_state.score > 0:
            background_tasks.add_task(_submit_score, leaderboard, request_data.player_id, next_state.score)

    outcome = result.outcome
    return MoveResponseData(
        **_state_data(next_state, request_data.win_tile).model_dump(),
        move_was_effective=result.accepted,
        score_delta=outcome.score_delta if result.accepted else 0,
        merge_events=[MergeEventData(**event._asdict()) for event in outcome.merge_events] if result.accepted else [],
        message=message_for_client
    )


@app.post("/game/keep-playing", response_model=GameStateData, summary="Continue Past the Winning Tile")
@limiter.limit(config.RATE_LIMIT)
async def continue_game(request: Request, request_data: GameStateRequest, background_tasks: BackgroundTasks,
                        leaderboard: Leaderboard = Depends(get_leaderboard)):
    state = _state_from_request(request_data)
    try:
        next_state = controller.keep_playing(state)
    except controller.InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))

    if next_state.game_over and request_data.player_id and next_state.score > 0:
        background_tasks.add_task(_submit_score, leaderboard, request_data.player_id, next_state.score)
    return _state_data(next_state, request_data.win_tile)


@app.post("/game/stop", response_model=GameStateData, summary="End the Game at the Win Prompt")
@limiter.limit(config.RATE_LIMIT)
async def stop_game(request: Request, request_data: GameStateRequest, background_tasks: BackgroundTasks,
                    leaderboard: Leaderboard = Depends(get_leaderboard)):
    state = _state_from_request(request_data)
    try:
        next_state = controller.stop(state)
    except controller.InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))

    if request_data.player_id and next_state.score > 0:
        background_tasks.add_task(_submit_score, leaderboard, request_data.player_id, next_state.score)
    return _state_data(next_state, request_data.win_tile)


@app.put("/players/{player_id}", response_model=PlayerProfileData, summary="Create or Update a Player Profile")
@limiter.limit(config.RATE_LIMIT)
async def upsert_player(request: Request, player_id: str, profile: PlayerProfileRequest,
                        leaderboard: Leaderboard = Depends(get_leaderboard)):
    try:
        saved = leaderboard.upsert_player(player_id, profile.username)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PlayerProfileData(player_id=saved.player_id, username=saved.username, updated_at=saved.updated_at)


@app.get("/leaderboard/daily", response_model=List[LeaderboardEntryData], summary="Today's Best Score per Player")
@limiter.limit(config.RATE_LIMIT)
async def daily_leaderboard(request: Request, day: Optional[date] = None,
                            leaderboard: Leaderboard = Depends(get_leaderboard)):
    return _ranked(leaderboard, leaderboard.daily_scores(day))


@app.get("/leaderboard/all-time", response_model=List[LeaderboardEntryData], summary="All-Time Top Scores")
@limiter.limit(config.RATE_LIMIT)
async def all_time_leaderboard(request: Request, leaderboard: Leaderboard = Depends(get_leaderboard)):
    return _ranked(leaderboard, leaderboard.all_time_scores())
