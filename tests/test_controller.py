from __future__ import annotations

import logging
import random

import pytest

import core
from controller import (
    GameController,
    GamePhase,
    GameState,
    InvalidTransition,
    keep_playing,
    new_game,
    parse_direction,
    play_turn,
    stop,
)
from core import Direction
from scores import Leaderboard, ScoreHistory

EMPTY_ROW = [0, 0, 0, 0]

# LEFT slides the bottom row into [8, 16, 32, _]; whatever spawns in the last
# cell, no neighbours are equal afterwards.
ABOUT_TO_LOCK = [
    [2, 4, 8, 16],
    [4, 8, 16, 32],
    [2, 4, 8, 64],
    [0, 8, 16, 32],
]

# LEFT merges 1024+1024 into 2048 and leaves the board locked.
WIN_AND_LOCK = [
    [2, 4, 8, 16],
    [4, 8, 16, 32],
    [2, 4, 8, 64],
    [1024, 1024, 8, 16],
]


def _state(rows, **kwargs) -> GameState:
    return GameState(grid=core.to_grid(rows), **kwargs)


class _BrokenLeaderboard(Leaderboard):
    def submit_score(self, player_id, score, created_at=None):
        raise ConnectionError("score service unavailable")


def test_new_game_starts_playing_with_two_tiles() -> None:
    state = new_game(random.Random(3))

    assert state.phase is GamePhase.PLAYING
    assert state.score == 0
    assert not state.won and not state.game_over and not state.keep_playing
    assert sum(1 for row in state.grid for value in row if value) == 2


def test_noop_move_keeps_state_and_spawns_nothing() -> None:
    state = _state([[2, 4, 8, 16], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW])

    result = play_turn(state, Direction.LEFT, random.Random(0))

    assert result.state is state
    assert result.accepted is False
    assert result.outcome is not None and result.outcome.changed is False


def test_accepted_move_adds_score_and_spawns_one_tile() -> None:
    state = _state([[2, 2, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW], score=10)

    result = play_turn(state, Direction.LEFT, random.Random(0))

    assert result.accepted is True
    assert result.state.score == 14
    assert result.state.grid[0][0] == 4
    assert sum(1 for row in result.state.grid for value in row if value) == 2
    assert result.state.phase is GamePhase.PLAYING
    assert result.finished is False


def test_locked_board_after_spawn_is_game_over() -> None:
    result = play_turn(_state(ABOUT_TO_LOCK), Direction.LEFT, random.Random(0))

    assert result.accepted is True
    assert result.finished is True
    assert result.state.phase is GamePhase.GAME_OVER
    assert result.state.grid[3][:3] == (8, 16, 32)
    assert result.state.grid[3][3] in (2, 4)


def test_game_over_ignores_moves() -> None:
    state = _state(ABOUT_TO_LOCK, phase=GamePhase.GAME_OVER)

    result = play_turn(state, Direction.LEFT)

    assert result.state is state
    assert result.outcome is None
    assert result.accepted is False


def test_winning_merge_prompts_and_suspends_moves() -> None:
    state = _state([[1024, 1024, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW], score=100)

    result = play_turn(state, Direction.LEFT, random.Random(0))

    assert result.state.phase is GamePhase.WON_PENDING_DECISION
    assert result.state.has_won is True
    assert result.state.score == 100 + 2048

    ignored = play_turn(result.state, Direction.RIGHT, random.Random(0))
    assert ignored.outcome is None
    assert ignored.state is result.state


def test_win_takes_precedence_over_locked_board() -> None:
    result = play_turn(_state(WIN_AND_LOCK), Direction.LEFT, random.Random(0))

    assert result.state.phase is GamePhase.WON_PENDING_DECISION
    assert result.finished is False
    assert core.has_legal_move(result.state.grid) is False

    assert keep_playing(result.state).phase is GamePhase.GAME_OVER


def test_keep_playing_never_prompts_again() -> None:
    won = _state([[1024, 1024, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW])
    pending = play_turn(won, Direction.LEFT, random.Random(0)).state
    continuing = keep_playing(pending)
    assert continuing.phase is GamePhase.WON_KEEP_PLAYING
    assert continuing.keep_playing and continuing.won

    second_win = _state([[2048, 1024, 1024, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW],
                        phase=GamePhase.WON_KEEP_PLAYING, has_won=True)
    result = play_turn(second_win, Direction.LEFT, random.Random(0))

    assert result.outcome.reached_winning_value is True
    assert result.state.phase is GamePhase.WON_KEEP_PLAYING


def test_game_over_after_keep_playing_remembers_the_win() -> None:
    state = _state(ABOUT_TO_LOCK, phase=GamePhase.WON_KEEP_PLAYING, has_won=True)

    result = play_turn(state, Direction.LEFT, random.Random(0))

    assert result.state.phase is GamePhase.GAME_OVER
    assert result.state.won is True


@pytest.mark.parametrize("phase", [GamePhase.PLAYING, GamePhase.WON_KEEP_PLAYING, GamePhase.GAME_OVER])
def test_win_decisions_only_from_pending_phase(phase) -> None:
    state = _state([[2, 0, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW], phase=phase, has_won=phase is not GamePhase.PLAYING)

    with pytest.raises(InvalidTransition):
        keep_playing(state)
    with pytest.raises(ValueError):
        stop(state)


def test_stop_ends_a_won_game() -> None:
    state = _state([[2048, 0, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW],
                   phase=GamePhase.WON_PENDING_DECISION, has_won=True, score=20000)

    stopped = stop(state)

    assert stopped.game_over
    assert stopped.score == 20000


@pytest.mark.parametrize("phase", [GamePhase.WON_PENDING_DECISION, GamePhase.WON_KEEP_PLAYING])
def test_win_phase_without_a_win_is_rejected(phase) -> None:
    with pytest.raises(ValueError):
        _state([[2, 0, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW], phase=phase)


def test_game_over_without_a_win_is_allowed() -> None:
    state = _state(ABOUT_TO_LOCK, phase=GamePhase.GAME_OVER)

    assert state.game_over and not state.won


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("w", Direction.UP),
        ("A", Direction.LEFT),
        (" s ", Direction.DOWN),
        ("ArrowRight", Direction.RIGHT),
        ("up", Direction.UP),
        ("x", None),
        ("", None),
    ],
)
def test_parse_direction(raw, expected) -> None:
    assert parse_direction(raw) is expected


def test_controller_records_game_over_for_identified_player(tmp_path) -> None:
    history = ScoreHistory(tmp_path / "history.json")
    leaderboard = Leaderboard()
    game = GameController(
        rng=random.Random(0),
        player_id="player-1",
        history=history,
        leaderboard=leaderboard,
        state=_state(ABOUT_TO_LOCK, score=500),
    )

    result = game.move(Direction.LEFT)

    assert result.finished is True
    assert game.state.game_over
    assert [entry.value for entry in history.entries] == [500]
    assert [(r.player_id, r.score) for r in leaderboard.all_time_scores()] == [("player-1", 500)]


def test_guest_game_over_only_reaches_local_history() -> None:
    history = ScoreHistory()
    leaderboard = Leaderboard()
    game = GameController(rng=random.Random(0), history=history, leaderboard=leaderboard,
                          state=_state(ABOUT_TO_LOCK, score=64))

    game.move(Direction.LEFT)

    assert [entry.value for entry in history.entries] == [64]
    assert leaderboard.all_time_scores() == []


def test_failed_score_submission_is_logged_and_not_fatal(caplog: pytest.LogCaptureFixture) -> None:
    game = GameController(rng=random.Random(0), player_id="player-1", leaderboard=_BrokenLeaderboard(),
                          state=_state(ABOUT_TO_LOCK, score=64))

    with caplog.at_level(logging.ERROR, logger="controller"):
        result = game.move(Direction.LEFT)

    assert result.finished is True
    assert game.state.game_over
    assert "Failed to submit score 64" in caplog.text


def test_restart_at_win_prompt_finalizes_the_game() -> None:
    history = ScoreHistory()
    pending = _state([[2048, 0, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW],
                     phase=GamePhase.WON_PENDING_DECISION, has_won=True, score=20000)
    game = GameController(rng=random.Random(0), history=history, state=pending)

    fresh = game.restart()

    assert [entry.value for entry in history.entries] == [20000]
    assert fresh.phase is GamePhase.PLAYING
    assert fresh.score == 0
    assert game.state is fresh


def test_restart_while_playing_records_nothing() -> None:
    history = ScoreHistory()
    game = GameController(rng=random.Random(0), history=history,
                          state=_state([[2, 2, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW], score=300))

    game.restart()

    assert history.entries == []
    assert game.state.score == 0


def test_controller_keep_playing_on_locked_board_finishes() -> None:
    history = ScoreHistory()
    game = GameController(rng=random.Random(0), history=history, state=_state(WIN_AND_LOCK))

    game.move(Direction.LEFT)
    assert game.state.phase is GamePhase.WON_PENDING_DECISION

    game.keep_playing()

    assert game.state.game_over
    assert [entry.value for entry in history.entries] == [2048]


def test_move_arriving_mid_update_is_dropped() -> None:
    start = _state([[2, 2, 0, 0], EMPTY_ROW, EMPTY_ROW, EMPTY_ROW])
    game = GameController(rng=random.Random(0), state=start)

    game._busy.acquire()
    try:
        result = game.move(Direction.LEFT)
    finally:
        game._busy.release()

    assert result.outcome is None
    assert game.state is start
    assert game.move(Direction.LEFT).accepted is True
