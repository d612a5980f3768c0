# cli_driver.py
# This file is intended to be run to play the 2048 game on the CLI

import argparse
import logging
import random
from typing import List, Optional

import config
from controller import GameController, GamePhase, GameState, InvalidTransition, parse_direction
from core import legal_directions, max_tile
from scores import ScoreHistory, ScoreEntry

logger = logging.getLogger(__name__)

PROMPT = "Enter move (W/A/S/D for Up/Left/Down/Right, K keep playing, R restart, H history, Q quit): "

STATUS_MESSAGES = {
    GamePhase.PLAYING: "Status: PLAYING",
    GamePhase.WON_PENDING_DECISION: "YOU WON! Press K to keep playing or R to start over.",
    GamePhase.WON_KEEP_PLAYING: "Status: PLAYING (past the winning tile)",
    GamePhase.GAME_OVER: "GAME OVER! Press R to play again.",
}


def _win_tile(raw: str) -> int:
    value = int(raw)
    if value < 4 or value & (value - 1):
        raise argparse.ArgumentTypeError(f"win tile must be a power of two >= 4, got {raw}")
    return value


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Play 2048 in the terminal.")
    parser.add_argument("--player", default=None, help="Scoring identity; omit to play as a guest.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible tile spawns.")
    parser.add_argument("--win-tile", type=_win_tile, default=config.WINNING_TILE,
                        help="Tile value that wins the game (lower it for testing, e.g. 32).")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, read=input, write=print):
    args = parse_args(argv)
    config.configure_logging()

    history = ScoreHistory(config.history_path())
    try:
        history.load()
    except ValueError:
        logger.exception("Ignoring unreadable score history")

    rng = random.Random(args.seed) if args.seed is not None else None
    game = GameController(rng=rng, player_id=args.player, history=history, winning_value=args.win_tile)
    write(render_state(game.state))

    while True:
        try:
            command = read(PROMPT).strip()
        except EOFError:
            break

        key = command.upper()
        if key == 'Q':
            write("Quitting game.")
            break
        if key == 'R':
            game.restart()
        elif key == 'H':
            write(render_history(history.entries))
            continue
        elif key == 'K':
            try:
                game.keep_playing()
            except InvalidTransition:
                write("Nothing to continue: you have not just won.")
                continue
            if game.state.game_over:
                write(f"No more moves possible. Final score: {game.state.score}")
        else:
            direction = parse_direction(command)
            if direction is None:
                write("Invalid input. Use W, A, S, D.")
                continue

            result = game.move(direction)
            if result.outcome is None:
                write("Moves are paused. " + STATUS_MESSAGES[game.state.phase])
                continue
            if not result.accepted:
                hints = ", ".join(d.name for d in legal_directions(game.state.grid))
                write(f"Move did not change the board. Try: {hints}")
                continue
            if result.finished:
                write(f"No more moves possible. Final score: {game.state.score}")

        write(render_state(game.state))

    write("\n--- Final Board State ---")
    write(render_state(game.state))


# --- Display Functions ---

def render_state(state: GameState) -> str:
    """Formats the board, score and game status for the console."""
    width = max(len(str(value)) for row in state.grid for value in row) + 2
    lines = [f"\nScore: {state.score}   Best tile: {max_tile(state.grid)}", STATUS_MESSAGES[state.phase]]
    for row in state.grid:
        lines.append("".join((str(value) if value else ".").rjust(width) for value in row))
    lines.append("-" * (len(state.grid) * width))
    return "\n".join(lines)


def render_history(entries: List[ScoreEntry]) -> str:
    if not entries:
        return "No scores recorded yet."
    return "\n".join(f"#{rank:<3} {entry.value}" for rank, entry in enumerate(entries, start=1))


if __name__ == "__main__":
    main()
