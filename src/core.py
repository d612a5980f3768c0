# core.py
# This file is the stateless core logic (the "grid engine") for the 2048 game.
# Every function takes an immutable grid and returns a fresh one; randomness is injected.

import random
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, NamedTuple, Sequence, Tuple

from config import FOUR_TILE_PROBABILITY, GRID_SIZE, SEED_TILE_COUNT, WINNING_TILE

EMPTY = 0

Grid = Tuple[Tuple[int, ...], ...]
Cell = Tuple[int, int]


class Direction(Enum):
    """Represents the possible move directions."""
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class MergeEvent(NamedTuple):
    """A single merge: the final (row, col) of the new tile and its value."""
    row: int
    col: int
    value: int


@dataclass(frozen=True)
class MoveOutcome:
    """The result of applying a Direction to a Grid, before the new random tile is placed."""
    resulting_grid: Grid
    changed: bool
    score_delta: int
    merge_events: Tuple[MergeEvent, ...]
    reached_winning_value: bool


# --- Grid Helper Functions ---

def _is_tile_value(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return value == EMPTY or (value >= 2 and value & (value - 1) == 0)


def get_grid_size(grid: Sequence[Sequence[int]]) -> int:
    """
    Gets the size (N) of an N x N grid, validating its shape and tile values.
    Args:
        grid: The game grid.
    Returns:
        int: The dimension of the grid.
    Raises:
        ValueError: If the grid is not a non-empty square matrix, or a cell holds
                    something other than EMPTY or a power of two >= 2.
    """
    if not grid or not all(len(row) == len(grid) for row in grid):
        raise ValueError("Grid must be a non-empty square matrix.")
    for row in grid:
        for value in row:
            if not _is_tile_value(value):
                raise ValueError(f"Invalid tile value {value!r}: must be 0 or a power of two >= 2.")
    return len(grid)


def to_grid(rows: Iterable[Iterable[int]]) -> Grid:
    """
    Freezes a nested sequence (e.g. a list of lists from JSON) into a validated Grid.
    Raises:
        ValueError: If the rows do not form a valid grid.
    """
    grid = tuple(tuple(row) for row in rows)
    get_grid_size(grid)
    return grid


def empty_grid(size: int = GRID_SIZE) -> Grid:
    if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
        raise ValueError("Grid size must be a positive integer.")
    return tuple((EMPTY,) * size for _ in range(size))


def get_empty_cells(grid: Grid) -> List[Cell]:
    """
    Get coordinates of empty cells in the given grid, in row-major order.
    Args:
        grid: The grid to check.
    Returns:
        List[Tuple[int, int]]: List of (row, col) tuples for empty cells.
    """
    n = get_grid_size(grid)
    return [(row, col) for row in range(n) for col in range(n) if grid[row][col] == EMPTY]


def max_tile(grid: Grid) -> int:
    """Largest tile on the grid (EMPTY for an empty grid)."""
    get_grid_size(grid)
    return max(max(row) for row in grid)


def place_random_tile(grid: Grid, rng=None) -> Grid:
    """
    Places a new tile (90% chance of 2, 10% chance of 4) on a uniformly chosen empty cell.
    Args:
        grid: The current game grid.
        rng: Source of randomness with `choice` and `random` (e.g. a seeded random.Random).
             Defaults to the module-level `random` functions.
    Returns:
        Grid: A new grid with the added tile, or the input grid unchanged if it is full.
    """
    empty_cells = get_empty_cells(grid)
    if not empty_cells:
        return grid

    rng = rng if rng is not None else random
    row, col = rng.choice(empty_cells)
    value = 4 if rng.random() < FOUR_TILE_PROBABILITY else 2

    new_rows = [list(r) for r in grid]
    new_rows[row][col] = value
    return tuple(tuple(r) for r in new_rows)


def initialize(size: int = GRID_SIZE, seed_count: int = SEED_TILE_COUNT, rng=None) -> Grid:
    """
    Builds an all-empty grid and places `seed_count` random tiles on it.
    Args:
        size: The dimension of the N x N grid. Default is 4.
        seed_count: Number of starting tiles. Default is 2.
        rng: Optional seedable source of randomness.
    Returns:
        Grid: The initial grid.
    Raises:
        ValueError: If size is not a positive integer or seed_count does not fit the grid.
    """
    grid = empty_grid(size)
    if not isinstance(seed_count, int) or not 0 <= seed_count <= size * size:
        raise ValueError(f"Seed count must be between 0 and {size * size}.")

    for _ in range(seed_count):
        grid = place_random_tile(grid, rng)
    return grid


# --- Line Manipulation (Core Move Logic Helpers) ---

# Direction -> (lines run along rows, scan starts from the far end).
# The scan always begins at the edge tiles travel towards.
_TRAVERSALS = {
    Direction.LEFT: (True, False),
    Direction.RIGHT: (True, True),
    Direction.UP: (False, False),
    Direction.DOWN: (False, True),
}


def _line_coordinates(direction: Direction, size: int) -> List[List[Cell]]:
    """
    Lists, for every line of the grid, its cells in the direction of travel.
    The first cell of each line sits on the edge the tiles slide towards, so index i of
    a processed line maps straight back to a grid coordinate for every direction.
    Raises:
        ValueError: If an invalid direction is specified.
    """
    try:
        along_rows, from_end = _TRAVERSALS[direction]
    except (KeyError, TypeError):
        raise ValueError(f"Invalid direction specified: {direction!r}.") from None

    positions = range(size - 1, -1, -1) if from_end else range(size)
    lines = []
    for line in range(size):
        if along_rows:
            lines.append([(line, pos) for pos in positions])
        else:
            lines.append([(pos, line) for pos in positions])
    return lines


def _compress_line(line: List[int]) -> List[int]:
    """Drops empty cells, keeping the relative order of the tiles."""
    return [value for value in line if value != EMPTY]


def _merge_line(compressed: List[int]) -> Tuple[List[int], List[Tuple[int, int]]]:
    """
    Merges equal neighbours of a compressed line, towards index 0.
    A tile created by a merge is never compared again in the same pass, so
    [2, 2, 2, 2] becomes [4, 4] and never [8].
    Returns:
        The merged line and a list of (index in merged line, merged value) pairs,
        in the order the merges were found.
    """
    merged: List[int] = []
    merges: List[Tuple[int, int]] = []
    read_idx = 0

    while read_idx < len(compressed):
        current_val = compressed[read_idx]
        if read_idx + 1 < len(compressed) and current_val == compressed[read_idx + 1]:
            merges.append((len(merged), current_val * 2))
            merged.append(current_val * 2)
            read_idx += 2  # Skip the partner tile
        else:
            merged.append(current_val)
            read_idx += 1

    return merged, merges


def _process_line(line: List[int]) -> Tuple[List[int], List[Tuple[int, int]]]:
    """Compress, merge, then re-pad a line (given in the direction of travel)."""
    merged, merges = _merge_line(_compress_line(line))
    merged += [EMPTY] * (len(line) - len(merged))
    return merged, merges


# --- Core Game Move Processing ---

def apply_move(grid: Grid, direction: Direction, winning_value: int = WINNING_TILE) -> MoveOutcome:
    """
    Slides and merges every line of the grid in the given direction.
    Args:
        grid: The current game grid. It is never mutated.
        direction: The direction to move.
        winning_value: Merging into a tile of at least this value reaches the win.
    Returns:
        MoveOutcome: The new grid (without a spawned tile), whether anything changed,
                     the score gained, the merge events and the win flag.
    Raises:
        ValueError: If the grid is malformed or the direction is invalid.
    """
    n = get_grid_size(grid)
    new_rows = [list(row) for row in grid]
    merge_events: List[MergeEvent] = []
    score_delta = 0
    changed = False

    for coords in _line_coordinates(direction, n):
        line = [grid[row][col] for row, col in coords]
        new_line, merges = _process_line(line)

        if new_line != line:
            changed = True
            for (row, col), value in zip(coords, new_line):
                new_rows[row][col] = value

        for index, value in merges:
            row, col = coords[index]
            merge_events.append(MergeEvent(row, col, value))
            score_delta += value

    return MoveOutcome(
        resulting_grid=tuple(tuple(row) for row in new_rows) if changed else grid,
        changed=changed,
        score_delta=score_delta,
        merge_events=tuple(merge_events),
        reached_winning_value=any(event.value >= winning_value for event in merge_events),
    )


# --- Game State Checks ---

def has_legal_move(grid: Grid) -> bool:
    """
    Checks whether any move is still possible: an empty cell exists, or two
    horizontally or vertically adjacent cells hold the same value.
    Args:
        grid: The game grid.
    Returns:
        bool: True if at least one move can change the grid, False otherwise.
    """
    n = get_grid_size(grid)
    for r in range(n):
        for c in range(n):
            value = grid[r][c]
            if value == EMPTY:
                return True
            if r + 1 < n and grid[r + 1][c] == value:
                return True
            if c + 1 < n and grid[r][c + 1] == value:
                return True
    return False


def is_move_possible_in_direction(grid: Grid, direction: Direction) -> bool:
    """Check if a move in this specific direction would change the grid."""
    return apply_move(grid, direction).changed


def legal_directions(grid: Grid) -> List[Direction]:
    """All directions whose move would change the grid, in enum order."""
    return [direction for direction in Direction if is_move_possible_in_direction(grid, direction)]
