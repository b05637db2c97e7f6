from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import random

from .modes import ModeConfig


Cell = Dict[str, Any]
Board = List[List[Cell]]

ANNOTATION_KEYS = ("mark", "markBy", "pinned", "pinnedBy")


def new_cell() -> Cell:
    return {
        "isMonster": False,
        "monsterLevel": 0,
        "monsterHp": 0,
        "monsterMaxHp": 0,
        "isRevealed": False,
        "isDead": False,
        "showNumber": False,
        "mark": 0,
        "markBy": None,
        "pinned": False,
        "pinnedBy": None,
        "neighborSum": 0,
        "revealedBy": None,
    }


def dimensions(board: Board) -> Tuple[int, int]:
    rows = len(board)
    cols = len(board[0]) if rows else 0
    return rows, cols


def in_bounds(board: Board, row: int, col: int) -> bool:
    rows, cols = dimensions(board)
    return 0 <= row < rows and 0 <= col < cols


def _neighbors(r: int, c: int, rows: int, cols: int) -> Iterator[Tuple[int, int]]:
    for nr in range(max(0, r - 1), min(rows, r + 2)):
        for nc in range(max(0, c - 1), min(cols, c + 2)):
            if nr == r and nc == c:
                continue
            yield nr, nc


def _in_safe_zone(r: int, c: int, safe_row: int, safe_col: int) -> bool:
    if safe_row < 0:
        return False
    return abs(r - safe_row) <= 1 and abs(c - safe_col) <= 1


def compute_neighbor_sums(board: Board) -> None:
    rows, cols = dimensions(board)
    for r in range(rows):
        for c in range(cols):
            total = 0
            for nr, nc in _neighbors(r, c, rows, cols):
                other = board[nr][nc]
                if other["isMonster"]:
                    total += other["monsterLevel"]
            board[r][c]["neighborSum"] = total


def generate_board(
    mode: ModeConfig,
    safe_row: int = -1,
    safe_col: int = -1,
    rng: Optional[random.Random] = None,
) -> Board:
    """Build a fresh board for ``mode``.

    Monsters are placed level by level at random distinct cells, skipping the
    3x3 block around ``(safe_row, safe_col)`` unless ``safe_row`` is negative.
    Each level gets ``rows * cols * 10`` attempts; a level that runs out of
    attempts is left short rather than failing the whole board.
    """
    rng = rng if rng is not None else random.Random()
    rows, cols = mode.rows, mode.cols
    board: Board = [[new_cell() for _ in range(cols)] for _ in range(rows)]
    max_attempts = rows * cols * 10
    for lv in range(1, mode.max_level + 1):
        count = mode.monsters.get(lv, 0)
        placed = 0
        attempts = 0
        while placed < count and attempts < max_attempts:
            attempts += 1
            r = rng.randrange(rows)
            c = rng.randrange(cols)
            cell = board[r][c]
            if cell["isMonster"] or _in_safe_zone(r, c, safe_row, safe_col):
                continue
            cell["isMonster"] = True
            cell["monsterLevel"] = lv
            cell["monsterHp"] = lv
            cell["monsterMaxHp"] = lv
            placed += 1
    compute_neighbor_sums(board)
    return board


def carry_annotations(source: Optional[Board], target: Board) -> None:
    """Copy marks and pins from ``source`` onto same-sized ``target``."""
    if not source or dimensions(source) != dimensions(target):
        return
    for r, row in enumerate(source):
        for c, cell in enumerate(row):
            for key in ANNOTATION_KEYS:
                if key in cell:
                    target[r][c][key] = cell[key]


def count_monsters_by_level(board: Board) -> Dict[int, int]:
    counts: Dict[int, int] = {}
    for row in board:
        for cell in row:
            if cell["isMonster"]:
                lv = cell["monsterLevel"]
                counts[lv] = counts.get(lv, 0) + 1
    return counts


def remaining_by_level(board: Optional[Board], max_level: int) -> Dict[int, int]:
    remaining = {lv: 0 for lv in range(1, max_level + 1)}
    for row in board or []:
        for cell in row:
            if cell["isMonster"] and not cell.get("isDead"):
                lv = cell["monsterLevel"]
                remaining[lv] = remaining.get(lv, 0) + 1
    return remaining


def reveal(board: Board, row: int, col: int, revealer: Optional[str]) -> List[Tuple[int, int]]:
    """Open ``(row, col)`` and chain through zero-sum territory.

    Monster cells are never opened here, neither as the target nor while
    chaining; marked and already revealed cells are skipped. Returns the
    coordinates opened by this call, in the order they were opened.
    """
    if not in_bounds(board, row, col):
        return []
    rows, cols = dimensions(board)
    opened: List[Tuple[int, int]] = []
    stack = [(row, col)]
    while stack:
        r, c = stack.pop()
        cell = board[r][c]
        if cell["isRevealed"] or cell.get("mark", 0) > 0 or cell["isMonster"]:
            continue
        cell["isRevealed"] = True
        cell["revealedBy"] = revealer
        opened.append((r, c))
        if cell["neighborSum"] == 0:
            for nr, nc in _neighbors(r, c, rows, cols):
                if not board[nr][nc]["isRevealed"]:
                    stack.append((nr, nc))
    return opened


def reveal_all_monsters(board: Board) -> int:
    shown = 0
    for row in board:
        for cell in row:
            if cell["isMonster"] and not cell["isRevealed"]:
                cell["isRevealed"] = True
                shown += 1
    return shown


def _is_defeated(cell: Cell) -> bool:
    return bool(cell.get("isDead"))


def is_won(board: Optional[Board], is_cleared: Callable[[Cell], bool] = _is_defeated) -> bool:
    if not board:
        return False
    for row in board:
        for cell in row:
            if cell["isMonster"] and not is_cleared(cell):
                return False
    return True
