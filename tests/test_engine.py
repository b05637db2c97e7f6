import random

import pytest

from monstersweeper.game_engine import (
    carry_annotations,
    count_monsters_by_level,
    generate_board,
    is_won,
    remaining_by_level,
    reveal,
    reveal_all_monsters,
)
from monstersweeper.modes import GAME_MODES, ModeConfig, get_mode

from helpers import make_board


def brute_neighbor_sum(board, r, c):
    total = 0
    for dr in (-1, 0, 1):
        for dc in (-1, 0, 1):
            if dr == 0 and dc == 0:
                continue
            rr, cc = r + dr, c + dc
            if 0 <= rr < len(board) and 0 <= cc < len(board[0]):
                total += board[rr][cc]["monsterLevel"]
    return total


@pytest.mark.parametrize("mode_id", sorted(GAME_MODES))
def test_generate_places_configured_counts(mode_id):
    mode = get_mode(mode_id)
    board = generate_board(mode, rng=random.Random(11))
    assert len(board) == mode.rows and all(len(row) == mode.cols for row in board)
    counts = count_monsters_by_level(board)
    for lv in range(1, mode.max_level + 1):
        assert counts.get(lv, 0) == mode.monsters.get(lv, 0)
    assert sum(counts.values()) == mode.total_monsters


@pytest.mark.parametrize("safe", [(0, 0), (8, 8), (15, 15), (0, 15), (7, 3)])
def test_safe_zone_has_no_monsters(safe):
    mode = get_mode("easy")
    r0, c0 = safe
    for seed in range(5):
        board = generate_board(mode, r0, c0, rng=random.Random(seed))
        for dr in (-1, 0, 1):
            for dc in (-1, 0, 1):
                rr, cc = r0 + dr, c0 + dc
                if 0 <= rr < mode.rows and 0 <= cc < mode.cols:
                    assert board[rr][cc]["isMonster"] is False


def test_neighbor_sums_match_brute_force():
    board = generate_board(get_mode("extreme"), 3, 3, rng=random.Random(5))
    for r, row in enumerate(board):
        for c, cell in enumerate(row):
            assert cell["neighborSum"] == brute_neighbor_sum(board, r, c)


def test_monster_hp_starts_at_level():
    board = generate_board(get_mode("normal"), rng=random.Random(2))
    for row in board:
        for cell in row:
            if cell["isMonster"]:
                assert cell["monsterHp"] == cell["monsterMaxHp"] == cell["monsterLevel"]
            else:
                assert cell["monsterLevel"] == 0


def test_placement_budget_leaves_levels_short():
    # 3x3 board entirely inside the safe zone of its centre
    tiny = ModeConfig(name="TINY", rows=3, cols=3, max_level=2, hp=5, monsters={1: 4, 2: 4})
    board = generate_board(tiny, 1, 1, rng=random.Random(0))
    assert count_monsters_by_level(board) == {}

    crowded = ModeConfig(name="CROWDED", rows=3, cols=3, max_level=2, hp=5, monsters={1: 20, 2: 20})
    board = generate_board(crowded, rng=random.Random(0))
    counts = count_monsters_by_level(board)
    assert sum(counts.values()) <= 9
    assert counts.get(1, 0) <= 9


def test_reveal_zero_region_stops_at_border():
    board = make_board(5, 5, {(4, 4): 2})
    opened = reveal(board, 0, 0, "alice")
    assert len(opened) == 24
    assert len(set(opened)) == len(opened)
    assert board[4][4]["isRevealed"] is False
    assert board[3][3]["isRevealed"] is True and board[3][3]["neighborSum"] == 2
    assert all(board[r][c]["revealedBy"] == "alice" for r, c in opened)


def test_reveal_numbered_cell_opens_only_itself():
    board = make_board(5, 5, {(2, 2): 1})
    assert reveal(board, 1, 1, "bob") == [(1, 1)]
    assert board[0][0]["isRevealed"] is False


def test_reveal_again_changes_nothing():
    board = make_board(5, 5, {(4, 4): 2})
    reveal(board, 0, 0, "alice")
    assert reveal(board, 0, 0, "bob") == []
    assert reveal(board, 2, 2, "bob") == []
    assert board[0][0]["revealedBy"] == "alice"


def test_marks_block_reveal_and_chaining():
    board = make_board(5, 5, {(4, 4): 2})
    board[0][0]["mark"] = 1
    assert reveal(board, 0, 0, "alice") == []
    board[2][2]["mark"] = 3
    opened = reveal(board, 0, 1, "alice")
    assert (2, 2) not in opened
    assert (0, 0) not in opened
    assert len(opened) == 22


def test_reveal_never_opens_monsters():
    board = make_board(4, 4, {(1, 1): 1})
    assert reveal(board, 1, 1, "alice") == []
    assert board[1][1]["isRevealed"] is False


def test_reveal_out_of_bounds_is_noop():
    board = make_board(3, 3)
    assert reveal(board, -1, 0, "a") == []
    assert reveal(board, 3, 3, "a") == []


def test_is_won_requires_every_monster_cleared():
    board = make_board(4, 4, {(0, 0): 1, (3, 3): 2})
    assert is_won(board) is False
    board[0][0]["isDead"] = True
    assert is_won(board) is False
    board[3][3]["isDead"] = True
    assert is_won(board) is True
    assert is_won(None) is False


def test_is_won_with_revealed_predicate():
    board = make_board(4, 4, {(0, 0): 1})
    revealed = lambda cell: cell["isRevealed"]
    assert is_won(board, revealed) is False
    reveal_all_monsters(board)
    assert is_won(board, revealed) is True


def test_remaining_by_level_counts_living_monsters():
    board = make_board(4, 4, {(0, 0): 1, (0, 3): 1, (3, 3): 3})
    board[0][0]["isDead"] = True
    assert remaining_by_level(board, 5) == {1: 1, 2: 0, 3: 1, 4: 0, 5: 0}
    assert remaining_by_level(None, 2) == {1: 0, 2: 0}


def test_carry_annotations_copies_marks_and_pins():
    preview = make_board(3, 3)
    preview[0][1]["mark"] = 2
    preview[0][1]["markBy"] = "alice"
    preview[2][2]["pinned"] = True
    preview[2][2]["pinnedBy"] = "bob"
    fresh = make_board(3, 3, {(1, 1): 1})
    carry_annotations(preview, fresh)
    assert fresh[0][1]["mark"] == 2 and fresh[0][1]["markBy"] == "alice"
    assert fresh[2][2]["pinned"] is True
    assert fresh[1][1]["isMonster"] is True
