"""Room document rules.

Every function that takes a room or a cell is written as a transaction body:
it receives the latest stored value, mutates and returns it, and may run more
than once for a single player action. Guards are evaluated against that value
only; nothing here reads client-side state.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
import random
import string
import uuid

from .combat import policy_for, resolve_attack
from .game_engine import (
    carry_annotations,
    generate_board,
    in_bounds,
    is_won,
    remaining_by_level,
    reveal,
    reveal_all_monsters,
)
from .modes import DEFAULT_MODE, PLAYER_COLORS, get_mode


WAITING = "waiting"
PLAYING = "playing"
WON = "won"
LOST = "lost"

ROOM_ID_ALPHABET = string.ascii_uppercase + string.digits
ROOM_ID_LENGTH = 6
DEFAULT_PLAYER_COLOR = "#666"

_HIDDEN_CELL_KEYS = ("isMonster", "monsterLevel", "monsterHp", "monsterMaxHp", "neighborSum")


def generate_room_id(rng: Optional[random.Random] = None) -> str:
    rng = rng if rng is not None else random.Random()
    return "".join(rng.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


def normalize_room_id(room_id: str) -> str:
    room_id = (room_id or "").strip().upper()
    if not room_id:
        raise ValueError("empty_room_id")
    return room_id


def normalize_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("empty_name")
    if "/" in name:
        raise ValueError("invalid_name")
    return name


def pick_color(players: Optional[Dict[str, Any]]) -> str:
    used = {p.get("color") for p in (players or {}).values() if p}
    for color in PLAYER_COLORS:
        if color not in used:
            return color
    return PLAYER_COLORS[0]


def color_for(players: Optional[Dict[str, Any]], name: str) -> str:
    player = (players or {}).get(name)
    if player and player.get("color"):
        return player["color"]
    return DEFAULT_PLAYER_COLOR


def _progress_defaults(hp: int) -> Dict[str, Any]:
    return {
        "hp": hp,
        "maxHp": hp,
        "level": 1,
        "exp": 0,
        "time": 0,
    }


def new_room(host_name: str, mode_id: str = DEFAULT_MODE, now_ms: int = 0) -> Dict[str, Any]:
    mode = get_mode(mode_id)
    room = {
        "players": {host_name: {"name": host_name, "color": PLAYER_COLORS[0], "isHost": True}},
        "board": None,
        "gameState": WAITING,
        "mode": mode_id,
        "firstClick": True,
        "timerRunning": False,
        "createdAt": now_ms,
    }
    room.update(_progress_defaults(mode.hp))
    return room


def add_player(players: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    players = dict(players or {})
    if name in players:
        raise ValueError("name_taken")
    players[name] = {"name": name, "color": pick_color(players), "isHost": False}
    return players


def is_host(room: Dict[str, Any], name: str) -> bool:
    player = (room.get("players") or {}).get(name)
    return bool(player and player.get("isHost"))


def start_game(
    room: Optional[Dict[str, Any]],
    player_name: str,
    rng: Optional[random.Random] = None,
    now_ms: int = 0,
):
    if not room or room.get("gameState") != WAITING:
        return room
    if not is_host(room, player_name):
        raise ValueError("not_host")
    mode = get_mode(room["mode"])
    room["board"] = generate_board(mode, -1, -1, rng)
    room["gameState"] = PLAYING
    room["firstClick"] = True
    room["timerRunning"] = True
    room.update(_progress_defaults(mode.hp))
    room["startedAt"] = now_ms
    return room


def _finish(room: Dict[str, Any], state: str) -> None:
    room["gameState"] = state
    room["timerRunning"] = False


def click(room: Optional[Dict[str, Any]], row: int, col: int, player_name: str, rng: Optional[random.Random] = None):
    """Resolve one primary click: reveal, attack, then check for an ending."""
    if not room or room.get("gameState") != PLAYING:
        return room
    mode = get_mode(room["mode"])
    board = room.get("board")
    if not (0 <= row < mode.rows and 0 <= col < mode.cols):
        return room
    if board and in_bounds(board, row, col) and board[row][col].get("mark", 0) > 0:
        return room
    if room.get("firstClick") or not board:
        fresh = generate_board(mode, row, col, rng)
        carry_annotations(board, fresh)
        board = fresh
        room["board"] = board
        room["firstClick"] = False

    cell = board[row][col]
    policy = policy_for(mode)
    if cell["isMonster"]:
        if not policy.can_engage(cell):
            return room
        resolve_attack(room, cell, mode, player_name)
        if room["hp"] <= 0:
            reveal_all_monsters(board)
            _finish(room, LOST)
            return room
    elif cell["isRevealed"]:
        return room
    else:
        reveal(board, row, col, player_name)

    if is_won(board, policy.is_cleared):
        _finish(room, WON)
    return room


def reset_game(room: Optional[Dict[str, Any]]):
    if not room or room.get("gameState") not in (WON, LOST):
        return room
    mode = get_mode(room["mode"])
    room["board"] = None
    room["gameState"] = WAITING
    room["firstClick"] = True
    room["timerRunning"] = False
    room.update(_progress_defaults(mode.hp))
    room.pop("damageEvent", None)
    room.pop("startedAt", None)
    return room


def change_mode(room: Optional[Dict[str, Any]], mode_id: str):
    mode = get_mode(mode_id)
    if not room or room.get("gameState") != WAITING:
        return room
    room["mode"] = mode_id
    room["hp"] = mode.hp
    room["maxHp"] = mode.hp
    return room


def tick(room: Optional[Dict[str, Any]], now_ms: int):
    """Set ``time`` to whole seconds since the game started.

    Every connected client may call this; repeated calls within the same
    second leave the counter where it is.
    """
    if not room or room.get("gameState") != PLAYING or not room.get("timerRunning"):
        return room
    started = room.get("startedAt")
    if started is None:
        return room
    elapsed = max(0, (now_ms - int(started)) // 1000)
    room["time"] = max(int(room.get("time", 0)), elapsed)
    return room


# Single-cell bodies, run against rooms/{id}/board/{row}/{col}.

def cycle_mark(cell: Optional[Dict[str, Any]], max_level: int, player_name: str):
    if not cell:
        return cell
    if cell.get("isMonster") and cell.get("isDead"):
        return toggle_show_number(cell)
    if cell.get("isRevealed"):
        return cell
    mark = int(cell.get("mark", 0)) + 1
    if mark > max_level:
        mark = 0
    cell["mark"] = mark
    cell["markBy"] = player_name if mark > 0 else None
    return cell


def set_mark(cell: Optional[Dict[str, Any]], value: int, player_name: str):
    if not cell or cell.get("isRevealed"):
        return cell
    cell["mark"] = value
    cell["markBy"] = player_name if value > 0 else None
    return cell


def clear_mark(cell: Optional[Dict[str, Any]]):
    if not cell or cell.get("isRevealed"):
        return cell
    cell["mark"] = 0
    cell["markBy"] = None
    return cell


def toggle_pin(cell: Optional[Dict[str, Any]], player_name: str):
    if not cell:
        return cell
    if cell.get("pinned"):
        cell["pinned"] = False
        cell["pinnedBy"] = None
    else:
        cell["pinned"] = True
        cell["pinnedBy"] = player_name
    return cell


def toggle_show_number(cell: Optional[Dict[str, Any]]):
    if not cell or not (cell.get("isMonster") and cell.get("isDead")):
        return cell
    cell["showNumber"] = not cell.get("showNumber", False)
    return cell


# Effects are derived from committed snapshots only.

def _cell_at(room: Optional[Dict[str, Any]], row: int, col: int) -> Optional[Dict[str, Any]]:
    board = (room or {}).get("board")
    if not board or not in_bounds(board, row, col):
        return None
    return board[row][col]


def _count_open_ground(room: Optional[Dict[str, Any]]) -> int:
    board = (room or {}).get("board") or []
    return sum(1 for r in board for c in r if c["isRevealed"] and not c["isMonster"])


def diff_click(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]], row: int, col: int) -> Dict[str, Any]:
    before = before or {}
    after = after or {}
    effects: Dict[str, Any] = {
        "revealedCount": 0,
        "hit": False,
        "defeated": False,
        "damage": 0,
        "levelUp": False,
        "won": False,
        "lost": False,
    }
    base_open = 0 if before.get("firstClick") else _count_open_ground(before)
    effects["revealedCount"] = max(0, _count_open_ground(after) - base_open)
    cell = _cell_at(after, row, col)
    prev = None if before.get("firstClick") else _cell_at(before, row, col)
    if cell and cell["isMonster"] and cell["isRevealed"]:
        changed = prev is None or any(
            prev.get(k) != cell.get(k) for k in ("isRevealed", "monsterHp", "isDead")
        )
        if changed:
            effects["hit"] = True
            effects["defeated"] = bool(cell.get("isDead")) and not (prev or {}).get("isDead")
    effects["damage"] = max(0, int(before.get("hp", 0)) - int(after.get("hp", 0)))
    effects["levelUp"] = int(after.get("level", 1)) > int(before.get("level", 1))
    if before.get("gameState") == PLAYING:
        effects["won"] = after.get("gameState") == WON
        effects["lost"] = after.get("gameState") == LOST
    return effects


def damage_event(effects: Dict[str, Any], row: int, col: int, now_ms: int) -> Optional[Dict[str, Any]]:
    if not effects.get("hit"):
        return None
    event: Dict[str, Any] = {
        "id": f"{now_ms}-{uuid.uuid4().hex[:8]}",
        "type": "defeat" if effects.get("defeated") else "damage",
        "row": row,
        "col": col,
        "timestamp": now_ms,
    }
    if effects.get("damage"):
        event["damage"] = effects["damage"]
    return event


def new_ripple(row: int, col: int, color: str, now_ms: int):
    ripple_id = f"{now_ms}-{uuid.uuid4().hex[:6]}"
    return ripple_id, {"row": row, "col": col, "color": color, "timestamp": now_ms}


def is_fresh(record: Optional[Dict[str, Any]], now_ms: int, ttl_ms: int) -> bool:
    if not record:
        return False
    return now_ms - int(record.get("timestamp", 0)) < ttl_ms


def active_ripples(ripples: Optional[Dict[str, Any]], now_ms: int, ttl_ms: int) -> List[Dict[str, Any]]:
    active = []
    for ripple_id, ripple in (ripples or {}).items():
        if is_fresh(ripple, now_ms, ttl_ms):
            active.append(dict(ripple, id=ripple_id))
    active.sort(key=lambda r: r["timestamp"])
    return active


def _client_cell(cell: Dict[str, Any], show_all: bool) -> Dict[str, Any]:
    view = dict(cell)
    if not (cell["isRevealed"] or show_all):
        for key in _HIDDEN_CELL_KEYS:
            view.pop(key, None)
    return view


def to_client_view(room: Dict[str, Any], now_ms: int, ttl_ms: int) -> Dict[str, Any]:
    mode = get_mode(room["mode"])
    board = room.get("board")
    show_all = room.get("gameState") in (WON, LOST)
    event = room.get("damageEvent")
    return {
        "players": room.get("players") or {},
        "board": [[_client_cell(c, show_all) for c in row] for row in board] if board else None,
        "gameState": room.get("gameState", WAITING),
        "mode": room["mode"],
        "firstClick": room.get("firstClick", True),
        "hp": room.get("hp", mode.hp),
        "maxHp": room.get("maxHp", mode.hp),
        "level": room.get("level", 1),
        "exp": room.get("exp", 0),
        "expToNext": mode.exp_to_next_level(room.get("level", 1)),
        "time": room.get("time", 0),
        "timerRunning": room.get("timerRunning", False),
        "remainingByLevel": {str(lv): n for lv, n in remaining_by_level(board, mode.max_level).items()},
        "ripples": active_ripples(room.get("ripples"), now_ms, ttl_ms),
        "damageEvent": event if is_fresh(event, now_ms, ttl_ms) else None,
    }
