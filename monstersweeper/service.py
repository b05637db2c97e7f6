from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple
import logging
import random
import threading
import time

from . import rooms as rules
from .modes import DEFAULT_MODE, get_mode
from .rooms import PLAYING


logger = logging.getLogger("uvicorn.error")

DEFAULT_EFFECT_TTL_MS = 3000
RIPPLE_REPEAT_S = 1.0


def _now_ms() -> int:
    return int(time.time() * 1000)


class ThreadingScheduler:
    """Runs delayed follow-up writes on daemon timer threads."""

    def call_later(self, delay_s: float, fn: Callable[[], None]):
        timer = threading.Timer(delay_s, fn)
        timer.daemon = True
        timer.start()
        return timer


@dataclass(frozen=True)
class ActionResult:
    committed: bool
    value: Optional[Dict[str, Any]] = None
    effects: Dict[str, Any] = field(default_factory=dict)


class RoomService:
    """Applies player actions to room documents through store transactions.

    Only this class writes ``board``, ``gameState``, ``hp``, ``level``,
    ``exp`` and ``time``. Effect records are written after a commit, from the
    before/after pair of the attempt that won.
    """

    def __init__(
        self,
        store: Any,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], int]] = None,
        scheduler: Optional[Any] = None,
        effect_ttl_ms: int = DEFAULT_EFFECT_TTL_MS,
    ) -> None:
        self.store = store
        self.rng = rng if rng is not None else random.Random()
        self.clock = clock or _now_ms
        self.scheduler = scheduler or ThreadingScheduler()
        self.effect_ttl_ms = effect_ttl_ms

    @staticmethod
    def _room_path(room_id: str) -> str:
        return f"rooms/{room_id}"

    @staticmethod
    def _cell_path(room_id: str, row: int, col: int) -> str:
        return f"rooms/{room_id}/board/{row}/{col}"

    def get_room(self, room_id: str) -> Dict[str, Any]:
        room_id = rules.normalize_room_id(room_id)
        room = self.store.get(self._room_path(room_id))
        if not room:
            raise KeyError("room_not_found")
        return room

    def view(self, room_id: str) -> Dict[str, Any]:
        return rules.to_client_view(self.get_room(room_id), self.clock(), self.effect_ttl_ms)

    def to_view(self, room: Dict[str, Any]) -> Dict[str, Any]:
        return rules.to_client_view(room, self.clock(), self.effect_ttl_ms)

    def subscribe(self, room_id: str, callback: Callable[[Optional[Dict[str, Any]]], None]) -> Callable[[], None]:
        room_id = rules.normalize_room_id(room_id)

        def _on_change(room):
            callback(self.to_view(room) if room else None)

        return self.store.subscribe(self._room_path(room_id), _on_change)

    # Lobby

    def create_room(self, player_name: str, mode: str = DEFAULT_MODE) -> Tuple[str, Dict[str, Any]]:
        name = rules.normalize_name(player_name)
        get_mode(mode)
        room_id = rules.generate_room_id(self.rng)
        room = rules.new_room(name, mode, self.clock())
        self.store.set(self._room_path(room_id), room)
        logger.info(f"[monstersweeper] room created room_id={room_id} host={name} mode={mode}")
        return room_id, room

    def join_room(self, room_id: str, player_name: str) -> Dict[str, Any]:
        name = rules.normalize_name(player_name)
        room_id = rules.normalize_room_id(room_id)
        if not self.store.get(self._room_path(room_id)):
            raise KeyError("room_not_found")
        self.store.transact(f"{self._room_path(room_id)}/players", lambda players: rules.add_player(players, name))
        logger.info(f"[monstersweeper] player joined room_id={room_id} player={name}")
        return self.get_room(room_id)

    def leave_room(self, room_id: str, player_name: str) -> None:
        name = rules.normalize_name(player_name)
        room_id = rules.normalize_room_id(room_id)
        self.store.set(f"{self._room_path(room_id)}/players/{name}", None)
        logger.info(f"[monstersweeper] player left room_id={room_id} player={name}")

    # Room-wide transitions

    def _transact_room(self, room_id: str, fn) -> Dict[str, Any]:
        room_id = rules.normalize_room_id(room_id)
        result = self.store.transact(self._room_path(room_id), fn)
        if not result.committed or not result.after:
            raise KeyError("room_not_found")
        return result.after

    def start_game(self, room_id: str, player_name: str) -> Dict[str, Any]:
        name = rules.normalize_name(player_name)
        now = self.clock()
        room = self._transact_room(room_id, lambda r: rules.start_game(r, name, self.rng, now))
        logger.info(f"[monstersweeper] game state room_id={room_id} state={room.get('gameState')} mode={room.get('mode')}")
        return room

    def reset_game(self, room_id: str) -> Dict[str, Any]:
        room = self._transact_room(room_id, rules.reset_game)
        logger.info(f"[monstersweeper] game reset room_id={room_id} state={room.get('gameState')}")
        return room

    def change_mode(self, room_id: str, mode: str) -> Dict[str, Any]:
        get_mode(mode)
        return self._transact_room(room_id, lambda r: rules.change_mode(r, mode))

    def tick(self, room_id: str) -> ActionResult:
        now = self.clock()
        try:
            result = self.store.transact(
                self._room_path(rules.normalize_room_id(room_id)), lambda r: rules.tick(r, now)
            )
        except Exception:
            logger.exception(f"[monstersweeper] tick failed room_id={room_id}")
            return ActionResult(False)
        return ActionResult(result.committed, result.after)

    def click(self, room_id: str, player_name: str, row: int, col: int) -> ActionResult:
        name = rules.normalize_name(player_name)
        room_id = rules.normalize_room_id(room_id)
        path = self._room_path(room_id)
        try:
            result = self.store.transact(path, lambda r: rules.click(r, row, col, name, self.rng))
        except Exception:
            logger.exception(f"[monstersweeper] click dropped room_id={room_id} player={name} row={row} col={col}")
            return ActionResult(False)
        if not result.committed:
            return ActionResult(False)

        effects = rules.diff_click(result.before, result.after, row, col)
        event = rules.damage_event(effects, row, col, self.clock())
        if event is not None:
            try:
                self.store.set(f"{path}/damageEvent", event)
            except Exception:
                logger.exception(f"[monstersweeper] damage event write failed room_id={room_id}")
        if effects["won"] or effects["lost"]:
            logger.info(
                f"[monstersweeper] game over room_id={room_id} state={result.after.get('gameState')} "
                f"time={result.after.get('time')} level={result.after.get('level')}"
            )
        return ActionResult(True, result.after, effects)

    # Per-cell annotations

    def _playing_room(self, room_id: str) -> Optional[Dict[str, Any]]:
        room = self.store.get(self._room_path(room_id))
        if not room or room.get("gameState") != PLAYING or not room.get("board"):
            return None
        return room

    def _transact_cell(self, room_id: str, row: int, col: int, fn) -> ActionResult:
        try:
            result = self.store.transact(self._cell_path(room_id, row, col), fn)
        except Exception:
            logger.exception(f"[monstersweeper] cell update dropped room_id={room_id} row={row} col={col}")
            return ActionResult(False)
        return ActionResult(result.committed, result.after)

    def cycle_mark(self, room_id: str, player_name: str, row: int, col: int) -> ActionResult:
        name = rules.normalize_name(player_name)
        room_id = rules.normalize_room_id(room_id)
        room = self._playing_room(room_id)
        if room is None:
            return ActionResult(False)
        max_level = get_mode(room["mode"]).max_level
        return self._transact_cell(room_id, row, col, lambda c: rules.cycle_mark(c, max_level, name))

    def set_mark(self, room_id: str, player_name: str, row: int, col: int, value: int) -> ActionResult:
        name = rules.normalize_name(player_name)
        room_id = rules.normalize_room_id(room_id)
        room = self._playing_room(room_id)
        if room is None:
            return ActionResult(False)
        if not 0 <= value <= get_mode(room["mode"]).max_level:
            raise ValueError("invalid_mark")
        return self._transact_cell(room_id, row, col, lambda c: rules.set_mark(c, value, name))

    def clear_mark(self, room_id: str, row: int, col: int) -> ActionResult:
        room_id = rules.normalize_room_id(room_id)
        if self._playing_room(room_id) is None:
            return ActionResult(False)
        return self._transact_cell(room_id, row, col, rules.clear_mark)

    def toggle_show_number(self, room_id: str, row: int, col: int) -> ActionResult:
        room_id = rules.normalize_room_id(room_id)
        if self._playing_room(room_id) is None:
            return ActionResult(False)
        return self._transact_cell(room_id, row, col, rules.toggle_show_number)

    def toggle_pin(self, room_id: str, player_name: str, row: int, col: int) -> ActionResult:
        name = rules.normalize_name(player_name)
        room_id = rules.normalize_room_id(room_id)
        room = self._playing_room(room_id)
        if room is None:
            return ActionResult(False)
        result = self._transact_cell(room_id, row, col, lambda c: rules.toggle_pin(c, name))
        if result.committed and result.value and result.value.get("pinned"):
            color = rules.color_for(room.get("players"), name)
            self._write_ripple(room_id, row, col, color)
            self.scheduler.call_later(RIPPLE_REPEAT_S, lambda: self._write_ripple(room_id, row, col, color))
        return result

    def _write_ripple(self, room_id: str, row: int, col: int, color: str) -> None:
        ripple_id, record = rules.new_ripple(row, col, color, self.clock())
        path = f"{self._room_path(room_id)}/ripples/{ripple_id}"
        try:
            self.store.set(path, record)
        except Exception:
            logger.exception(f"[monstersweeper] ripple write failed room_id={room_id}")
            return
        self.scheduler.call_later(self.effect_ttl_ms / 1000.0, lambda: self._expire(path))

    def _expire(self, path: str) -> None:
        try:
            self.store.set(path, None)
        except Exception:
            logger.exception(f"[monstersweeper] expiry failed path={path}")
