from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


HP_POOL = "hp_pool"
THRESHOLD = "threshold"

EXPONENTIAL = "exponential"
LINEAR = "linear"

DEFAULT_MODE = "normal"
MISSING_EXP_THRESHOLD = 9999

# Right-press held at least this long clears a mark instead of cycling it.
LONG_PRESS_MS = 300

PLAYER_COLORS = (
    "#3B82F6",
    "#EF4444",
    "#22C55E",
    "#F59E0B",
    "#8B5CF6",
    "#EC4899",
    "#06B6D4",
    "#F97316",
)

MONSTER_NAMES = {
    1: "caterpillar",
    2: "crab",
    3: "wolf",
    4: "eagle",
    5: "lion",
    6: "ghost",
    7: "ogre",
    8: "unicorn",
    9: "dragon",
}


@dataclass(frozen=True)
class ModeConfig:
    name: str
    rows: int
    cols: int
    max_level: int
    hp: int
    monsters: Dict[int, int]
    exp_table: Optional[Tuple[int, ...]] = None
    combat: str = HP_POOL
    exp_reward: str = EXPONENTIAL
    description: str = field(default="", compare=False)

    @property
    def total_monsters(self) -> int:
        return sum(self.monsters.get(lv, 0) for lv in range(1, self.max_level + 1))

    def exp_to_next_level(self, level: int) -> int:
        """Cumulative experience needed to go from ``level`` to ``level + 1``."""
        if self.exp_table is None:
            return 2 ** (level - 1)
        if 0 <= level < len(self.exp_table):
            return self.exp_table[level]
        return MISSING_EXP_THRESHOLD

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "description": self.description,
            "rows": self.rows,
            "cols": self.cols,
            "maxLevel": self.max_level,
            "hp": self.hp,
            "monsters": {str(lv): n for lv, n in sorted(self.monsters.items())},
            "expTable": list(self.exp_table) if self.exp_table is not None else None,
            "combat": self.combat,
            "expReward": self.exp_reward,
        }


GAME_MODES: Dict[str, ModeConfig] = {
    "easy": ModeConfig(
        name="EASY",
        description="for beginners",
        rows=16,
        cols=16,
        max_level=5,
        hp=10,
        monsters={1: 10, 2: 8, 3: 6, 4: 4, 5: 2},
        exp_table=(0, 7, 20, 50, 82, 999),
    ),
    "normal": ModeConfig(
        name="NORMAL",
        description="once you are used to it",
        rows=16,
        cols=30,
        max_level=5,
        hp=10,
        monsters={1: 33, 2: 27, 3: 20, 4: 13, 5: 6},
        exp_table=(0, 10, 50, 167, 271, 999),
    ),
    "extreme": ModeConfig(
        name="EXTREME",
        description="very hard",
        rows=16,
        cols=30,
        max_level=5,
        hp=10,
        monsters={1: 25, 2: 25, 3: 25, 4: 25, 5: 25},
        exp_table=(0, 10, 50, 167, 271, 999),
    ),
    "huge": ModeConfig(
        name="HUGE",
        description="bigger map, more monsters",
        rows=25,
        cols=50,
        max_level=9,
        hp=30,
        monsters={1: 50, 2: 46, 3: 39, 4: 36, 5: 29, 6: 24, 7: 18, 8: 13, 9: 1},
        exp_table=(0, 10, 90, 250, 500, 850, 1300, 1850, 2500, 9999),
    ),
    "hugeExtreme": ModeConfig(
        name="HUGE×EX",
        description="better not",
        rows=25,
        cols=50,
        max_level=9,
        hp=10,
        monsters={lv: 36 for lv in range(1, 10)},
        exp_table=(0, 3, 10, 150, 400, 750, 1200, 1750, 2400, 9999),
    ),
    "classic": ModeConfig(
        name="CLASSIC",
        description="one hit per monster, outlevel them to take no damage",
        rows=16,
        cols=16,
        max_level=5,
        hp=10,
        monsters={1: 10, 2: 8, 3: 6, 4: 4, 5: 2},
        exp_table=(0, 7, 20, 50, 82, 999),
        combat=THRESHOLD,
        exp_reward=LINEAR,
    ),
    "rush": ModeConfig(
        name="RUSH",
        description="one hit per monster, fast levels",
        rows=16,
        cols=30,
        max_level=5,
        hp=10,
        monsters={1: 33, 2: 27, 3: 20, 4: 13, 5: 6},
        exp_table=None,
        combat=THRESHOLD,
        exp_reward=EXPONENTIAL,
    ),
}


def get_mode(mode_id: str) -> ModeConfig:
    try:
        return GAME_MODES[mode_id]
    except KeyError:
        raise ValueError("unknown_mode") from None
