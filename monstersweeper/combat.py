"""Monster combat and shared progression.

Two policies exist and they are not interchangeable:

* ``HpPoolPolicy``: a monster has hit points equal to its level. Every click
  removes the party level from them; a monster that survives the hit strikes
  back for its own level. The killing blow draws no counter-attack.
* ``ThresholdPolicy``: a monster falls to a single click and deals
  ``max(0, monster level - party level)`` damage on the way out.

Experience and levels are shared by the whole room and only ever grow until
the room is reset.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .modes import EXPONENTIAL, HP_POOL, THRESHOLD, LINEAR, ModeConfig


@dataclass(frozen=True)
class CombatOutcome:
    damage: int
    defeated: bool
    exp_gained: int
    levels_gained: int = 0


def exp_for_monster(monster_level: int, reward: str = EXPONENTIAL) -> int:
    if reward == LINEAR:
        return monster_level
    return 2 ** (monster_level - 1)


def apply_experience(progress: Dict[str, Any], gained: int, mode: ModeConfig) -> int:
    """Add ``gained`` to the shared pool and level up as far as it allows."""
    progress["exp"] = int(progress.get("exp", 0)) + max(0, gained)
    level = int(progress.get("level", 1))
    start = level
    while level < mode.max_level and progress["exp"] >= mode.exp_to_next_level(level):
        level += 1
    progress["level"] = level
    return level - start


def apply_damage(progress: Dict[str, Any], damage: int) -> int:
    hp = max(0, int(progress.get("hp", 0)) - max(0, damage))
    progress["hp"] = hp
    return hp


class HpPoolPolicy:
    name = HP_POOL

    def can_engage(self, cell: Dict[str, Any]) -> bool:
        if not cell["isMonster"] or cell.get("isDead"):
            return False
        return not cell["isRevealed"] or cell.get("monsterHp", 0) > 0

    def strike(self, cell: Dict[str, Any], party_level: int, mode: ModeConfig) -> CombatOutcome:
        monster_level = cell["monsterLevel"]
        cell["monsterHp"] = cell.get("monsterHp", monster_level) - party_level
        if cell["monsterHp"] <= 0:
            cell["monsterHp"] = 0
            cell["isDead"] = True
            return CombatOutcome(0, True, exp_for_monster(monster_level, mode.exp_reward))
        return CombatOutcome(monster_level, False, 0)

    def is_cleared(self, cell: Dict[str, Any]) -> bool:
        return bool(cell.get("isDead"))


class ThresholdPolicy:
    name = THRESHOLD

    def can_engage(self, cell: Dict[str, Any]) -> bool:
        return cell["isMonster"] and not cell.get("isDead")

    def strike(self, cell: Dict[str, Any], party_level: int, mode: ModeConfig) -> CombatOutcome:
        monster_level = cell["monsterLevel"]
        cell["monsterHp"] = 0
        cell["isDead"] = True
        damage = max(0, monster_level - party_level)
        return CombatOutcome(damage, True, exp_for_monster(monster_level, mode.exp_reward))

    def is_cleared(self, cell: Dict[str, Any]) -> bool:
        return bool(cell["isRevealed"])


_POLICIES = {
    HP_POOL: HpPoolPolicy(),
    THRESHOLD: ThresholdPolicy(),
}


def policy_for(mode: ModeConfig):
    try:
        return _POLICIES[mode.combat]
    except KeyError:
        raise ValueError("unknown_combat_policy") from None


def resolve_attack(progress: Dict[str, Any], cell: Dict[str, Any], mode: ModeConfig, attacker: str) -> CombatOutcome:
    """Run one click against a monster cell, updating ``progress`` in place.

    ``progress`` is the room document (or anything carrying ``hp``, ``level``
    and ``exp``). The caller must have checked ``can_engage`` first.
    """
    policy = policy_for(mode)
    cell["isRevealed"] = True
    cell["revealedBy"] = attacker
    outcome = policy.strike(cell, int(progress.get("level", 1)), mode)
    levels = 0
    if outcome.exp_gained:
        levels = apply_experience(progress, outcome.exp_gained, mode)
    if outcome.damage:
        apply_damage(progress, outcome.damage)
    return CombatOutcome(outcome.damage, outcome.defeated, outcome.exp_gained, levels)
