"""
Completion Effect Module
Reward fragments (XP and inventory deltas) and the rule that combines them.

A finished task can be rewarded from up to three places: the skill's base
effect, the skill's override for that specific target, and the target's own
effect. They are summed, never chosen between.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

from taskloop.systems.inventory import to_int


@dataclass(frozen=True)
class CompletionEffect:
    """
    One reward fragment.

    Attributes:
        actor_xp: Experience added to the actor
        skill_xp: Experience added to the completing skill
        inventory: item_id -> signed quantity change
    """
    actor_xp: int = 0
    skill_xp: int = 0
    inventory: Mapping[str, int] = field(default_factory=dict)


def merge_completion_effects(*fragments: Optional[CompletionEffect]) -> Optional[CompletionEffect]:
    """
    Sum any number of optional fragments.

    Numeric fields and per-item inventory deltas are added up; entries whose
    total is exactly zero are dropped afterwards.

    Returns:
        CompletionEffect, or None when nothing non-zero remains
    """
    actor_xp = 0
    skill_xp = 0
    inventory: Dict[str, int] = {}

    for fragment in fragments:
        if fragment is None:
            continue
        actor_xp += fragment.actor_xp
        skill_xp += fragment.skill_xp
        for item_id, delta in fragment.inventory.items():
            inventory[item_id] = inventory.get(item_id, 0) + delta

    inventory = {item_id: delta for item_id, delta in inventory.items() if delta != 0}
    if actor_xp == 0 and skill_xp == 0 and not inventory:
        return None
    return CompletionEffect(actor_xp=actor_xp, skill_xp=skill_xp, inventory=inventory)


def resolve_completion_effect(skill, target_id: str, target=None) -> Optional[CompletionEffect]:
    """
    Merged reward for `skill` finishing on `target_id`.

    Args:
        skill: Skill definition (completion_effect, target_overrides)
        target_id: Target id the task ran against
        target: Target definition, or None for the targetless sentinel

    Returns:
        Optional[CompletionEffect]: Skill base + per-target override + target effect
    """
    override = skill.target_overrides.get(target_id) if skill.target_overrides else None
    target_effect = target.completion_effect if target is not None else None
    return merge_completion_effects(skill.completion_effect, override, target_effect)


def parse_completion_effect(data: Any) -> Optional[CompletionEffect]:
    """Build a fragment from a YAML mapping ({actor_xp, skill_xp, inventory})."""
    if not data:
        return None
    if not isinstance(data, Mapping):
        raise ValueError(f"Completion effect must be a mapping, got {data!r}")

    raw_inventory = data.get("inventory") or {}
    if not isinstance(raw_inventory, Mapping):
        raise ValueError(f"Completion effect inventory must be a mapping, got {raw_inventory!r}")

    return CompletionEffect(
        actor_xp=to_int(data.get("actor_xp", 0)),
        skill_xp=to_int(data.get("skill_xp", 0)),
        inventory={str(item_id): to_int(qty) for item_id, qty in raw_inventory.items()},
    )
