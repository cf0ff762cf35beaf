"""
Actor Module
Actor creation and the requirement context built from an actor's state.
"""

import logging
import time
from typing import Dict, Iterable, Mapping, Optional, Sequence

from taskloop.errors import UnknownActor
from taskloop.models import Actor, ActorSnapshot
from taskloop.registry import DefinitionRegistry
from taskloop.storage import Storage
from taskloop.systems.inventory import to_int, totals_from_stacks
from taskloop.systems.requirements import EvaluationContext
from taskloop.systems.schedule import validate_blocks

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


def create_actor(
    storage: Storage,
    registry: DefinitionRegistry,
    name: str,
    ability_scores: Optional[Mapping[str, int]] = None,
    flags: Iterable[str] = (),
    schedule_blocks: Optional[Sequence[str]] = None,
    now: Optional[int] = None,
) -> Actor:
    """
    Create a new actor with default ability scores and the default schedule.

    Args:
        storage: Storage backend
        registry: Definition registry (defaults)
        name: Display name
        ability_scores: Overrides on top of the default scores (optional)
        flags: Initial flags
        schedule_blocks: 24 schedule blocks; defaults to the registry's day

    Returns:
        Actor: The stored actor
    """
    scores: Dict[str, int] = dict(registry.default_ability_scores)
    for ability, score in (ability_scores or {}).items():
        scores[ability] = to_int(score)

    if schedule_blocks is None:
        schedule_blocks = registry.default_schedule_blocks
    if schedule_blocks is not None:
        schedule_blocks = validate_blocks(schedule_blocks)

    actor = storage.create_actor(
        name=name,
        ability_scores=scores,
        flags=list(flags),
        schedule_blocks=schedule_blocks,
        created_at=now if now is not None else now_ms(),
    )
    logger.info("Created actor %s (%s)", actor.id, actor.name)
    return actor


def set_actor_flags(
    storage: Storage, actor_id, add: Iterable[str] = (), remove: Iterable[str] = ()
) -> Actor:
    """Add and/or remove flags on an actor."""
    with storage.actor_lock(actor_id):
        actor = storage.get_actor(actor_id)
        if actor is None:
            raise UnknownActor(actor_id)
        removed = set(remove)
        flags = [flag for flag in actor.flags if flag not in removed]
        for flag in add:
            if flag not in flags and flag not in removed:
                flags.append(flag)
        return storage.update_actor(actor_id, flags=flags)


def delete_actor(storage: Storage, actor_id) -> None:
    """Delete an actor together with its tasks, skill progress and inventory."""
    with storage.actor_lock(actor_id):
        storage.delete_actor(actor_id)
    logger.info("Deleted actor %s", actor_id)


# =============================================================================
# Requirement contexts
# =============================================================================

def build_requirement_context(snapshot: ActorSnapshot, registry: DefinitionRegistry) -> EvaluationContext:
    """
    Build the base evaluation context for an actor snapshot.

    Actor and skill levels are derived from XP through the registry's level
    tables; inventory is reduced to per-item totals.
    """
    actor = snapshot.actor
    return EvaluationContext(
        abilities=dict(actor.ability_scores),
        tav_level=registry.actor_level(actor.xp),
        skill_levels={skill_id: registry.skill_level(xp) for skill_id, xp in snapshot.skill_xp.items()},
        inventory=totals_from_stacks(snapshot.stacks),
        flags=set(actor.flags),
    )


def load_requirement_context(storage: Storage, registry: DefinitionRegistry, actor_id) -> EvaluationContext:
    snapshot = storage.load_snapshot(actor_id)
    if snapshot is None:
        raise UnknownActor(actor_id)
    return build_requirement_context(snapshot, registry)


def merge_requirement_contexts(
    base: EvaluationContext,
    override: Optional[EvaluationContext],
    subtract_inventory: bool = False,
) -> EvaluationContext:
    """
    Layer a caller-supplied context over the base one.

    Abilities, skill levels and custom checks take the override's values where
    present; flags are unioned; inventory is added (or subtracted when
    `subtract_inventory` is set). The override's level and fallback resolver
    win when given.

    Args:
        base: Context built from stored state
        override: Extra context from the caller, or None
        subtract_inventory: Subtract the override's inventory instead of adding it

    Returns:
        EvaluationContext: A new context; neither input is modified
    """
    if override is None:
        return EvaluationContext(
            abilities=dict(base.abilities),
            tav_level=base.tav_level,
            skill_levels=dict(base.skill_levels),
            inventory=dict(base.inventory),
            flags=set(base.flags),
            custom_checks=dict(base.custom_checks),
            resolve_custom=base.resolve_custom,
        )

    sign = -1 if subtract_inventory else 1
    inventory = dict(base.inventory)
    for item_id, qty in (override.inventory or {}).items():
        inventory[item_id] = inventory.get(item_id, 0) + sign * to_int(qty)

    return EvaluationContext(
        abilities={**base.abilities, **(override.abilities or {})},
        tav_level=override.tav_level if override.tav_level is not None else base.tav_level,
        skill_levels={**base.skill_levels, **(override.skill_levels or {})},
        inventory=inventory,
        flags=set(base.flags) | set(override.flags or ()),
        custom_checks={**base.custom_checks, **(override.custom_checks or {})},
        resolve_custom=override.resolve_custom or base.resolve_custom,
    )
