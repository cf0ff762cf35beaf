"""
Definition Registry Module (Data-Driven Architecture)
Static skill / target / item definitions loaded once from YAML.

The registry is an immutable value: build it with load_registry() at startup
and pass it to whatever needs it. Nothing mutates it after load, so it is safe
to share between threads.
"""

import logging
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from config import settings
from taskloop.errors import DefinitionError, UnknownItem
from taskloop.models import NO_TARGET
from taskloop.systems.effects import CompletionEffect, parse_completion_effect
from taskloop.systems.inventory import to_int
from taskloop.systems.levels import level_from_xp
from taskloop.systems.requirements import Requirement, parse_requirements
from taskloop.systems.schedule import validate_blocks

logger = logging.getLogger(__name__)

ABILITY_NAMES = ("str", "dex", "con", "int", "wis", "cha")


@dataclass(frozen=True)
class SkillDefinition:
    id: str
    name: str
    priority: int
    duration: int  # milliseconds
    target_ids: Tuple[str, ...] = (NO_TARGET,)
    add_requirements: Tuple[Requirement, ...] = ()
    execute_requirements: Tuple[Requirement, ...] = ()
    completion_effect: Optional[CompletionEffect] = None
    target_overrides: Mapping[str, CompletionEffect] = field(default_factory=dict)
    description: str = ""

    def allows_target(self, target_id: str) -> bool:
        return target_id in self.target_ids


@dataclass(frozen=True)
class TargetDefinition:
    """A thing skills act on. An empty `skills` tuple accepts any skill."""
    id: str
    name: str
    skills: Tuple[str, ...] = ()
    add_requirements: Tuple[Requirement, ...] = ()
    execute_requirements: Tuple[Requirement, ...] = ()
    completion_effect: Optional[CompletionEffect] = None
    description: str = ""

    def allows_skill(self, skill_id: str) -> bool:
        return not self.skills or skill_id in self.skills


@dataclass(frozen=True)
class ItemDefinition:
    id: str
    name: str
    stack_limit: int
    weight: float = 0.0
    value: int = 0
    tags: Tuple[str, ...] = ()


class DefinitionRegistry:
    """
    Read-only lookup tables for skills, targets and items plus the level
    tables and actor defaults.
    """

    def __init__(
        self,
        skills: Mapping[str, SkillDefinition],
        targets: Mapping[str, TargetDefinition],
        items: Mapping[str, ItemDefinition],
        actor_levels: Tuple[int, ...] = (0,),
        skill_levels: Tuple[int, ...] = (0,),
        default_ability_scores: Optional[Mapping[str, int]] = None,
        default_schedule_blocks: Optional[Tuple[str, ...]] = None,
        default_stack_limit: int = settings.DEFAULT_STACK_LIMIT,
    ):
        self.skills = MappingProxyType(dict(skills))
        self.targets = MappingProxyType(dict(targets))
        self.items = MappingProxyType(dict(items))
        self.actor_levels = tuple(actor_levels)
        self.skill_levels = tuple(skill_levels)
        self.default_ability_scores = MappingProxyType(
            dict(default_ability_scores or {name: 10 for name in ABILITY_NAMES})
        )
        self.default_schedule_blocks = tuple(default_schedule_blocks) if default_schedule_blocks else None
        self.default_stack_limit = max(1, int(default_stack_limit))

    def skill(self, skill_id: str) -> Optional[SkillDefinition]:
        return self.skills.get(skill_id)

    def target(self, target_id: str) -> Optional[TargetDefinition]:
        return self.targets.get(target_id)

    def item(self, item_id: str) -> Optional[ItemDefinition]:
        return self.items.get(item_id)

    def require_item(self, item_id: str) -> ItemDefinition:
        item = self.items.get(item_id)
        if item is None:
            raise UnknownItem(item_id)
        return item

    def stack_limit(self, item_id: str) -> int:
        """Stack capacity for an item; unknown items use the default limit."""
        item = self.items.get(item_id)
        return item.stack_limit if item is not None else self.default_stack_limit

    def actor_level(self, xp: int) -> int:
        return level_from_xp(xp, self.actor_levels)

    def skill_level(self, xp: int) -> int:
        return level_from_xp(xp, self.skill_levels)

    def item_name(self, item_id: str) -> str:
        item = self.items.get(item_id)
        return item.name if item is not None else item_id


# =============================================================================
# Loading
# =============================================================================

def load_registry(filepath: Optional[str] = None) -> DefinitionRegistry:
    """
    Load definitions from a YAML file.

    Args:
        filepath: Path to the definitions file (default: settings.DEFINITIONS_PATH)

    Returns:
        DefinitionRegistry

    Raises:
        DefinitionError: If the file is missing, malformed or inconsistent
    """
    filepath = filepath or settings.DEFINITIONS_PATH
    if not os.path.exists(filepath):
        raise DefinitionError(f"Definitions file not found: {filepath}")

    with open(filepath, "r", encoding="utf-8") as f:
        text = f.read()

    registry = registry_from_yaml(text, source=filepath)
    logger.info(
        "Loaded %d skills, %d targets, %d items from %s",
        len(registry.skills), len(registry.targets), len(registry.items), filepath,
    )
    return registry


def registry_from_yaml(text: str, source: str = "<string>") -> DefinitionRegistry:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DefinitionError(f"Malformed YAML in {source}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise DefinitionError(f"Definitions in {source} must be a mapping at top level")
    return registry_from_dict(data)


def registry_from_dict(data: Mapping[str, Any]) -> DefinitionRegistry:
    """Build a registry from already-parsed definition data."""
    try:
        items = _index("item", data.get("items"), _parse_item)
        targets = _index("target", data.get("targets"), _parse_target)
        skills = _index("skill", data.get("skills"), _parse_skill)
    except (ValueError, TypeError, KeyError) as e:
        raise DefinitionError(str(e)) from e

    for skill in skills.values():
        for target_id in skill.target_ids:
            if target_id != NO_TARGET and target_id not in targets:
                raise DefinitionError(f"Skill {skill.id} lists undefined target id: {target_id}")
        effects = [skill.completion_effect, *skill.target_overrides.values()]
        _check_effect_items(f"Skill {skill.id}", effects, items)

    for target in targets.values():
        _check_effect_items(f"Target {target.id}", [target.completion_effect], items)

    defaults = data.get("defaults") or {}
    levels = data.get("levels") or {}

    schedule_blocks = defaults.get("schedule_blocks")
    if schedule_blocks is not None:
        try:
            schedule_blocks = validate_blocks(schedule_blocks)
        except ValueError as e:
            raise DefinitionError(f"Invalid default schedule: {e}") from e

    ability_scores = defaults.get("ability_scores")
    if ability_scores is not None:
        if not isinstance(ability_scores, Mapping):
            raise DefinitionError("defaults.ability_scores must be a mapping")
        ability_scores = {str(name): to_int(score) for name, score in ability_scores.items()}

    return DefinitionRegistry(
        skills=skills,
        targets=targets,
        items=items,
        actor_levels=_thresholds(levels.get("actor")),
        skill_levels=_thresholds(levels.get("skill")),
        default_ability_scores=ability_scores,
        default_schedule_blocks=schedule_blocks,
        default_stack_limit=to_int(defaults.get("stack_limit", settings.DEFAULT_STACK_LIMIT)),
    )


def _index(kind: str, entries: Any, parse) -> Dict[str, Any]:
    indexed: Dict[str, Any] = {}
    for entry in entries or []:
        if not isinstance(entry, Mapping) or "id" not in entry:
            raise ValueError(f"Every {kind} needs an 'id': {entry!r}")
        definition = parse(entry)
        if definition.id in indexed:
            raise ValueError(f"Duplicate {kind} id: {definition.id}")
        indexed[definition.id] = definition
    return indexed


def _check_effect_items(owner: str, effects, items: Mapping[str, ItemDefinition]) -> None:
    for effect in effects:
        if effect is None:
            continue
        for item_id in effect.inventory:
            if item_id not in items:
                raise DefinitionError(f"{owner} completion effect names undefined item id: {item_id}")


def _thresholds(raw: Any) -> Tuple[int, ...]:
    if not raw:
        return (0,)
    return tuple(sorted(to_int(value) for value in raw))


def _parse_item(entry: Mapping[str, Any]) -> ItemDefinition:
    item_id = str(entry["id"])
    return ItemDefinition(
        id=item_id,
        name=str(entry.get("name", item_id)),
        stack_limit=max(1, to_int(entry.get("stack_limit", settings.DEFAULT_STACK_LIMIT))),
        weight=float(entry.get("weight", 0.0)),
        value=to_int(entry.get("value", 0)),
        tags=tuple(entry.get("tags") or ()),
    )


def _parse_target(entry: Mapping[str, Any]) -> TargetDefinition:
    target_id = str(entry["id"])
    return TargetDefinition(
        id=target_id,
        name=str(entry.get("name", target_id)),
        description=str(entry.get("description", "")),
        skills=tuple(str(s) for s in entry.get("skills") or ()),
        add_requirements=parse_requirements(entry.get("add_requirements")),
        execute_requirements=parse_requirements(entry.get("execute_requirements")),
        completion_effect=parse_completion_effect(entry.get("completion_effect")),
    )


def _parse_skill(entry: Mapping[str, Any]) -> SkillDefinition:
    skill_id = str(entry["id"])
    effect_data = dict(entry.get("completion_effect") or {})
    overrides_data = effect_data.pop("target_overrides", None) or {}

    overrides = {}
    for target_id, override in overrides_data.items():
        parsed = parse_completion_effect(override)
        if parsed is not None:
            overrides[str(target_id)] = parsed

    target_ids = tuple(str(t) for t in entry.get("target_ids") or ()) or (NO_TARGET,)

    return SkillDefinition(
        id=skill_id,
        name=str(entry.get("name", skill_id)),
        description=str(entry.get("description", "")),
        priority=to_int(entry.get("priority", settings.DEFAULT_PRIORITY)),
        duration=to_int(entry.get("duration", 0)),
        target_ids=target_ids,
        add_requirements=parse_requirements(entry.get("add_requirements")),
        execute_requirements=parse_requirements(entry.get("execute_requirements")),
        completion_effect=parse_completion_effect(effect_data),
        target_overrides=MappingProxyType(overrides),
    )
