"""
Requirement Evaluation Module
A small declarative rule language used to gate adding and executing tasks.

Requirement trees are built from frozen node classes (one per operator) and
evaluated against an EvaluationContext. Evaluation is pure: the same tree and
context always give the same answer, and a well-formed tree never raises.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Set, Tuple, Union

logger = logging.getLogger(__name__)


# =============================================================================
# Node types
# =============================================================================

@dataclass(frozen=True)
class AbilityMin:
    ability: str
    value: int


@dataclass(frozen=True)
class TavLevelMin:
    level: int


@dataclass(frozen=True)
class SkillLevelMin:
    skill_id: str
    level: int


@dataclass(frozen=True)
class ItemRequired:
    item_id: str
    quantity: int


@dataclass(frozen=True)
class FlagPresent:
    flag_id: str


@dataclass(frozen=True)
class Custom:
    name: str


@dataclass(frozen=True)
class AllOf:
    requirements: Tuple["Requirement", ...] = ()


@dataclass(frozen=True)
class AnyOf:
    requirements: Tuple["Requirement", ...] = ()


@dataclass(frozen=True)
class Not:
    requirement: "Requirement"


Requirement = Union[
    AbilityMin, TavLevelMin, SkillLevelMin, ItemRequired, FlagPresent, Custom, AllOf, AnyOf, Not
]

# A bare sequence of nodes is an implicit AND.
RequirementTree = Union[Requirement, Sequence[Requirement]]


# =============================================================================
# Evaluation context
# =============================================================================

CustomCheck = Union[bool, Callable[["EvaluationContext"], bool]]
CustomResolver = Callable[[str, "EvaluationContext"], Optional[bool]]


@dataclass
class EvaluationContext:
    """
    Read-only view of an actor used while evaluating requirements.

    Attributes:
        abilities: Ability scores keyed by short name (str, dex, ...)
        tav_level: Derived actor level; None means "level 1"
        skill_levels: Derived level per skill id
        inventory: Total quantity per item id
        flags: Flags currently held by the actor
        custom_checks: Named overrides, either a literal bool or a predicate
        resolve_custom: Fallback resolver for custom checks not named above
    """
    abilities: Dict[str, int] = field(default_factory=dict)
    tav_level: Optional[int] = None
    skill_levels: Dict[str, int] = field(default_factory=dict)
    inventory: Dict[str, int] = field(default_factory=dict)
    flags: Set[str] = field(default_factory=set)
    custom_checks: Dict[str, CustomCheck] = field(default_factory=dict)
    resolve_custom: Optional[CustomResolver] = None

    def with_flag(self, flag: Optional[str]) -> "EvaluationContext":
        """Return a shallow copy that also holds `flag` (no-op for None)."""
        if not flag or flag in self.flags:
            return self
        return replace(self, flags=set(self.flags) | {flag})


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


# =============================================================================
# Evaluation
# =============================================================================

def evaluate_requirements(requirements: Optional[RequirementTree], context: EvaluationContext) -> bool:
    """
    Evaluate a requirement tree (or a bare list, treated as AND).

    Args:
        requirements: A node, a sequence of nodes, or None
        context: Evaluation context for the actor

    Returns:
        bool: True when every requirement holds. Empty/None is vacuously True.
    """
    if requirements is None:
        return True
    if isinstance(requirements, (list, tuple)):
        return all(evaluate_requirement(node, context) for node in requirements)
    return evaluate_requirement(requirements, context)


def evaluate_requirement(node: Requirement, context: EvaluationContext) -> bool:
    """Evaluate a single node. Unknown node types are a programming error."""
    if isinstance(node, (list, tuple)):
        return evaluate_requirements(node, context)

    if isinstance(node, AbilityMin):
        score = _as_int((context.abilities or {}).get(node.ability, 0))
        return score >= node.value

    if isinstance(node, TavLevelMin):
        level = context.tav_level if context.tav_level is not None else 1
        return _as_int(level, 1) >= node.level

    if isinstance(node, SkillLevelMin):
        level = _as_int((context.skill_levels or {}).get(node.skill_id, 0))
        return level >= node.level

    if isinstance(node, ItemRequired):
        held = _as_int((context.inventory or {}).get(node.item_id, 0))
        return held >= node.quantity

    if isinstance(node, FlagPresent):
        return node.flag_id in (context.flags or ())

    if isinstance(node, Custom):
        return _evaluate_custom(node.name, context)

    if isinstance(node, AllOf):
        return all(evaluate_requirement(child, context) for child in node.requirements)

    if isinstance(node, AnyOf):
        return any(evaluate_requirement(child, context) for child in node.requirements)

    if isinstance(node, Not):
        return not evaluate_requirement(node.requirement, context)

    raise TypeError(f"Unsupported requirement node: {node!r}")


def _evaluate_custom(name: str, context: EvaluationContext) -> bool:
    checks = context.custom_checks or {}
    check = checks.get(name)

    if check is not None:
        if callable(check):
            return _call_check(name, lambda: check(context))
        return bool(check)

    if context.resolve_custom is not None:
        return _call_check(name, lambda: context.resolve_custom(name, context))

    # Unresolved custom checks fail closed.
    return False


def _call_check(name: str, call: Callable[[], Any]) -> bool:
    try:
        return bool(call())
    except Exception as e:
        logger.warning("Custom check %r raised %s; treating as unmet", name, e)
        return False


# =============================================================================
# Parsing from definition data
# =============================================================================

def parse_requirements(data: Any) -> Tuple[Requirement, ...]:
    """
    Parse a list of requirement mappings (as found in YAML) into nodes.

    Args:
        data: None, a single mapping, or a list of mappings

    Returns:
        Tuple of parsed nodes (an implicit AND)

    Raises:
        ValueError: If a node has an unknown `op` or missing fields
    """
    if data is None:
        return ()
    if isinstance(data, Mapping):
        return (parse_requirement(data),)
    if isinstance(data, (list, tuple)):
        return tuple(parse_requirement(entry) for entry in data)
    raise ValueError(f"Requirements must be a list of mappings, got {type(data).__name__}")


def parse_requirement(data: Any) -> Requirement:
    """Parse one `{op: ...}` mapping. A nested list becomes an AllOf."""
    if isinstance(data, (list, tuple)):
        return AllOf(parse_requirements(data))
    if not isinstance(data, Mapping):
        raise ValueError(f"Requirement must be a mapping, got {data!r}")

    op = data.get("op")
    try:
        if op == "ability_min":
            return AbilityMin(ability=str(data["ability"]), value=int(data["value"]))
        if op == "tav_level_min":
            return TavLevelMin(level=int(data["level"]))
        if op == "skill_level_min":
            return SkillLevelMin(skill_id=str(data["skill_id"]), level=int(data["level"]))
        if op == "item_required":
            return ItemRequired(item_id=str(data["item_id"]), quantity=int(data.get("quantity", 1)))
        if op == "flag_present":
            return FlagPresent(flag_id=str(data["flag_id"]))
        if op == "custom":
            return Custom(name=str(data["name"]))
        if op == "and":
            return AllOf(parse_requirements(data.get("requirements") or []))
        if op == "or":
            return AnyOf(parse_requirements(data.get("requirements") or []))
        if op == "not":
            return Not(parse_requirement(data["requirement"]))
    except KeyError as e:
        raise ValueError(f"Requirement {op!r} is missing field {e.args[0]!r}") from e

    raise ValueError(f"Unknown requirement op: {op!r}")
