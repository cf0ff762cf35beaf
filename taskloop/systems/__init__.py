"""Rules layer: requirements, inventory stacks, completion effects, levels, schedule."""

from taskloop.systems.requirements import (
    AbilityMin,
    TavLevelMin,
    SkillLevelMin,
    ItemRequired,
    FlagPresent,
    Custom,
    AllOf,
    AnyOf,
    Not,
    Requirement,
    EvaluationContext,
    evaluate_requirement,
    evaluate_requirements,
    parse_requirement,
    parse_requirements,
)
from taskloop.systems.inventory import Inventory, InventoryStack, to_int, totals_from_stacks
from taskloop.systems.effects import (
    CompletionEffect,
    merge_completion_effects,
    resolve_completion_effect,
    parse_completion_effect,
)
from taskloop.systems.levels import level_from_xp
from taskloop.systems.schedule import (
    BlockSchedule,
    block_from_flag,
    ScheduleBlock,
    compute_block_index,
    priority_delta_for_block,
    resolve_block,
    schedule_flag,
    validate_blocks,
)

__all__ = [
    "AbilityMin",
    "TavLevelMin",
    "SkillLevelMin",
    "ItemRequired",
    "FlagPresent",
    "Custom",
    "AllOf",
    "AnyOf",
    "Not",
    "Requirement",
    "EvaluationContext",
    "evaluate_requirement",
    "evaluate_requirements",
    "parse_requirement",
    "parse_requirements",
    "Inventory",
    "InventoryStack",
    "to_int",
    "totals_from_stacks",
    "CompletionEffect",
    "merge_completion_effects",
    "resolve_completion_effect",
    "parse_completion_effect",
    "level_from_xp",
    "BlockSchedule",
    "block_from_flag",
    "ScheduleBlock",
    "compute_block_index",
    "priority_delta_for_block",
    "resolve_block",
    "schedule_flag",
    "validate_blocks",
]
