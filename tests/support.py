"""Shared builders for the test suites."""

from taskloop.registry import registry_from_yaml
from taskloop.systems.requirements import EvaluationContext

WORLD_YAML = """
defaults:
  ability_scores: {str: 10, dex: 10, con: 10, int: 10, wis: 10, cha: 10}
levels:
  actor: [0, 10, 50]
  skill: [0, 20, 60]
items:
  - {id: log, name: Log, stack_limit: 99}
  - {id: torch, name: Torch, stack_limit: 5}
  - {id: plank, name: Plank, stack_limit: 50}
targets:
  - id: small_tree
    name: Small Tree
    skills: [logging, survey]
    add_requirements:
      - {op: custom, name: forest_access}
    completion_effect: {actor_xp: 3, skill_xp: 10, inventory: {log: 1}}
  - id: big_tree
    name: Big Tree
    skills: [logging]
    execute_requirements:
      - {op: ability_min, ability: str, value: 12}
    completion_effect: {actor_xp: 4, skill_xp: 12, inventory: {log: 2}}
  - id: plank
    name: Plank
    skills: [wood_craft]
    add_requirements:
      - {op: custom, name: sawmill_ready}
    completion_effect: {skill_xp: 15, inventory: {log: -2, plank: 1}}
  - id: forest_edge
    name: Forest Edge
    skills: [survey]
    add_requirements:
      - {op: custom, name: forest_access}
      - {op: item_required, item_id: torch, quantity: 1}
    completion_effect: {actor_xp: 5}
  - id: mountain_pass
    name: Mountain Pass
    skills: [survey]
    execute_requirements:
      - {op: ability_min, ability: con, value: 11}
      - {op: custom, name: weather_clear}
    completion_effect: {actor_xp: 7}
skills:
  - id: logging
    name: Logging
    priority: 5
    duration: 2000
    target_ids: [small_tree, big_tree]
    execute_requirements:
      - {op: ability_min, ability: str, value: 10}
      - {op: custom, name: logging_allowed}
      - {op: flag_present, flag_id: schedule_block_work}
  - id: wood_craft
    name: Woodcraft
    priority: 6
    duration: 3000
    target_ids: [plank]
    add_requirements:
      - {op: skill_level_min, skill_id: logging, level: 2}
      - {op: custom, name: sawmill_ready}
    execute_requirements:
      - {op: item_required, item_id: log, quantity: 2}
  - id: idle
    name: Idle
    priority: 5
    duration: 1000
  - id: survey
    name: Survey
    priority: 3
    duration: 4000
    target_ids: [forest_edge, mountain_pass]
    execute_requirements:
      - op: or
        requirements:
          - {op: custom, name: scout_ready}
          - {op: skill_level_min, skill_id: logging, level: 3}
"""


def make_registry(text: str = WORLD_YAML):
    return registry_from_yaml(text)


def allow(*names, flags=()):
    """Override context that satisfies the named custom checks."""
    return EvaluationContext(custom_checks={name: True for name in names}, flags=set(flags))


class FixedSchedule:
    """Schedule collaborator that always reports the same block flag."""

    def __init__(self, flag="schedule_block_work"):
        self.flag = flag
        self.calls = []

    def current_block_flag(self, actor_id, timestamp):
        self.calls.append((actor_id, timestamp))
        return self.flag
