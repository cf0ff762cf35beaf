"""
Task Queue Module
Add-time validation for new tasks and the eligibility rules shared with the
tick engine.
"""

import logging
from typing import Optional

from config import settings
from taskloop.actors import build_requirement_context, merge_requirement_contexts, now_ms
from taskloop.errors import (
    DisallowedTarget,
    DuplicateTask,
    RequirementsNotMet,
    UnknownActor,
    UnknownSkill,
    UnknownTarget,
)
from taskloop.models import NO_TARGET, Task, TaskStatus
from taskloop.registry import DefinitionRegistry, SkillDefinition
from taskloop.storage import Storage
from taskloop.systems.requirements import EvaluationContext, evaluate_requirements
from taskloop.systems.schedule import BlockSchedule, priority_delta_for_block

logger = logging.getLogger(__name__)


def clamp_priority(value: int) -> int:
    return max(settings.PRIORITY_MIN, min(settings.PRIORITY_MAX, int(value)))


def effective_priority(task: Task, skill: SkillDefinition, block=None) -> int:
    """
    Priority used when choosing what to start next.

    A per-task priority replaces the skill's priority outright; the schedule
    block's delta is added and the result clamped to the allowed range.
    """
    base = task.priority if task.priority is not None else skill.priority
    return clamp_priority(base + priority_delta_for_block(block))


def is_eligible(
    registry: DefinitionRegistry,
    skill: SkillDefinition,
    target_id: str,
    context: EvaluationContext,
) -> bool:
    """Skill execute requirements AND target execute requirements (none for the sentinel)."""
    if not evaluate_requirements(skill.execute_requirements, context):
        return False
    if target_id == NO_TARGET:
        return True
    target = registry.target(target_id)
    if target is None:
        return False
    return evaluate_requirements(target.execute_requirements, context)


def _validate_skill_target(registry: DefinitionRegistry, skill_id: str, target_id: str) -> SkillDefinition:
    skill = registry.skill(skill_id)
    if skill is None:
        raise UnknownSkill(skill_id)
    if not skill.allows_target(target_id):
        raise DisallowedTarget(skill_id, target_id)
    return skill


def add_task(
    storage: Storage,
    registry: DefinitionRegistry,
    actor_id,
    skill_id: str,
    target_id: Optional[str] = None,
    priority: Optional[int] = None,
    context: Optional[EvaluationContext] = None,
    now: Optional[int] = None,
) -> Task:
    """
    Queue a new pending task for an actor.

    Args:
        storage: Storage backend
        registry: Definition registry
        actor_id: Actor to queue the task for
        skill_id: Skill to perform
        target_id: Target to act on (None for targetless skills)
        priority: Optional per-task priority replacing the skill's priority
        context: Extra requirement context merged over the actor's own
        now: Creation time in ms (default: wall clock)

    Returns:
        Task: The stored task

    Raises:
        UnknownActor, UnknownSkill, DisallowedTarget, RequirementsNotMet,
        UnknownTarget, DuplicateTask, ValueError (priority out of range)
    """
    target_id = target_id or NO_TARGET

    with storage.actor_lock(actor_id):
        snapshot = storage.load_snapshot(actor_id)
        if snapshot is None:
            raise UnknownActor(actor_id)
        ctx = merge_requirement_contexts(build_requirement_context(snapshot, registry), context)

        skill = _validate_skill_target(registry, skill_id, target_id)
        if not evaluate_requirements(skill.add_requirements, ctx):
            raise RequirementsNotMet("Skill", skill_id)

        if target_id != NO_TARGET:
            target = registry.target(target_id)
            if target is None:
                raise UnknownTarget(target_id)
            if not target.allows_skill(skill_id):
                raise DisallowedTarget(skill_id, target_id)
            if not evaluate_requirements(target.add_requirements, ctx):
                raise RequirementsNotMet("Target", target_id)

        if any(task.skill_id == skill_id and task.target_id == target_id for task in snapshot.tasks):
            raise DuplicateTask(actor_id, skill_id, target_id)

        if priority is not None:
            if isinstance(priority, bool) or not isinstance(priority, int):
                raise ValueError(f"Task priority must be an integer, got {priority!r}")
            if not settings.PRIORITY_MIN <= priority <= settings.PRIORITY_MAX:
                raise ValueError(
                    f"Task priority must be between {settings.PRIORITY_MIN} and {settings.PRIORITY_MAX}, got {priority}"
                )

        storage.ensure_skill(actor_id, skill_id)
        task = storage.insert_task(Task(
            actor_id=actor_id,
            skill_id=skill_id,
            target_id=target_id,
            status=TaskStatus.PENDING,
            created_at=now if now is not None else now_ms(),
            priority=priority,
        ))

    logger.info("Queued task %s -> %s for actor %s", skill_id, target_id, actor_id)
    return task


def can_execute_task(
    storage: Storage,
    registry: DefinitionRegistry,
    actor_id,
    skill_id: str,
    target_id: Optional[str] = None,
    context: Optional[EvaluationContext] = None,
    now: Optional[int] = None,
    schedule=None,
) -> bool:
    """
    Read-only probe: would this skill/target be allowed to run right now?

    The schedule flag for `now` is included the same way the tick engine
    includes it.

    Raises:
        UnknownActor, UnknownSkill, DisallowedTarget, UnknownTarget
    """
    target_id = target_id or NO_TARGET
    skill = _validate_skill_target(registry, skill_id, target_id)
    if target_id != NO_TARGET and registry.target(target_id) is None:
        raise UnknownTarget(target_id)

    snapshot = storage.load_snapshot(actor_id)
    if snapshot is None:
        raise UnknownActor(actor_id)

    ctx = merge_requirement_contexts(build_requirement_context(snapshot, registry), context)
    at = now if now is not None else now_ms()
    if schedule is None:
        schedule = BlockSchedule(lambda _actor_id: snapshot.actor.schedule_blocks)
    ctx = ctx.with_flag(schedule.current_block_flag(actor_id, at))
    return is_eligible(registry, skill, target_id, ctx)
