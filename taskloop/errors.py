"""
Error Types Module
Exceptions raised by the task loop. Add-time and inventory violations are hard
errors; tick-time problems on stored tasks are logged and skipped instead.
"""

from typing import Any, Optional


class TaskLoopError(Exception):
    """Base class for every error raised by the task loop."""


class DefinitionError(TaskLoopError):
    """The static definitions file is missing, malformed or inconsistent."""


class UnknownActor(TaskLoopError):
    def __init__(self, actor_id: Any):
        self.actor_id = actor_id
        super().__init__(f"Unknown actor id: {actor_id}")


class UnknownSkill(TaskLoopError):
    def __init__(self, skill_id: str):
        self.skill_id = skill_id
        super().__init__(f"Unknown skill id: {skill_id}")


class UnknownTarget(TaskLoopError):
    def __init__(self, target_id: str):
        self.target_id = target_id
        super().__init__(f"Unknown skill target id: {target_id}")


class UnknownItem(TaskLoopError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Unknown item id: {item_id}")


class DisallowedTarget(TaskLoopError):
    """The skill cannot act on the target (or the target refuses the skill)."""

    def __init__(self, skill_id: str, target_id: str):
        self.skill_id = skill_id
        self.target_id = target_id
        super().__init__(f"Skill {skill_id} cannot target id: {target_id}")


class RequirementsNotMet(TaskLoopError):
    def __init__(self, subject: str, subject_id: str):
        self.subject = subject
        self.subject_id = subject_id
        super().__init__(f"{subject} {subject_id} requirements not met")


class DuplicateTask(TaskLoopError):
    def __init__(self, actor_id: Any, skill_id: str, target_id: str):
        self.actor_id = actor_id
        self.skill_id = skill_id
        self.target_id = target_id
        super().__init__(
            f"Task already queued for actor {actor_id}: {skill_id} -> {target_id}"
        )


class InsufficientQuantity(TaskLoopError):
    def __init__(self, item_id: str, available: int = 0, requested: Optional[int] = None):
        self.item_id = item_id
        self.available = available
        self.requested = requested
        detail = f" (have {available}, need {requested})" if requested is not None else ""
        super().__init__(f"Insufficient quantity for item {item_id}{detail}")


class InvalidSlot(TaskLoopError, ValueError):
    def __init__(self, label: str, value: Any):
        self.label = label
        self.value = value
        super().__init__(f"Invalid {label}: {value!r}")


class NoItemInSlot(TaskLoopError):
    def __init__(self, slot: int):
        self.slot = slot
        super().__init__(f"No inventory item found in slot {slot}")
