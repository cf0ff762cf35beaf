"""
Data Model Module
Plain records shared by storage, the tick engine and the CLI.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

from taskloop.systems.inventory import InventoryStack

# Target id used by skills that act on nothing in particular (e.g. idle).
NO_TARGET = "none"


class TaskStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    FAILED = "failed"


class TaskKey(NamedTuple):
    actor_id: int
    skill_id: str
    target_id: str


@dataclass
class Actor:
    id: int
    name: str
    ability_scores: Dict[str, int] = field(default_factory=dict)
    flags: List[str] = field(default_factory=list)
    xp: int = 0
    schedule_blocks: Optional[List[str]] = None
    last_tick_at: Optional[int] = None
    created_at: int = 0


@dataclass
class SkillProgress:
    actor_id: int
    skill_id: str
    xp: int = 0


@dataclass
class Task:
    """
    A queued unit of repeatable work, unique per (actor, skill, target).

    `priority` is an optional per-task override of the skill's priority.
    `seq` is an insertion counter assigned by storage; it breaks createdAt ties.
    """
    actor_id: int
    skill_id: str
    target_id: str = NO_TARGET
    status: TaskStatus = TaskStatus.PENDING
    created_at: int = 0
    started_at: Optional[int] = None
    priority: Optional[int] = None
    seq: int = 0

    @property
    def key(self) -> TaskKey:
        return TaskKey(self.actor_id, self.skill_id, self.target_id)


@dataclass
class ActorSnapshot:
    """Everything a tick needs about one actor, loaded in one read."""
    actor: Actor
    skill_xp: Dict[str, int] = field(default_factory=dict)
    stacks: List[InventoryStack] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)

    @property
    def actor_id(self) -> int:
        return self.actor.id

    @property
    def last_tick_at(self) -> Optional[int]:
        return self.actor.last_tick_at


@dataclass
class TaskUpdate:
    key: TaskKey
    status: TaskStatus
    started_at: Optional[int]


@dataclass
class TickCommit:
    """
    Everything a tick writes back, applied atomically by storage.

    `stacks` is the full resulting inventory, or None when the tick did not
    touch it.
    """
    actor_xp_delta: int = 0
    skill_xp_delta: Dict[str, int] = field(default_factory=dict)
    stacks: Optional[List[InventoryStack]] = None
    task_updates: List[TaskUpdate] = field(default_factory=list)
    last_tick_at: Optional[int] = None


@dataclass
class TickResult:
    started: List[TaskKey] = field(default_factory=list)
    completed: List[TaskKey] = field(default_factory=list)
    failed: List[TaskKey] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.started or self.completed or self.failed)
