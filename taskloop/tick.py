"""
Task Tick Engine
Advances one actor's task queue up to a point in time.

A tick loads one snapshot of the actor, then loops: finish the running task
once its deadline has passed (feeding its rewards straight back into the
requirement context), or start the best eligible pending task. It stops when
time runs out, nothing is eligible, or the iteration cap is hit, and writes
everything back in a single commit.

Within one call a task completes at most once. A task that already completed
in this call and is picked again restarts at `now`, so its next deadline is
always in the future; calling tick twice with the same `now` changes nothing.
"""

import logging
from typing import Dict, List, Optional, Set

from config import settings
from taskloop.actors import build_requirement_context, merge_requirement_contexts, now_ms
from taskloop.models import (
    NO_TARGET,
    ActorSnapshot,
    Task,
    TaskKey,
    TaskStatus,
    TaskUpdate,
    TickCommit,
    TickResult,
)
from taskloop.registry import DefinitionRegistry, SkillDefinition
from taskloop.storage import Storage
from taskloop.systems.effects import resolve_completion_effect
from taskloop.systems.inventory import Inventory
from taskloop.systems.requirements import EvaluationContext
from taskloop.systems.schedule import BlockSchedule, block_from_flag
from taskloop.tasks import effective_priority, is_eligible

logger = logging.getLogger(__name__)


class _TickRun:
    """In-memory state of a single tick call. Never touches storage."""

    def __init__(
        self,
        registry: DefinitionRegistry,
        snapshot: ActorSnapshot,
        now: int,
        context: EvaluationContext,
        schedule,
        pinned_level: bool,
        pinned_skills: Set[str],
    ):
        self.registry = registry
        self.snapshot = snapshot
        self.actor_id = snapshot.actor_id
        self.now = now
        self.context = context
        self.schedule = schedule
        self._pinned_level = pinned_level
        self._pinned_skills = pinned_skills

        self.tasks: List[Task] = snapshot.tasks
        self._original = {task.key: (task.status, task.started_at) for task in self.tasks}

        self.actor_xp = snapshot.actor.xp
        self.skill_xp: Dict[str, int] = dict(snapshot.skill_xp)
        self.actor_xp_delta = 0
        self.skill_xp_delta: Dict[str, int] = {}
        self.inventory_deltas: Dict[str, int] = {}

        self.result = TickResult()
        self._completed_this_call: Set[TaskKey] = set()
        self._warned: Set[TaskKey] = set()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(self, cursor: int, max_iterations: int) -> None:
        for _ in range(max_iterations):
            running = self._executing_task()
            if running is not None:
                skill = self.registry.skill(running.skill_id)
                if skill is None:
                    self._fail(running)
                    # Nothing else starts once a running task has been failed.
                    return
                if running.started_at is None:
                    running.started_at = cursor
                deadline = running.started_at + max(1, skill.duration)
                if self.now < deadline:
                    return
                self._complete(running, skill)
                cursor = deadline
                continue

            winner = self._select(cursor)
            if winner is None:
                return
            self._start(winner, cursor)
        else:
            logger.warning(
                "Tick for actor %s hit the iteration cap (%d); remaining work waits for the next tick",
                self.actor_id, max_iterations,
            )

    def _executing_task(self) -> Optional[Task]:
        for task in self.tasks:
            if task.status == TaskStatus.EXECUTING:
                return task
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _fail(self, task: Task) -> None:
        logger.warning(
            "Skill %s no longer exists; failing running task %s for actor %s",
            task.skill_id, task.key, self.actor_id,
        )
        task.status = TaskStatus.FAILED
        self.result.failed.append(task.key)

    def _start(self, task: Task, cursor: int) -> None:
        task.status = TaskStatus.EXECUTING
        # A task already rewarded in this call restarts at `now`, ending the loop.
        task.started_at = self.now if task.key in self._completed_this_call else cursor
        self.result.started.append(task.key)
        logger.debug("Started %s -> %s at %d", task.skill_id, task.target_id, task.started_at)

    def _complete(self, task: Task, skill: SkillDefinition) -> None:
        target = self.registry.target(task.target_id) if task.target_id != NO_TARGET else None
        effect = resolve_completion_effect(skill, task.target_id, target)
        if effect is not None:
            self._apply_effect(skill.id, effect)

        task.status = TaskStatus.PENDING
        task.started_at = None
        self._completed_this_call.add(task.key)
        self.result.completed.append(task.key)
        logger.debug("Completed %s -> %s (effect: %s)", task.skill_id, task.target_id, effect)

    def _apply_effect(self, skill_id: str, effect) -> None:
        if effect.actor_xp:
            self.actor_xp += effect.actor_xp
            self.actor_xp_delta += effect.actor_xp
            if not self._pinned_level:
                self.context.tav_level = self.registry.actor_level(self.actor_xp)

        if effect.skill_xp:
            self.skill_xp[skill_id] = self.skill_xp.get(skill_id, 0) + effect.skill_xp
            self.skill_xp_delta[skill_id] = self.skill_xp_delta.get(skill_id, 0) + effect.skill_xp
            if skill_id not in self._pinned_skills:
                self.context.skill_levels[skill_id] = self.registry.skill_level(self.skill_xp[skill_id])

        for item_id, delta in effect.inventory.items():
            self.inventory_deltas[item_id] = self.inventory_deltas.get(item_id, 0) + delta
            self.context.inventory[item_id] = self.context.inventory.get(item_id, 0) + delta

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _skip(self, task: Task, reason: str) -> None:
        if task.key not in self._warned:
            self._warned.add(task.key)
            logger.warning("Skipping pending task %s for actor %s: %s", task.key, self.actor_id, reason)

    def _is_runnable(self, task: Task) -> Optional[SkillDefinition]:
        """Skill definition for a structurally valid pending task, else None."""
        skill = self.registry.skill(task.skill_id)
        if skill is None:
            self._skip(task, f"unknown skill {task.skill_id}")
            return None
        if not skill.allows_target(task.target_id):
            self._skip(task, f"skill {skill.id} cannot target {task.target_id}")
            return None
        if task.target_id != NO_TARGET:
            target = self.registry.target(task.target_id)
            if target is None:
                self._skip(task, f"unknown target {task.target_id}")
                return None
            if not target.allows_skill(skill.id):
                self._skip(task, f"target {target.id} does not accept skill {skill.id}")
                return None
        return skill

    def _select(self, cursor: int) -> Optional[Task]:
        flag = self.schedule.current_block_flag(self.actor_id, cursor)
        context = self.context.with_flag(flag)
        block = block_from_flag(flag)

        best = None
        best_rank = None
        for task in self.tasks:
            if task.status != TaskStatus.PENDING:
                continue
            skill = self._is_runnable(task)
            if skill is None:
                continue
            if not is_eligible(self.registry, skill, task.target_id, context):
                continue
            rank = (-effective_priority(task, skill, block), task.created_at, task.seq)
            if best_rank is None or rank < best_rank:
                best, best_rank = task, rank
        return best

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def build_commit(self) -> TickCommit:
        """
        Collect the write set. Inventory deltas are applied strictly here, so
        an underflow raises InsufficientQuantity before anything is written.
        """
        stacks = None
        deltas = {item_id: delta for item_id, delta in self.inventory_deltas.items() if delta != 0}
        if deltas:
            inventory = Inventory(self.registry.stack_limit, self.snapshot.stacks)
            inventory.apply_delta(deltas, strict=True)
            stacks = inventory.stacks()

        updates = [
            TaskUpdate(key=task.key, status=task.status, started_at=task.started_at)
            for task in self.tasks
            if self._original.get(task.key) != (task.status, task.started_at)
        ]

        return TickCommit(
            actor_xp_delta=self.actor_xp_delta,
            skill_xp_delta=dict(self.skill_xp_delta),
            stacks=stacks,
            task_updates=updates,
            last_tick_at=self.now,
        )


class TickEngine:
    """
    Runs ticks against a storage backend with a fixed registry.

    Args:
        storage: Storage backend
        registry: Definition registry
        schedule: Optional collaborator with current_block_flag(actor_id, timestamp);
            defaults to the actor's stored schedule blocks
        max_iterations: Loop cap per call (default: settings.MAX_LOOP_LIMIT)
    """

    def __init__(
        self,
        storage: Storage,
        registry: DefinitionRegistry,
        schedule=None,
        max_iterations: Optional[int] = None,
    ):
        self.storage = storage
        self.registry = registry
        self.schedule = schedule
        self.max_iterations = max_iterations if max_iterations is not None else settings.MAX_LOOP_LIMIT

    def tick(
        self,
        actor_id=None,
        now: Optional[int] = None,
        last_known_time: Optional[int] = None,
        context: Optional[EvaluationContext] = None,
        subtract_inventory: bool = False,
    ) -> TickResult:
        """
        Advance an actor's tasks up to `now`.

        Args:
            actor_id: Actor to tick; None picks the first actor with queued work
            now: Current time in ms (default: wall clock)
            last_known_time: Cursor start; defaults to the stored last tick time.
                A cursor later than `now` is pulled back to `now`
            context: Extra requirement context merged over the actor's own
            subtract_inventory: Subtract the extra context's inventory instead of adding

        Returns:
            TickResult: started / completed / failed task keys, in order
        """
        now = now if now is not None else now_ms()

        if actor_id is None:
            actor_id = self.storage.find_actor_with_work()
            if actor_id is None:
                logger.debug("No actor has queued work")
                return TickResult()

        with self.storage.actor_lock(actor_id):
            snapshot = self.storage.load_snapshot(actor_id)
            if snapshot is None:
                logger.info("Tick requested for unknown actor %s", actor_id)
                return TickResult()

            base = build_requirement_context(snapshot, self.registry)
            effective = merge_requirement_contexts(base, context, subtract_inventory=subtract_inventory)
            schedule = self.schedule or BlockSchedule(lambda _actor_id: snapshot.actor.schedule_blocks)

            run = _TickRun(
                self.registry,
                snapshot,
                now,
                effective,
                schedule,
                pinned_level=context is not None and context.tav_level is not None,
                pinned_skills=set(context.skill_levels) if context is not None else set(),
            )

            if last_known_time is not None:
                cursor = last_known_time
            elif snapshot.last_tick_at is not None:
                cursor = snapshot.last_tick_at
            else:
                cursor = now
            # The loop never runs past `now`.
            cursor = min(cursor, now)

            run.run(cursor, self.max_iterations)
            commit = run.build_commit()
            self.storage.commit(actor_id, commit)

        result = run.result
        logger.info(
            "Tick actor %s @%d: %d started, %d completed, %d failed",
            actor_id, now, len(result.started), len(result.completed), len(result.failed),
        )
        return result


def tick(
    storage: Storage,
    registry: DefinitionRegistry,
    actor_id=None,
    now: Optional[int] = None,
    last_known_time: Optional[int] = None,
    context: Optional[EvaluationContext] = None,
    subtract_inventory: bool = False,
    schedule=None,
) -> TickResult:
    """One-shot tick without keeping an engine around."""
    engine = TickEngine(storage, registry, schedule=schedule)
    return engine.tick(
        actor_id=actor_id,
        now=now,
        last_known_time=last_known_time,
        context=context,
        subtract_inventory=subtract_inventory,
    )
