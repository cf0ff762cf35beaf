"""
Storage Module
Persistence contract for actors, skill progress, tasks and inventory stacks,
with an in-memory implementation and a SQLite one.

Every object handed out is a copy owned by the caller. Work on one actor is
serialised with actor_lock(); different actors never contend.
"""

import copy
import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from taskloop.errors import DuplicateTask, UnknownActor
from taskloop.models import (
    Actor,
    ActorSnapshot,
    SkillProgress,
    Task,
    TaskKey,
    TaskStatus,
    TickCommit,
)
from taskloop.systems.inventory import InventoryStack

logger = logging.getLogger(__name__)

_UNSET = object()


class Storage(ABC):
    """Read/write contract used by the tick engine and the task/inventory services."""

    def __init__(self):
        self._locks: Dict[Any, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def actor_lock(self, actor_id) -> Iterator[None]:
        """Hold the per-actor lock for the duration of the block."""
        with self._locks_guard:
            lock = self._locks.get(actor_id)
            if lock is None:
                lock = self._locks[actor_id] = threading.RLock()
        with lock:
            yield

    # --- Actors ---

    @abstractmethod
    def create_actor(
        self,
        name: str,
        ability_scores: Dict[str, int],
        flags: Sequence[str] = (),
        schedule_blocks: Optional[Sequence[str]] = None,
        created_at: int = 0,
    ) -> Actor:
        ...

    @abstractmethod
    def get_actor(self, actor_id) -> Optional[Actor]:
        ...

    @abstractmethod
    def update_actor(self, actor_id, *, flags=None, ability_scores=None, schedule_blocks=_UNSET) -> Actor:
        ...

    @abstractmethod
    def list_actors(self) -> List[Actor]:
        ...

    @abstractmethod
    def delete_actor(self, actor_id) -> None:
        """Remove an actor with its skill progress, tasks and stacks."""
        ...

    # --- Tick contract ---

    @abstractmethod
    def load_snapshot(self, actor_id) -> Optional[ActorSnapshot]:
        ...

    @abstractmethod
    def commit(self, actor_id, commit: TickCommit) -> None:
        ...

    # --- Tasks / skills ---

    @abstractmethod
    def insert_task(self, task: Task) -> Task:
        ...

    @abstractmethod
    def ensure_skill(self, actor_id, skill_id: str) -> SkillProgress:
        ...

    @abstractmethod
    def list_tasks(self, actor_id) -> List[Task]:
        ...

    @abstractmethod
    def find_actor_with_work(self) -> Optional[int]:
        ...

    # --- Inventory ---

    @abstractmethod
    def list_stacks(self, actor_id) -> List[InventoryStack]:
        ...

    @abstractmethod
    def replace_stacks(self, actor_id, stacks: Sequence[InventoryStack]) -> None:
        ...

    def close(self) -> None:
        pass


def _task_order(task: Task):
    return (task.created_at, task.seq)


# =============================================================================
# In-memory storage
# =============================================================================

class MemoryStorage(Storage):
    """Dict-backed storage for tests and embedding."""

    def __init__(self):
        super().__init__()
        self._guard = threading.RLock()
        self._actors: Dict[int, Actor] = {}
        self._skills: Dict[int, Dict[str, int]] = {}
        self._tasks: Dict[int, Dict[TaskKey, Task]] = {}
        self._stacks: Dict[int, List[InventoryStack]] = {}
        self._next_actor_id = 1
        self._next_seq = 1

    def _require(self, actor_id) -> Actor:
        actor = self._actors.get(actor_id)
        if actor is None:
            raise UnknownActor(actor_id)
        return actor

    def create_actor(self, name, ability_scores, flags=(), schedule_blocks=None, created_at=0) -> Actor:
        with self._guard:
            actor = Actor(
                id=self._next_actor_id,
                name=name,
                ability_scores=dict(ability_scores),
                flags=list(dict.fromkeys(flags)),
                schedule_blocks=list(schedule_blocks) if schedule_blocks is not None else None,
                created_at=created_at,
            )
            self._next_actor_id += 1
            self._actors[actor.id] = actor
            self._skills[actor.id] = {}
            self._tasks[actor.id] = {}
            self._stacks[actor.id] = []
            return copy.deepcopy(actor)

    def get_actor(self, actor_id) -> Optional[Actor]:
        with self._guard:
            actor = self._actors.get(actor_id)
            return copy.deepcopy(actor) if actor is not None else None

    def update_actor(self, actor_id, *, flags=None, ability_scores=None, schedule_blocks=_UNSET) -> Actor:
        with self._guard:
            actor = self._require(actor_id)
            if flags is not None:
                actor.flags = list(dict.fromkeys(flags))
            if ability_scores is not None:
                actor.ability_scores = dict(ability_scores)
            if schedule_blocks is not _UNSET:
                actor.schedule_blocks = list(schedule_blocks) if schedule_blocks is not None else None
            return copy.deepcopy(actor)

    def list_actors(self) -> List[Actor]:
        with self._guard:
            return [copy.deepcopy(self._actors[actor_id]) for actor_id in sorted(self._actors)]

    def delete_actor(self, actor_id) -> None:
        with self._guard:
            self._require(actor_id)
            del self._actors[actor_id]
            del self._skills[actor_id]
            del self._tasks[actor_id]
            del self._stacks[actor_id]

    def load_snapshot(self, actor_id) -> Optional[ActorSnapshot]:
        with self._guard:
            actor = self._actors.get(actor_id)
            if actor is None:
                return None
            return ActorSnapshot(
                actor=copy.deepcopy(actor),
                skill_xp=dict(self._skills[actor_id]),
                stacks=list(self._stacks[actor_id]),
                tasks=sorted((copy.deepcopy(t) for t in self._tasks[actor_id].values()), key=_task_order),
            )

    def commit(self, actor_id, commit: TickCommit) -> None:
        with self._guard:
            actor = self._require(actor_id)
            actor.xp += commit.actor_xp_delta
            skills = self._skills[actor_id]
            for skill_id, delta in commit.skill_xp_delta.items():
                skills[skill_id] = skills.get(skill_id, 0) + delta
            if commit.stacks is not None:
                self._stacks[actor_id] = sorted(commit.stacks, key=lambda s: s.slot)
            tasks = self._tasks[actor_id]
            for update in commit.task_updates:
                task = tasks.get(update.key)
                if task is None:
                    logger.warning("Commit for actor %s references missing task %s", actor_id, update.key)
                    continue
                task.status = update.status
                task.started_at = update.started_at
            if commit.last_tick_at is not None:
                actor.last_tick_at = commit.last_tick_at

    def insert_task(self, task: Task) -> Task:
        with self._guard:
            self._require(task.actor_id)
            tasks = self._tasks[task.actor_id]
            if task.key in tasks:
                raise DuplicateTask(task.actor_id, task.skill_id, task.target_id)
            stored = copy.deepcopy(task)
            stored.seq = self._next_seq
            self._next_seq += 1
            tasks[stored.key] = stored
            return copy.deepcopy(stored)

    def ensure_skill(self, actor_id, skill_id: str) -> SkillProgress:
        with self._guard:
            self._require(actor_id)
            skills = self._skills[actor_id]
            skills.setdefault(skill_id, 0)
            return SkillProgress(actor_id=actor_id, skill_id=skill_id, xp=skills[skill_id])

    def list_tasks(self, actor_id) -> List[Task]:
        with self._guard:
            self._require(actor_id)
            return sorted((copy.deepcopy(t) for t in self._tasks[actor_id].values()), key=_task_order)

    def find_actor_with_work(self) -> Optional[int]:
        with self._guard:
            for actor_id in sorted(self._tasks):
                if any(t.status != TaskStatus.FAILED for t in self._tasks[actor_id].values()):
                    return actor_id
            return None

    def list_stacks(self, actor_id) -> List[InventoryStack]:
        with self._guard:
            self._require(actor_id)
            return list(self._stacks[actor_id])

    def replace_stacks(self, actor_id, stacks: Sequence[InventoryStack]) -> None:
        with self._guard:
            self._require(actor_id)
            self._stacks[actor_id] = sorted(stacks, key=lambda s: s.slot)


# =============================================================================
# SQLite storage
# =============================================================================

SCHEMA = """
CREATE TABLE IF NOT EXISTS actors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    ability_scores TEXT NOT NULL,
    flags TEXT NOT NULL,
    xp INTEGER NOT NULL DEFAULT 0,
    schedule_blocks TEXT,
    last_tick_at INTEGER,
    created_at INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS skill_progress (
    actor_id INTEGER NOT NULL REFERENCES actors(id) ON DELETE CASCADE,
    skill_id TEXT NOT NULL,
    xp INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (actor_id, skill_id)
);
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    actor_id INTEGER NOT NULL REFERENCES actors(id) ON DELETE CASCADE,
    skill_id TEXT NOT NULL,
    target_id TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    started_at INTEGER,
    priority INTEGER,
    UNIQUE (actor_id, skill_id, target_id)
);
CREATE TABLE IF NOT EXISTS inventory_stacks (
    actor_id INTEGER NOT NULL REFERENCES actors(id) ON DELETE CASCADE,
    slot INTEGER NOT NULL,
    item_id TEXT NOT NULL,
    qty INTEGER NOT NULL CHECK (qty > 0),
    PRIMARY KEY (actor_id, slot)
);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks (status, actor_id);
"""


class SqliteStorage(Storage):
    """
    SQLite-backed storage. One connection, shared across threads behind a lock;
    each commit runs in a single transaction.
    """

    def __init__(self, db_path: str):
        super().__init__()
        self.db_path = db_path
        if db_path != ":memory:":
            directory = os.path.dirname(os.path.abspath(db_path))
            os.makedirs(directory, exist_ok=True)
        self._conn_lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        with self._conn_lock:
            self._conn.close()

    # --- Row mapping ---

    @staticmethod
    def _actor_from_row(row: sqlite3.Row) -> Actor:
        blocks = row["schedule_blocks"]
        return Actor(
            id=row["id"],
            name=row["name"],
            ability_scores=json.loads(row["ability_scores"]),
            flags=json.loads(row["flags"]),
            xp=row["xp"],
            schedule_blocks=json.loads(blocks) if blocks is not None else None,
            last_tick_at=row["last_tick_at"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _task_from_row(row: sqlite3.Row) -> Task:
        return Task(
            actor_id=row["actor_id"],
            skill_id=row["skill_id"],
            target_id=row["target_id"],
            status=TaskStatus(row["status"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            priority=row["priority"],
            seq=row["id"],
        )

    def _fetch_actor(self, actor_id) -> Optional[Actor]:
        row = self._conn.execute("SELECT * FROM actors WHERE id = ?", (actor_id,)).fetchone()
        return self._actor_from_row(row) if row is not None else None

    def _require(self, actor_id) -> Actor:
        actor = self._fetch_actor(actor_id)
        if actor is None:
            raise UnknownActor(actor_id)
        return actor

    def _fetch_tasks(self, actor_id) -> List[Task]:
        rows = self._conn.execute(
            "SELECT * FROM tasks WHERE actor_id = ? ORDER BY created_at, id", (actor_id,)
        ).fetchall()
        return [self._task_from_row(row) for row in rows]

    def _fetch_stacks(self, actor_id) -> List[InventoryStack]:
        rows = self._conn.execute(
            "SELECT slot, item_id, qty FROM inventory_stacks WHERE actor_id = ? ORDER BY slot", (actor_id,)
        ).fetchall()
        return [InventoryStack(slot=row["slot"], item_id=row["item_id"], qty=row["qty"]) for row in rows]

    def _write_stacks(self, actor_id, stacks: Sequence[InventoryStack]) -> None:
        self._conn.execute("DELETE FROM inventory_stacks WHERE actor_id = ?", (actor_id,))
        self._conn.executemany(
            "INSERT INTO inventory_stacks (actor_id, slot, item_id, qty) VALUES (?, ?, ?, ?)",
            [(actor_id, s.slot, s.item_id, s.qty) for s in stacks],
        )

    # --- Actors ---

    def create_actor(self, name, ability_scores, flags=(), schedule_blocks=None, created_at=0) -> Actor:
        with self._conn_lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO actors (name, ability_scores, flags, schedule_blocks, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    name,
                    json.dumps(dict(ability_scores)),
                    json.dumps(list(dict.fromkeys(flags))),
                    json.dumps(list(schedule_blocks)) if schedule_blocks is not None else None,
                    created_at,
                ),
            )
            return self._fetch_actor(cursor.lastrowid)

    def get_actor(self, actor_id) -> Optional[Actor]:
        with self._conn_lock:
            return self._fetch_actor(actor_id)

    def update_actor(self, actor_id, *, flags=None, ability_scores=None, schedule_blocks=_UNSET) -> Actor:
        with self._conn_lock, self._conn:
            self._require(actor_id)
            if flags is not None:
                self._conn.execute(
                    "UPDATE actors SET flags = ? WHERE id = ?", (json.dumps(list(dict.fromkeys(flags))), actor_id)
                )
            if ability_scores is not None:
                self._conn.execute(
                    "UPDATE actors SET ability_scores = ? WHERE id = ?", (json.dumps(dict(ability_scores)), actor_id)
                )
            if schedule_blocks is not _UNSET:
                encoded = json.dumps(list(schedule_blocks)) if schedule_blocks is not None else None
                self._conn.execute("UPDATE actors SET schedule_blocks = ? WHERE id = ?", (encoded, actor_id))
            return self._fetch_actor(actor_id)

    def list_actors(self) -> List[Actor]:
        with self._conn_lock:
            rows = self._conn.execute("SELECT * FROM actors ORDER BY id").fetchall()
            return [self._actor_from_row(row) for row in rows]

    def delete_actor(self, actor_id) -> None:
        with self._conn_lock, self._conn:
            cursor = self._conn.execute("DELETE FROM actors WHERE id = ?", (actor_id,))
            if cursor.rowcount == 0:
                raise UnknownActor(actor_id)

    # --- Tick contract ---

    def load_snapshot(self, actor_id) -> Optional[ActorSnapshot]:
        with self._conn_lock:
            actor = self._fetch_actor(actor_id)
            if actor is None:
                return None
            rows = self._conn.execute(
                "SELECT skill_id, xp FROM skill_progress WHERE actor_id = ?", (actor_id,)
            ).fetchall()
            return ActorSnapshot(
                actor=actor,
                skill_xp={row["skill_id"]: row["xp"] for row in rows},
                stacks=self._fetch_stacks(actor_id),
                tasks=self._fetch_tasks(actor_id),
            )

    def commit(self, actor_id, commit: TickCommit) -> None:
        with self._conn_lock, self._conn:
            self._require(actor_id)
            if commit.actor_xp_delta:
                self._conn.execute(
                    "UPDATE actors SET xp = xp + ? WHERE id = ?", (commit.actor_xp_delta, actor_id)
                )
            for skill_id, delta in commit.skill_xp_delta.items():
                self._conn.execute(
                    "INSERT INTO skill_progress (actor_id, skill_id, xp) VALUES (?, ?, ?) "
                    "ON CONFLICT (actor_id, skill_id) DO UPDATE SET xp = xp + excluded.xp",
                    (actor_id, skill_id, delta),
                )
            if commit.stacks is not None:
                self._write_stacks(actor_id, commit.stacks)
            for update in commit.task_updates:
                self._conn.execute(
                    "UPDATE tasks SET status = ?, started_at = ? "
                    "WHERE actor_id = ? AND skill_id = ? AND target_id = ?",
                    (update.status.value, update.started_at, actor_id, update.key.skill_id, update.key.target_id),
                )
            if commit.last_tick_at is not None:
                self._conn.execute(
                    "UPDATE actors SET last_tick_at = ? WHERE id = ?", (commit.last_tick_at, actor_id)
                )

    # --- Tasks / skills ---

    def insert_task(self, task: Task) -> Task:
        with self._conn_lock:
            self._require(task.actor_id)
            try:
                with self._conn:
                    cursor = self._conn.execute(
                        "INSERT INTO tasks (actor_id, skill_id, target_id, status, created_at, started_at, priority) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (
                            task.actor_id,
                            task.skill_id,
                            task.target_id,
                            task.status.value,
                            task.created_at,
                            task.started_at,
                            task.priority,
                        ),
                    )
            except sqlite3.IntegrityError as e:
                raise DuplicateTask(task.actor_id, task.skill_id, task.target_id) from e
            row = self._conn.execute("SELECT * FROM tasks WHERE id = ?", (cursor.lastrowid,)).fetchone()
            return self._task_from_row(row)

    def ensure_skill(self, actor_id, skill_id: str) -> SkillProgress:
        with self._conn_lock, self._conn:
            self._require(actor_id)
            self._conn.execute(
                "INSERT OR IGNORE INTO skill_progress (actor_id, skill_id, xp) VALUES (?, ?, 0)",
                (actor_id, skill_id),
            )
            row = self._conn.execute(
                "SELECT xp FROM skill_progress WHERE actor_id = ? AND skill_id = ?", (actor_id, skill_id)
            ).fetchone()
            return SkillProgress(actor_id=actor_id, skill_id=skill_id, xp=row["xp"])

    def list_tasks(self, actor_id) -> List[Task]:
        with self._conn_lock:
            self._require(actor_id)
            return self._fetch_tasks(actor_id)

    def find_actor_with_work(self) -> Optional[int]:
        with self._conn_lock:
            row = self._conn.execute(
                "SELECT MIN(actor_id) AS actor_id FROM tasks WHERE status IN (?, ?)",
                (TaskStatus.PENDING.value, TaskStatus.EXECUTING.value),
            ).fetchone()
            return row["actor_id"] if row is not None else None

    # --- Inventory ---

    def list_stacks(self, actor_id) -> List[InventoryStack]:
        with self._conn_lock:
            self._require(actor_id)
            return self._fetch_stacks(actor_id)

    def replace_stacks(self, actor_id, stacks: Sequence[InventoryStack]) -> None:
        with self._conn_lock, self._conn:
            self._require(actor_id)
            self._write_stacks(actor_id, stacks)
