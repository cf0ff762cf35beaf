"""
Tav Task Loop - Main Entry Point (Controller Layer)
Command-line front end: wires settings, the definition registry and SQLite
storage to the task services, and renders results with TaskRenderer.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from rich.logging import RichHandler

from config import settings
from taskloop.actors import create_actor, delete_actor, set_actor_flags
from taskloop.errors import TaskLoopError
from taskloop.registry import DefinitionRegistry, load_registry
from taskloop.stash import (
    apply_inventory_delta,
    compact_inventory,
    list_inventory,
    move_inventory_item,
)
from taskloop.storage import SqliteStorage
from taskloop.systems.requirements import EvaluationContext
from taskloop.tasks import add_task
from taskloop.tick import TickEngine
from ui.renderer import TaskRenderer

logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _override_context(allow: Optional[List[str]], flags: Optional[List[str]]) -> Optional[EvaluationContext]:
    """Extra requirement context from --allow / --flag options."""
    if not allow and not flags:
        return None
    return EvaluationContext(
        custom_checks={name: True for name in allow or []},
        flags=set(flags or []),
    )


def _parse_pairs(pairs: List[str]) -> dict:
    """Parse ["log=3", "torch=-1"] into {"log": 3, "torch": -1}."""
    result = {}
    for pair in pairs:
        item_id, sep, qty = pair.partition("=")
        if not sep or not item_id:
            raise ValueError(f"Expected ITEM=QTY, got {pair!r}")
        result[item_id] = int(qty)
    return result


class TaskLoopApp:
    """Holds the shared collaborators for one CLI invocation."""

    def __init__(self, ui: TaskRenderer, storage: SqliteStorage, registry: DefinitionRegistry):
        self.ui = ui
        self.storage = storage
        self.registry = registry

    def cmd_init_db(self, args) -> None:
        self.ui.print_system_info(f"Database ready at {self.storage.db_path}")

    def cmd_create_actor(self, args) -> None:
        scores = json.loads(args.abilities) if args.abilities else None
        actor = create_actor(self.storage, self.registry, args.name, ability_scores=scores, flags=args.flag or [])
        self.ui.print(self.ui.show_actor(actor, self.registry))

    def cmd_set_flags(self, args) -> None:
        actor = set_actor_flags(self.storage, args.actor, add=args.add or [], remove=args.remove or [])
        snapshot = self.storage.load_snapshot(actor.id)
        self.ui.print(self.ui.show_actor(actor, self.registry, snapshot.skill_xp if snapshot else None))

    def cmd_delete_actor(self, args) -> None:
        delete_actor(self.storage, args.actor)
        self.ui.print_warning(f"Deleted actor {args.actor} with its tasks, skills and inventory")

    def cmd_add_task(self, args) -> None:
        task = add_task(
            self.storage,
            self.registry,
            args.actor,
            args.skill,
            target_id=args.target,
            priority=args.priority,
            context=_override_context(args.allow, args.flag),
        )
        self.ui.print_system_info(f"Queued {task.skill_id} -> {task.target_id} for actor {task.actor_id}")

    def cmd_tick(self, args) -> None:
        engine = TickEngine(self.storage, self.registry)
        result = engine.tick(
            actor_id=args.actor,
            now=args.now,
            context=_override_context(args.allow, args.flag),
        )
        self.ui.print(self.ui.show_tick_result(args.actor if args.actor is not None else "auto", result, self.registry))

    def cmd_tasks(self, args) -> None:
        self.ui.print(self.ui.show_tasks(self.storage.list_tasks(args.actor), self.registry))

    def cmd_inventory(self, args) -> None:
        self.ui.print(self.ui.show_inventory(list_inventory(self.storage, self.registry, args.actor), self.registry))

    def cmd_give(self, args) -> None:
        if args.lenient:
            self.ui.print_warning("Lenient mode: removals beyond the held quantity stop at zero")
        stacks = apply_inventory_delta(
            self.storage, self.registry, args.actor, _parse_pairs(args.items), strict=not args.lenient
        )
        self.ui.print(self.ui.show_inventory(stacks, self.registry))

    def cmd_move(self, args) -> None:
        stacks = move_inventory_item(self.storage, self.registry, args.actor, args.from_slot, args.to_slot)
        self.ui.print(self.ui.show_inventory(stacks, self.registry))

    def cmd_compact(self, args) -> None:
        stacks = compact_inventory(self.storage, self.registry, args.actor)
        self.ui.print(self.ui.show_inventory(stacks, self.registry))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tav task loop")
    parser.add_argument("--db", default=settings.DB_PATH, help="SQLite database path")
    parser.add_argument("--definitions", default=settings.DEFINITIONS_PATH, help="Definitions YAML path")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database schema")

    p = sub.add_parser("create-actor", help="Create a new actor")
    p.add_argument("name")
    p.add_argument("--abilities", help='JSON ability overrides, e.g. \'{"str": 12}\'')
    p.add_argument("--flag", action="append")

    p = sub.add_parser("set-flags", help="Add or remove actor flags")
    p.add_argument("actor", type=int)
    p.add_argument("--add", action="append")
    p.add_argument("--remove", action="append")

    p = sub.add_parser("delete-actor", help="Delete an actor and everything it owns")
    p.add_argument("actor", type=int)

    p = sub.add_parser("add-task", help="Queue a task")
    p.add_argument("actor", type=int)
    p.add_argument("skill")
    p.add_argument("target", nargs="?")
    p.add_argument("--priority", type=int)
    p.add_argument("--allow", action="append", help="Custom check to treat as satisfied")
    p.add_argument("--flag", action="append", help="Extra flag for this call")

    p = sub.add_parser("tick", help="Advance an actor's tasks")
    p.add_argument("actor", type=int, nargs="?")
    p.add_argument("--now", type=int, help="Current time in ms (default: wall clock)")
    p.add_argument("--allow", action="append", help="Custom check to treat as satisfied")
    p.add_argument("--flag", action="append", help="Extra flag for this call")

    p = sub.add_parser("tasks", help="Show an actor's task queue")
    p.add_argument("actor", type=int)

    p = sub.add_parser("inventory", help="Show an actor's inventory")
    p.add_argument("actor", type=int)

    p = sub.add_parser("give", help="Apply item deltas, e.g. log=5 torch=-1")
    p.add_argument("actor", type=int)
    p.add_argument("items", nargs="+")
    p.add_argument("--lenient", action="store_true", help="Clamp at zero instead of failing")

    p = sub.add_parser("move", help="Move / merge / swap inventory slots")
    p.add_argument("actor", type=int)
    p.add_argument("from_slot", type=int)
    p.add_argument("to_slot", type=int)

    p = sub.add_parser("compact", help="Merge stacks and renumber slots")
    p.add_argument("actor", type=int)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level.upper())
    ui = TaskRenderer()

    try:
        registry = load_registry(args.definitions)
        storage = SqliteStorage(args.db)
    except TaskLoopError as e:
        ui.print_error(str(e))
        return 1

    app = TaskLoopApp(ui, storage, registry)
    handler = getattr(app, "cmd_" + args.command.replace("-", "_"))
    try:
        handler(args)
    except (TaskLoopError, ValueError) as e:
        ui.print_error(str(e))
        return 1
    finally:
        storage.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
