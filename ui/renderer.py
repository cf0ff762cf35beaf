"""
UI Renderer Module (View Layer)
Handles all Rich/UI rendering - no task logic
"""

from typing import Dict, List, Optional
from rich.console import Console, Group
from rich.panel import Panel
from rich.theme import Theme
from rich.table import Table
from rich.box import HEAVY
from taskloop.models import NO_TARGET, Actor, Task, TaskKey, TaskStatus, TickResult
from taskloop.registry import DefinitionRegistry
from taskloop.systems.inventory import InventoryStack


class TaskRenderer:
    """Handles all UI rendering using Rich library"""

    def __init__(self, console: Optional[Console] = None):
        """Initialize the renderer with the task loop theme"""
        task_theme = Theme({
            "info": "dim cyan",
            "warning": "yellow",
            "error": "bold red",
            "success": "bold green",
            "failure": "bold red",
            "actor": "bold white",
            "skill": "bold purple",
            "stat": "bold blue",
            "item": "bold magenta",
        })
        self.console = console or Console(theme=task_theme)
        if console is not None:
            self.console.push_theme(task_theme)

    def _task_label(self, key: TaskKey, registry: Optional[DefinitionRegistry] = None) -> str:
        skill_name = key.skill_id
        target_name = key.target_id
        if registry is not None:
            skill = registry.skill(key.skill_id)
            target = registry.target(key.target_id)
            skill_name = skill.name if skill else key.skill_id
            target_name = target.name if target else key.target_id
        if key.target_id == NO_TARGET:
            return f"[skill]{skill_name}[/skill]"
        return f"[skill]{skill_name}[/skill] → [item]{target_name}[/item]"

    def show_actor(self, actor: Actor, registry: DefinitionRegistry, skill_xp: Optional[Dict[str, int]] = None) -> Panel:
        """
        Render an actor's status panel.

        Args:
            actor: The actor
            registry: Definition registry (level tables)
            skill_xp: Per-skill experience (optional)

        Returns:
            Panel: Abilities, level, flags and skill levels
        """
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style="stat")
        grid.add_column()

        grid.add_row("Level", f"{registry.actor_level(actor.xp)} ({actor.xp} XP)")
        abilities = "  ".join(f"{name.upper()} {score}" for name, score in actor.ability_scores.items())
        grid.add_row("Abilities", abilities or "-")
        grid.add_row("Flags", ", ".join(actor.flags) or "[dim]none[/dim]")
        for skill_id, xp in sorted((skill_xp or {}).items()):
            skill = registry.skill(skill_id)
            grid.add_row(
                f"  {skill.name if skill else skill_id}",
                f"Lv {registry.skill_level(xp)} ({xp} XP)",
            )

        return Panel(grid, title=f"[actor]{actor.name}[/actor] #{actor.id}", border_style="blue")

    def show_tick_result(self, actor_id, result: TickResult, registry: Optional[DefinitionRegistry] = None) -> Panel:
        """Render what one tick started, completed and failed."""
        if result.is_empty():
            body = "[dim]Nothing changed.[/dim]"
        else:
            lines: List[str] = []
            for key in result.completed:
                lines.append(f"✅ [success]completed[/success] {self._task_label(key, registry)}")
            for key in result.started:
                lines.append(f"▶️ [info]started[/info] {self._task_label(key, registry)}")
            for key in result.failed:
                lines.append(f"❌ [failure]failed[/failure] {self._task_label(key, registry)}")
            body = "\n".join(lines)

        return Panel(body, title=f"⏱ Tick · actor #{actor_id}", title_align="left", border_style="gold1", box=HEAVY)

    def show_tasks(self, tasks: List[Task], registry: DefinitionRegistry) -> Table:
        """Render an actor's task queue as a table."""
        table = Table(title="Task Queue", expand=True)
        table.add_column("Task")
        table.add_column("Status")
        table.add_column("Priority", justify="right", style="stat")
        table.add_column("Created", justify="right")
        table.add_column("Started", justify="right")

        status_style = {
            TaskStatus.PENDING: "info",
            TaskStatus.EXECUTING: "success",
            TaskStatus.FAILED: "failure",
        }
        for task in tasks:
            skill = registry.skill(task.skill_id)
            if task.priority is not None:
                priority = str(task.priority)
            elif skill is not None:
                priority = f"[dim]{skill.priority}[/dim]"
            else:
                priority = "?"
            style = status_style.get(task.status, "info")
            table.add_row(
                self._task_label(task.key, registry),
                f"[{style}]{task.status.value}[/{style}]",
                priority,
                str(task.created_at),
                str(task.started_at) if task.started_at is not None else "-",
            )
        return table

    def show_inventory(self, stacks: List[InventoryStack], registry: DefinitionRegistry) -> Group:
        """Render inventory slots plus per-item totals."""
        table = Table(title="🎒 Inventory", expand=True)
        table.add_column("Slot", justify="right", style="stat")
        table.add_column("Item", style="item")
        table.add_column("Qty", justify="right")

        totals: Dict[str, int] = {}
        for stack in stacks:
            limit = registry.stack_limit(stack.item_id)
            table.add_row(str(stack.slot), registry.item_name(stack.item_id), f"{stack.qty}/{limit}")
            totals[stack.item_id] = totals.get(stack.item_id, 0) + stack.qty

        if totals:
            summary = ", ".join(f"{registry.item_name(item_id)} x{qty}" for item_id, qty in totals.items())
        else:
            summary = "[dim]Empty[/dim]"
        return Group(table, Panel(summary, title="Totals", border_style="dim"))

    def print_system_info(self, text: str):
        """Display system information message"""
        self.console.print(f"[info]{text}[/info]")

    def print_warning(self, text: str):
        """Display warning message"""
        self.console.print(f"[warning]{text}[/warning]")

    def print_error(self, text: str):
        """Display error message"""
        self.console.print(f"[error]{text}[/error]")

    def print(self, *args, **kwargs):
        """Direct print passthrough to console"""
        self.console.print(*args, **kwargs)
