"""
Daily Schedule Module
A day is split into 24 blocks of 25 seconds. Each actor may carry a list of
blocks (work / downtime / bedtime / bathtime); the block active at a given time
is surfaced to requirements as a synthetic flag such as `schedule_block_work`.
"""

from enum import Enum
from typing import Callable, Optional, Sequence

SECONDS_PER_BLOCK = 25
BLOCKS_PER_DAY = 24  # 24 blocks x 25s = 10 minutes
SECONDS_PER_DAY = SECONDS_PER_BLOCK * BLOCKS_PER_DAY


class ScheduleBlock(str, Enum):
    WORK = "work"
    DOWNTIME = "downtime"
    BEDTIME = "bedtime"
    BATHTIME = "bathtime"


def schedule_flag(block) -> str:
    """Flag name injected into the requirement context for a block."""
    value = block.value if isinstance(block, ScheduleBlock) else str(block)
    return f"schedule_block_{value}"


def compute_block_index(at_ms: int, offset_seconds: int = 0) -> int:
    """
    Index of the block active at `at_ms` (milliseconds since epoch).

    Negative times wrap around the day like positive ones.
    """
    t = int(at_ms) // 1000 + int(offset_seconds)
    within = t % SECONDS_PER_DAY
    return (within // SECONDS_PER_BLOCK) % BLOCKS_PER_DAY


def resolve_block(blocks: Optional[Sequence[str]], at_ms: int) -> Optional[ScheduleBlock]:
    """
    Look up the block active at `at_ms` in an in-memory block list.

    Returns:
        The ScheduleBlock, or None when the list is missing, too short or holds
        an unknown entry.
    """
    if not blocks:
        return None
    idx = compute_block_index(at_ms)
    if idx >= len(blocks):
        return None
    try:
        return ScheduleBlock(blocks[idx])
    except ValueError:
        return None


def priority_delta_for_block(block: Optional[ScheduleBlock]) -> int:
    """Priority adjustment applied while `block` is active. Neutral for now."""
    return 0


def validate_blocks(blocks: Sequence[str]) -> list:
    """Return `blocks` as a list, raising ValueError for a malformed day."""
    blocks = list(blocks)
    if len(blocks) != BLOCKS_PER_DAY:
        raise ValueError(f"A schedule needs {BLOCKS_PER_DAY} blocks, got {len(blocks)}")
    for entry in blocks:
        ScheduleBlock(entry)
    return blocks


class BlockSchedule:
    """
    Schedule collaborator backed by per-actor block lists.

    `lookup(actor_id)` returns the actor's blocks (or None). The tick engine
    builds one from its snapshot when the caller does not inject a schedule.
    """

    def __init__(self, lookup: Callable[[object], Optional[Sequence[str]]]):
        self._lookup = lookup

    def current_block_flag(self, actor_id, timestamp: int) -> Optional[str]:
        block = resolve_block(self._lookup(actor_id), timestamp)
        return schedule_flag(block) if block is not None else None


def block_from_flag(flag: Optional[str]) -> Optional[ScheduleBlock]:
    """Inverse of schedule_flag; None for a missing or foreign flag."""
    prefix = "schedule_block_"
    if not flag or not flag.startswith(prefix):
        return None
    try:
        return ScheduleBlock(flag[len(prefix):])
    except ValueError:
        return None
