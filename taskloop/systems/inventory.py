"""
Inventory Management Module (Slot-Based Stacks)
Keeps an actor's items as stacks in numbered slots, each holding one item id
and a quantity between 1 and that item's stack limit.

Slot numbers are meaningful to callers (UI ordering), so no operation other
than an explicit compact() re-indexes slots.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from taskloop.errors import InsufficientQuantity, InvalidSlot, NoItemInSlot

InventoryTotals = Dict[str, int]
InventoryDelta = Mapping[str, int]


@dataclass(frozen=True)
class InventoryStack:
    slot: int
    item_id: str
    qty: int


def to_int(value: Any) -> int:
    """Coerce a quantity to int, truncating toward zero. NaN/inf/garbage -> 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return int(number)


def _assert_slot(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidSlot(label, value)
    return value


class Inventory:
    """
    Slot-keyed stack ledger for one actor.
    Uses a stack-limit lookup (normally DefinitionRegistry.stack_limit) for capacity.
    """

    def __init__(self, stack_limit: Callable[[str], int], stacks: Iterable[InventoryStack] = ()):
        """
        Args:
            stack_limit: Callable returning the stack capacity of an item id
            stacks: Initial stacks (e.g. rows loaded from storage)
        """
        self._stack_limit = stack_limit
        self.slots: Dict[int, Tuple[str, int]] = {}
        for stack in stacks:
            qty = to_int(stack.qty)
            if qty > 0:
                self.slots[to_int(stack.slot)] = (stack.item_id, qty)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def stack_limit(self, item_id: str) -> int:
        return max(1, to_int(self._stack_limit(item_id)))

    def stacks(self) -> List[InventoryStack]:
        """All stacks ordered by slot."""
        return [
            InventoryStack(slot=slot, item_id=item_id, qty=qty)
            for slot, (item_id, qty) in sorted(self.slots.items())
        ]

    def totals(self) -> InventoryTotals:
        """Sum of quantities per item id across all slots."""
        totals: InventoryTotals = {}
        for _, (item_id, qty) in sorted(self.slots.items()):
            totals[item_id] = totals.get(item_id, 0) + qty
        return totals

    def get_quantity(self, item_id: str) -> int:
        return sum(qty for held, qty in self.slots.values() if held == item_id)

    def _slots_of(self, item_id: str) -> List[int]:
        return sorted(slot for slot, (held, _) in self.slots.items() if held == item_id)

    def _next_free_slot(self) -> int:
        slot = 0
        while slot in self.slots:
            slot += 1
        return slot

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply_delta(self, deltas: InventoryDelta, strict: bool = True) -> None:
        """
        Apply signed per-item quantity changes.

        Positive deltas top up existing stacks of the item (ascending slot),
        then open new stacks in the smallest free slots. Negative deltas drain
        the item's stacks from the highest slot down, removing emptied stacks.

        Args:
            deltas: item_id -> signed quantity change
            strict: Reject the whole batch if any item would go below zero

        Raises:
            InsufficientQuantity: In strict mode, before anything is mutated
        """
        entries = [(item_id, to_int(change)) for item_id, change in deltas.items()]
        entries = [(item_id, change) for item_id, change in entries if change != 0]
        if not entries:
            return

        if strict:
            totals = self.totals()
            for item_id, change in entries:
                available = totals.get(item_id, 0)
                if change < 0 and available + change < 0:
                    raise InsufficientQuantity(item_id, available, -change)
                totals[item_id] = available + change

        for item_id, change in entries:
            if change > 0:
                self._add(item_id, change)
            else:
                self._drain(item_id, -change)

    def _add(self, item_id: str, qty: int) -> None:
        limit = self.stack_limit(item_id)
        remaining = qty

        for slot in self._slots_of(item_id):
            if remaining <= 0:
                break
            held = self.slots[slot][1]
            room = limit - held
            if room <= 0:
                continue
            add = min(room, remaining)
            self.slots[slot] = (item_id, held + add)
            remaining -= add

        while remaining > 0:
            chunk = min(limit, remaining)
            self.slots[self._next_free_slot()] = (item_id, chunk)
            remaining -= chunk

    def _drain(self, item_id: str, qty: int) -> int:
        """Remove up to `qty`, newest stacks first. Returns what could not be removed."""
        remaining = qty
        for slot in reversed(self._slots_of(item_id)):
            if remaining <= 0:
                break
            held = self.slots[slot][1]
            take = min(held, remaining)
            if held - take > 0:
                self.slots[slot] = (item_id, held - take)
            else:
                del self.slots[slot]
            remaining -= take
        return remaining

    def set_all(self, totals: Mapping[str, Any]) -> None:
        """
        Replace the whole inventory with exact per-item totals.

        Each positive total is split into consecutive full stacks; slots are
        assigned 0..N-1 in the order items are given. Non-positive totals are
        dropped.
        """
        self.slots = {}
        slot = 0
        for item_id, raw in totals.items():
            remaining = max(0, to_int(raw))
            if remaining == 0:
                continue
            limit = self.stack_limit(item_id)
            while remaining > 0:
                chunk = min(limit, remaining)
                self.slots[slot] = (item_id, chunk)
                slot += 1
                remaining -= chunk

    def move(self, from_slot: int, to_slot: int) -> None:
        """
        Move, merge or swap the stack in `from_slot` onto `to_slot`.

        - Empty destination: the stack is relocated.
        - Same item: merged up to the stack limit; leftover stays in from_slot.
        - Different item: the two slots swap contents.

        Raises:
            InvalidSlot: If either slot is not a non-negative integer
            NoItemInSlot: If from_slot is empty
        """
        _assert_slot(from_slot, "fromSlot")
        _assert_slot(to_slot, "toSlot")

        source = self.slots.get(from_slot)
        if source is None:
            raise NoItemInSlot(from_slot)
        if from_slot == to_slot:
            return

        target = self.slots.get(to_slot)
        if target is None:
            del self.slots[from_slot]
            self.slots[to_slot] = source
        elif target[0] == source[0]:
            item_id = source[0]
            total = target[1] + source[1]
            merged = min(self.stack_limit(item_id), total)
            # A destination already above the limit is never shrunk by a merge.
            merged = max(merged, target[1])
            leftover = total - merged
            self.slots[to_slot] = (item_id, merged)
            if leftover > 0:
                self.slots[from_slot] = (item_id, leftover)
            else:
                del self.slots[from_slot]
        else:
            self.slots[from_slot] = target
            self.slots[to_slot] = source

    def compact(self) -> None:
        """
        Merge stacks of the same item into as few stacks as possible and
        renumber slots from 0. Items keep the order of their first slot.
        """
        self.set_all(self.totals())


def totals_from_stacks(stacks: Iterable[InventoryStack], base: Optional[InventoryTotals] = None) -> InventoryTotals:
    """Sum stack rows into per-item totals (optionally on top of `base`)."""
    totals: InventoryTotals = dict(base or {})
    for stack in stacks:
        totals[stack.item_id] = totals.get(stack.item_id, 0) + to_int(stack.qty)
    return totals
