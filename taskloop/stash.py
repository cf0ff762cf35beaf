"""
Persisted Inventory Module
Load / mutate / store an actor's stacks through the Inventory stack manager,
one actor lock per operation.
"""

import logging
from typing import Any, List, Mapping

from taskloop.errors import UnknownActor
from taskloop.registry import DefinitionRegistry
from taskloop.storage import Storage
from taskloop.systems.inventory import Inventory, InventoryStack, InventoryTotals

logger = logging.getLogger(__name__)


def _check_items(registry: DefinitionRegistry, item_ids) -> None:
    for item_id in item_ids:
        registry.require_item(item_id)


def _load(storage: Storage, registry: DefinitionRegistry, actor_id) -> Inventory:
    if storage.get_actor(actor_id) is None:
        raise UnknownActor(actor_id)
    return Inventory(registry.stack_limit, storage.list_stacks(actor_id))


def list_inventory(storage: Storage, registry: DefinitionRegistry, actor_id) -> List[InventoryStack]:
    """All stacks of an actor, ordered by slot."""
    return _load(storage, registry, actor_id).stacks()


def get_inventory_totals(storage: Storage, registry: DefinitionRegistry, actor_id) -> InventoryTotals:
    return _load(storage, registry, actor_id).totals()


def get_item_quantity(storage: Storage, registry: DefinitionRegistry, actor_id, item_id: str) -> int:
    return _load(storage, registry, actor_id).get_quantity(item_id)


def apply_inventory_delta(
    storage: Storage,
    registry: DefinitionRegistry,
    actor_id,
    deltas: Mapping[str, Any],
    strict: bool = True,
) -> List[InventoryStack]:
    """
    Apply signed item deltas and persist the result.

    Args:
        deltas: item_id -> signed quantity change
        strict: Raise InsufficientQuantity instead of clamping at zero

    Returns:
        List[InventoryStack]: The stacks after the change

    Raises:
        UnknownItem: If a delta names an item with no definition
    """
    _check_items(registry, deltas)
    with storage.actor_lock(actor_id):
        inventory = _load(storage, registry, actor_id)
        inventory.apply_delta(deltas, strict=strict)
        storage.replace_stacks(actor_id, inventory.stacks())
    logger.debug("Applied inventory delta %s for actor %s", dict(deltas), actor_id)
    return inventory.stacks()


def set_inventory_items(
    storage: Storage, registry: DefinitionRegistry, actor_id, totals: Mapping[str, Any]
) -> List[InventoryStack]:
    """Replace the actor's whole inventory with the given per-item totals."""
    _check_items(registry, totals)
    with storage.actor_lock(actor_id):
        inventory = _load(storage, registry, actor_id)
        inventory.set_all(totals)
        storage.replace_stacks(actor_id, inventory.stacks())
    return inventory.stacks()


def move_inventory_item(
    storage: Storage, registry: DefinitionRegistry, actor_id, from_slot: int, to_slot: int
) -> List[InventoryStack]:
    """Move, merge or swap a stack between two slots (see Inventory.move)."""
    with storage.actor_lock(actor_id):
        inventory = _load(storage, registry, actor_id)
        inventory.move(from_slot, to_slot)
        storage.replace_stacks(actor_id, inventory.stacks())
    logger.debug("Moved slot %s -> %s for actor %s", from_slot, to_slot, actor_id)
    return inventory.stacks()


def compact_inventory(storage: Storage, registry: DefinitionRegistry, actor_id) -> List[InventoryStack]:
    with storage.actor_lock(actor_id):
        inventory = _load(storage, registry, actor_id)
        inventory.compact()
        storage.replace_stacks(actor_id, inventory.stacks())
    return inventory.stacks()
