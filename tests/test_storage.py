import os
import tempfile
import threading
import unittest

from taskloop.actors import create_actor, delete_actor, set_actor_flags
from taskloop.errors import DuplicateTask, InsufficientQuantity, NoItemInSlot, UnknownActor, UnknownItem
from taskloop.models import Task, TaskKey, TaskStatus, TaskUpdate, TickCommit
from taskloop.stash import (
    apply_inventory_delta,
    compact_inventory,
    get_inventory_totals,
    get_item_quantity,
    list_inventory,
    move_inventory_item,
    set_inventory_items,
)
from taskloop.storage import MemoryStorage, SqliteStorage
from taskloop.systems.inventory import InventoryStack
from taskloop.tasks import add_task
from taskloop.tick import TickEngine
from support import FixedSchedule, allow, make_registry


class StorageContract:
    """Behaviour every storage backend must share."""

    def make_storage(self):
        raise NotImplementedError

    def setUp(self) -> None:
        self.storage = self.make_storage()
        self.registry = make_registry()
        self.actor = create_actor(self.storage, self.registry, "Tav", flags=["rested"], now=42)

    def tearDown(self) -> None:
        self.storage.close()

    def test_actor_round_trip(self) -> None:
        actor = self.storage.get_actor(self.actor.id)
        self.assertEqual(actor.name, "Tav")
        self.assertEqual(actor.ability_scores["str"], 10)
        self.assertEqual(actor.flags, ["rested"])
        self.assertEqual(actor.xp, 0)
        self.assertEqual(actor.created_at, 42)
        self.assertIsNone(actor.last_tick_at)
        self.assertIsNone(self.storage.get_actor(12345))

    def test_update_and_list_actors(self) -> None:
        set_actor_flags(self.storage, self.actor.id, add=["forest_access", "rested"], remove=[])
        updated = self.storage.update_actor(self.actor.id, ability_scores={"str": 14})
        self.assertEqual(updated.flags, ["rested", "forest_access"])
        self.assertEqual(updated.ability_scores, {"str": 14})
        other = create_actor(self.storage, self.registry, "Karlach")
        self.assertEqual([a.id for a in self.storage.list_actors()], [self.actor.id, other.id])
        with self.assertRaises(UnknownActor):
            self.storage.update_actor(9999, flags=[])

    def test_delete_actor_removes_everything(self) -> None:
        other = create_actor(self.storage, self.registry, "Astarion")
        self.storage.insert_task(Task(self.actor.id, "idle"))
        self.storage.ensure_skill(self.actor.id, "idle")
        self.storage.replace_stacks(self.actor.id, [InventoryStack(0, "log", 2)])

        delete_actor(self.storage, self.actor.id)

        self.assertIsNone(self.storage.get_actor(self.actor.id))
        self.assertIsNone(self.storage.load_snapshot(self.actor.id))
        self.assertIsNone(self.storage.find_actor_with_work())
        self.assertEqual([a.id for a in self.storage.list_actors()], [other.id])
        with self.assertRaises(UnknownActor):
            self.storage.list_tasks(self.actor.id)
        with self.assertRaises(UnknownActor):
            delete_actor(self.storage, self.actor.id)

    def test_snapshot_is_a_copy(self) -> None:
        snapshot = self.storage.load_snapshot(self.actor.id)
        snapshot.actor.flags.append("tampered")
        self.assertEqual(self.storage.get_actor(self.actor.id).flags, ["rested"])
        self.assertIsNone(self.storage.load_snapshot(9999))

    def test_insert_task_and_duplicates(self) -> None:
        first = self.storage.insert_task(Task(self.actor.id, "idle", created_at=5))
        second = self.storage.insert_task(Task(self.actor.id, "logging", "small_tree", created_at=5))
        self.assertLess(first.seq, second.seq)
        with self.assertRaises(DuplicateTask):
            self.storage.insert_task(Task(self.actor.id, "idle", created_at=6))
        self.assertEqual([t.skill_id for t in self.storage.list_tasks(self.actor.id)], ["idle", "logging"])

    def test_commit_applies_everything(self) -> None:
        self.storage.insert_task(Task(self.actor.id, "idle"))
        self.storage.ensure_skill(self.actor.id, "idle")
        self.storage.commit(self.actor.id, TickCommit(
            actor_xp_delta=5,
            skill_xp_delta={"idle": 3, "logging": 7},
            stacks=[InventoryStack(0, "log", 2)],
            task_updates=[TaskUpdate(TaskKey(self.actor.id, "idle", "none"), TaskStatus.EXECUTING, 100)],
            last_tick_at=100,
        ))
        snapshot = self.storage.load_snapshot(self.actor.id)
        self.assertEqual(snapshot.actor.xp, 5)
        self.assertEqual(snapshot.skill_xp, {"idle": 3, "logging": 7})
        self.assertEqual(snapshot.stacks, [InventoryStack(0, "log", 2)])
        self.assertEqual((snapshot.tasks[0].status, snapshot.tasks[0].started_at), (TaskStatus.EXECUTING, 100))
        self.assertEqual(snapshot.last_tick_at, 100)

    def test_commit_without_stacks_keeps_inventory(self) -> None:
        self.storage.replace_stacks(self.actor.id, [InventoryStack(3, "torch", 2)])
        self.storage.commit(self.actor.id, TickCommit(last_tick_at=1))
        self.assertEqual(self.storage.list_stacks(self.actor.id), [InventoryStack(3, "torch", 2)])

    def test_find_actor_with_work(self) -> None:
        self.assertIsNone(self.storage.find_actor_with_work())
        other = create_actor(self.storage, self.registry, "Gale")
        self.storage.insert_task(Task(other.id, "idle"))
        self.assertEqual(self.storage.find_actor_with_work(), other.id)
        self.storage.commit(other.id, TickCommit(
            task_updates=[TaskUpdate(TaskKey(other.id, "idle", "none"), TaskStatus.FAILED, None)],
        ))
        self.assertIsNone(self.storage.find_actor_with_work())

    def test_actor_lock_serialises_same_actor(self) -> None:
        entered = []
        with self.storage.actor_lock(self.actor.id):
            thread = threading.Thread(target=lambda: self._enter(entered))
            thread.start()
            thread.join(0.05)
            self.assertEqual(entered, [])
        thread.join(1)
        self.assertEqual(entered, [self.actor.id])

    def _enter(self, entered) -> None:
        with self.storage.actor_lock(self.actor.id):
            entered.append(self.actor.id)

    # --- Persisted inventory operations ---

    def test_inventory_operations(self) -> None:
        actor_id = self.actor.id
        apply_inventory_delta(self.storage, self.registry, actor_id, {"torch": 12})
        self.assertEqual([s.qty for s in list_inventory(self.storage, self.registry, actor_id)], [5, 5, 2])
        self.assertEqual(get_item_quantity(self.storage, self.registry, actor_id, "torch"), 12)

        move_inventory_item(self.storage, self.registry, actor_id, 2, 7)
        self.assertEqual([s.slot for s in list_inventory(self.storage, self.registry, actor_id)], [0, 1, 7])

        with self.assertRaises(NoItemInSlot):
            move_inventory_item(self.storage, self.registry, actor_id, 4, 0)
        with self.assertRaises(InsufficientQuantity):
            apply_inventory_delta(self.storage, self.registry, actor_id, {"torch": -13})
        self.assertEqual(get_inventory_totals(self.storage, self.registry, actor_id), {"torch": 12})

        apply_inventory_delta(self.storage, self.registry, actor_id, {"torch": -4})
        compact_inventory(self.storage, self.registry, actor_id)
        self.assertEqual(
            [(s.slot, s.qty) for s in list_inventory(self.storage, self.registry, actor_id)],
            [(0, 5), (1, 3)],
        )

        set_inventory_items(self.storage, self.registry, actor_id, {"log": 3, "plank": 0})
        self.assertEqual(get_inventory_totals(self.storage, self.registry, actor_id), {"log": 3})

    def test_inventory_rejects_unknown_items(self) -> None:
        with self.assertRaises(UnknownItem):
            apply_inventory_delta(self.storage, self.registry, self.actor.id, {"typo": 5})
        with self.assertRaises(UnknownItem):
            set_inventory_items(self.storage, self.registry, self.actor.id, {"log": 1, "typo": 2})
        self.assertEqual(list_inventory(self.storage, self.registry, self.actor.id), [])

    def test_inventory_unknown_actor(self) -> None:
        with self.assertRaises(UnknownActor):
            list_inventory(self.storage, self.registry, 9999)

    def test_tick_end_to_end(self) -> None:
        add_task(self.storage, self.registry, self.actor.id, "logging", "small_tree", now=0,
                 context=allow("forest_access"))
        engine = TickEngine(self.storage, self.registry, schedule=FixedSchedule())
        engine.tick(self.actor.id, now=0, context=allow("logging_allowed"))
        result = engine.tick(self.actor.id, now=5000, context=allow("logging_allowed"))
        self.assertEqual(len(result.completed), 1)
        snapshot = self.storage.load_snapshot(self.actor.id)
        self.assertEqual(snapshot.actor.xp, 3)
        self.assertEqual(snapshot.skill_xp, {"logging": 10})
        self.assertEqual(snapshot.stacks, [InventoryStack(0, "log", 1)])
        self.assertTrue(engine.tick(self.actor.id, now=5000, context=allow("logging_allowed")).is_empty())


class TestMemoryStorage(StorageContract, unittest.TestCase):
    def make_storage(self):
        return MemoryStorage()


class TestSqliteStorage(StorageContract, unittest.TestCase):
    def make_storage(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        return SqliteStorage(os.path.join(self._tmp.name, "nested", "taskloop.db"))

    def test_data_survives_reconnect(self) -> None:
        apply_inventory_delta(self.storage, self.registry, self.actor.id, {"log": 4})
        path = self.storage.db_path
        self.storage.close()
        self.storage = SqliteStorage(path)
        self.assertEqual(self.storage.get_actor(self.actor.id).name, "Tav")
        self.assertEqual(self.storage.list_stacks(self.actor.id), [InventoryStack(0, "log", 4)])


if __name__ == "__main__":
    unittest.main()
