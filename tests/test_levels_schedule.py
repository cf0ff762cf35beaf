import unittest

from taskloop.systems.levels import level_from_xp
from taskloop.systems.schedule import (
    BLOCKS_PER_DAY,
    BlockSchedule,
    ScheduleBlock,
    block_from_flag,
    compute_block_index,
    priority_delta_for_block,
    resolve_block,
    schedule_flag,
    validate_blocks,
)

DAY = ["bedtime"] * 4 + ["bathtime"] + ["work"] * 10 + ["downtime"] * 6 + ["bathtime"] + ["bedtime"] * 2


class TestLevels(unittest.TestCase):
    def test_counts_thresholds_reached(self) -> None:
        table = [0, 300, 900, 2700]
        self.assertEqual(level_from_xp(0, table), 1)
        self.assertEqual(level_from_xp(299, table), 1)
        self.assertEqual(level_from_xp(300, table), 2)
        self.assertEqual(level_from_xp(5000, table), 4)

    def test_never_below_one(self) -> None:
        self.assertEqual(level_from_xp(0, []), 1)
        self.assertEqual(level_from_xp(5, [10, 20]), 1)


class TestSchedule(unittest.TestCase):
    def test_block_index(self) -> None:
        self.assertEqual(compute_block_index(0), 0)
        self.assertEqual(compute_block_index(24_999), 0)
        self.assertEqual(compute_block_index(25_000), 1)
        self.assertEqual(compute_block_index(599_999), 23)
        self.assertEqual(compute_block_index(600_000), 0)

    def test_negative_time_wraps(self) -> None:
        self.assertEqual(compute_block_index(-1_000), 23)

    def test_offset(self) -> None:
        self.assertEqual(compute_block_index(0, offset_seconds=50), 2)

    def test_resolve_block(self) -> None:
        self.assertEqual(resolve_block(DAY, 5 * 25_000), ScheduleBlock.WORK)
        self.assertEqual(resolve_block(DAY, 0), ScheduleBlock.BEDTIME)
        self.assertIsNone(resolve_block(None, 0))
        self.assertIsNone(resolve_block(["work"], 25_000))
        self.assertIsNone(resolve_block(["party"] * BLOCKS_PER_DAY, 0))

    def test_flag_name(self) -> None:
        self.assertEqual(schedule_flag(ScheduleBlock.WORK), "schedule_block_work")
        self.assertEqual(schedule_flag("bathtime"), "schedule_block_bathtime")

    def test_block_from_flag(self) -> None:
        self.assertEqual(block_from_flag("schedule_block_bedtime"), ScheduleBlock.BEDTIME)
        self.assertIsNone(block_from_flag("schedule_block_party"))
        self.assertIsNone(block_from_flag("forest_access"))
        self.assertIsNone(block_from_flag(None))

    def test_block_schedule(self) -> None:
        schedule = BlockSchedule(lambda actor_id: DAY if actor_id == 1 else None)
        self.assertEqual(schedule.current_block_flag(1, 6 * 25_000), "schedule_block_work")
        self.assertIsNone(schedule.current_block_flag(2, 6 * 25_000))

    def test_priority_delta_is_neutral(self) -> None:
        for block in list(ScheduleBlock) + [None]:
            self.assertEqual(priority_delta_for_block(block), 0)

    def test_validate_blocks(self) -> None:
        self.assertEqual(validate_blocks(tuple(DAY)), DAY)
        with self.assertRaises(ValueError):
            validate_blocks(DAY[:-1])
        with self.assertRaises(ValueError):
            validate_blocks(DAY[:-1] + ["party"])


if __name__ == "__main__":
    unittest.main()
