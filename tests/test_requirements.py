import unittest

from taskloop.systems.requirements import (
    AbilityMin,
    AllOf,
    AnyOf,
    Custom,
    EvaluationContext,
    FlagPresent,
    ItemRequired,
    Not,
    SkillLevelMin,
    TavLevelMin,
    evaluate_requirement,
    evaluate_requirements,
    parse_requirement,
    parse_requirements,
)


def ctx(**kwargs) -> EvaluationContext:
    return EvaluationContext(**kwargs)


class TestLeafNodes(unittest.TestCase):
    def test_ability_min_is_at_least(self) -> None:
        context = ctx(abilities={"str": 10})
        self.assertTrue(evaluate_requirement(AbilityMin("str", 10), context))
        self.assertFalse(evaluate_requirement(AbilityMin("str", 11), context))

    def test_missing_ability_counts_as_zero(self) -> None:
        self.assertTrue(evaluate_requirement(AbilityMin("dex", 0), ctx()))
        self.assertFalse(evaluate_requirement(AbilityMin("dex", 1), ctx()))

    def test_missing_tav_level_counts_as_one(self) -> None:
        self.assertTrue(evaluate_requirement(TavLevelMin(1), ctx()))
        self.assertFalse(evaluate_requirement(TavLevelMin(2), ctx()))
        self.assertTrue(evaluate_requirement(TavLevelMin(2), ctx(tav_level=3)))

    def test_missing_skill_level_counts_as_zero(self) -> None:
        self.assertTrue(evaluate_requirement(SkillLevelMin("logging", 0), ctx()))
        self.assertFalse(evaluate_requirement(SkillLevelMin("logging", 1), ctx()))
        self.assertTrue(evaluate_requirement(SkillLevelMin("logging", 2), ctx(skill_levels={"logging": 2})))

    def test_item_required_uses_totals(self) -> None:
        context = ctx(inventory={"log": 3})
        self.assertTrue(evaluate_requirement(ItemRequired("log", 3), context))
        self.assertFalse(evaluate_requirement(ItemRequired("log", 4), context))
        self.assertFalse(evaluate_requirement(ItemRequired("torch", 1), context))

    def test_flag_present(self) -> None:
        context = ctx(flags={"schedule_block_work"})
        self.assertTrue(evaluate_requirement(FlagPresent("schedule_block_work"), context))
        self.assertFalse(evaluate_requirement(FlagPresent("schedule_block_bedtime"), context))


class TestCustomChecks(unittest.TestCase):
    def test_literal_override(self) -> None:
        self.assertTrue(evaluate_requirement(Custom("a"), ctx(custom_checks={"a": True})))
        self.assertFalse(evaluate_requirement(Custom("a"), ctx(custom_checks={"a": False})))

    def test_predicate_receives_context(self) -> None:
        context = ctx(abilities={"str": 15}, custom_checks={"strong": lambda c: c.abilities["str"] > 12})
        self.assertTrue(evaluate_requirement(Custom("strong"), context))

    def test_named_override_wins_over_resolver(self) -> None:
        context = ctx(custom_checks={"a": False}, resolve_custom=lambda name, c: True)
        self.assertFalse(evaluate_requirement(Custom("a"), context))

    def test_resolver_gets_name(self) -> None:
        seen = []

        def resolver(name, context):
            seen.append(name)
            return name == "weather_clear"

        context = ctx(resolve_custom=resolver)
        self.assertTrue(evaluate_requirement(Custom("weather_clear"), context))
        self.assertFalse(evaluate_requirement(Custom("sawmill_ready"), context))
        self.assertEqual(seen, ["weather_clear", "sawmill_ready"])

    def test_unresolved_fails_closed(self) -> None:
        self.assertFalse(evaluate_requirement(Custom("unknown"), ctx()))

    def test_raising_predicate_is_false(self) -> None:
        def boom(context):
            raise RuntimeError("nope")

        with self.assertLogs("taskloop.systems.requirements", level="WARNING"):
            self.assertFalse(evaluate_requirement(Custom("boom"), ctx(custom_checks={"boom": boom})))


class TestCombinators(unittest.TestCase):
    def test_empty_and_is_true_empty_or_is_false(self) -> None:
        self.assertTrue(evaluate_requirements([], ctx()))
        self.assertTrue(evaluate_requirements(None, ctx()))
        self.assertTrue(evaluate_requirement(AllOf(()), ctx()))
        self.assertFalse(evaluate_requirement(AnyOf(()), ctx()))

    def test_bare_list_is_and(self) -> None:
        context = ctx(abilities={"str": 12}, flags={"f"})
        self.assertTrue(evaluate_requirements([AbilityMin("str", 12), FlagPresent("f")], context))
        self.assertFalse(evaluate_requirements([AbilityMin("str", 12), FlagPresent("g")], context))

    def test_or_needs_one(self) -> None:
        node = AnyOf((FlagPresent("a"), FlagPresent("b")))
        self.assertTrue(evaluate_requirement(node, ctx(flags={"b"})))
        self.assertFalse(evaluate_requirement(node, ctx(flags={"c"})))

    def test_double_negation(self) -> None:
        trees = [
            FlagPresent("a"),
            AllOf((FlagPresent("a"), AbilityMin("str", 5))),
            AnyOf(()),
            Custom("x"),
        ]
        contexts = [ctx(), ctx(flags={"a"}, abilities={"str": 5}), ctx(custom_checks={"x": True})]
        for tree in trees:
            for context in contexts:
                self.assertEqual(
                    evaluate_requirement(Not(Not(tree)), context),
                    evaluate_requirement(tree, context),
                )

    def test_evaluation_is_repeatable(self) -> None:
        tree = AnyOf((Custom("scout_ready"), SkillLevelMin("logging", 3)))
        context = ctx(skill_levels={"logging": 3})
        self.assertEqual(
            [evaluate_requirement(tree, context) for _ in range(3)],
            [True, True, True],
        )

    def test_unknown_node_type_raises(self) -> None:
        with self.assertRaises(TypeError):
            evaluate_requirement(object(), ctx())


class TestParsing(unittest.TestCase):
    def test_parses_nested_tree(self) -> None:
        nodes = parse_requirements([
            {"op": "ability_min", "ability": "str", "value": 10},
            {"op": "or", "requirements": [
                {"op": "custom", "name": "scout_ready"},
                {"op": "not", "requirement": {"op": "flag_present", "flag_id": "tired"}},
            ]},
        ])
        self.assertEqual(nodes, (
            AbilityMin("str", 10),
            AnyOf((Custom("scout_ready"), Not(FlagPresent("tired")))),
        ))

    def test_item_quantity_defaults_to_one(self) -> None:
        self.assertEqual(parse_requirement({"op": "item_required", "item_id": "torch"}), ItemRequired("torch", 1))

    def test_unknown_op_raises(self) -> None:
        with self.assertRaises(ValueError):
            parse_requirement({"op": "xor", "requirements": []})

    def test_missing_field_raises(self) -> None:
        with self.assertRaises(ValueError):
            parse_requirement({"op": "ability_min", "ability": "str"})

    def test_none_is_empty(self) -> None:
        self.assertEqual(parse_requirements(None), ())


if __name__ == "__main__":
    unittest.main()
