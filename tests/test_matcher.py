import unittest
from decimal import Decimal
from itertools import permutations

from drawsettle.errors import InvalidCombination
from drawsettle.models import Bet
from drawsettle.settlement.matcher import (
    DEFAULT_PRIZE_RULES,
    MatchRule,
    MatchRuleRegistry,
    PrizeRuleSnapshot,
    evaluate_bet,
    evaluate_bets,
    normalize_combination,
    validate_bet_for_sale,
)


class StandardMatchTests(unittest.TestCase):
    def test_wins_only_on_exact_order(self):
        self.assertTrue(evaluate_bet("123", "standard", Decimal("1"), "123").is_winner)
        for other in ("132", "213", "321", "124"):
            result = evaluate_bet("123", "standard", Decimal("1"), other)
            self.assertFalse(result.is_winner, other)
            self.assertEqual(result.prize, Decimal("0.00"))

    def test_prize_uses_standard_multiplier(self):
        result = evaluate_bet("455", "standard", Decimal("10"), "455")
        self.assertEqual(result.multiplier, Decimal("450"))
        self.assertEqual(result.prize, Decimal("4500.00"))


class RambolitoMatchTests(unittest.TestCase):
    def test_wins_on_every_permutation_and_nothing_else(self):
        winners = {"".join(p) for p in permutations("123")}
        self.assertEqual(len(winners), 6)
        for number in (f"{n:03d}" for n in range(1000)):
            result = evaluate_bet("123", "rambolito", Decimal("1"), number)
            self.assertEqual(result.is_winner, number in winners, number)

    def test_repeated_digit_pays_double_multiplier(self):
        result = evaluate_bet("112", "rambolito", Decimal("2"), "121")
        self.assertTrue(result.is_winner)
        self.assertTrue(result.is_double)
        self.assertEqual(result.multiplier, DEFAULT_PRIZE_RULES.rambolito_double)
        self.assertEqual(result.prize, Decimal("300.00"))

    def test_distinct_digits_pay_regular_multiplier(self):
        result = evaluate_bet("123", "rambolito", Decimal("2"), "312")
        self.assertTrue(result.is_winner)
        self.assertFalse(result.is_double)
        self.assertEqual(result.prize, Decimal("150.00"))

    def test_677_against_767(self):
        result = evaluate_bet("677", "rambolito", Decimal("5"), "767")
        self.assertTrue(result.is_winner)
        self.assertEqual(result.prize, Decimal("750.00"))

    def test_multiset_must_match_not_just_digit_set(self):
        # Same digit set {4, 5} but different multiplicities.
        self.assertFalse(evaluate_bet("445", "rambolito", Decimal("1"), "455").is_winner)


class NormalizationTests(unittest.TestCase):
    def test_whitespace_is_stripped(self):
        self.assertEqual(normalize_combination(" 007 "), "007")
        result = evaluate_bet(" 1 2 3", "standard", Decimal("1"), "123 ")
        self.assertTrue(result.is_winner)
        self.assertEqual(result.combination, "123")

    def test_malformed_inputs_raise(self):
        for bad in ("12", "1234", "12a", "", "１２３"):
            with self.assertRaises(InvalidCombination, msg=bad):
                evaluate_bet(bad, "standard", Decimal("1"), "123")
        with self.assertRaises(InvalidCombination):
            evaluate_bet("123", "standard", Decimal("1"), "12")
        with self.assertRaises(InvalidCombination):
            normalize_combination(123)

    def test_unknown_bet_type_raises(self):
        with self.assertRaises(InvalidCombination):
            evaluate_bet("123", "box", Decimal("1"), "123")

    def test_invalid_combination_is_a_value_error(self):
        with self.assertRaises(ValueError):
            normalize_combination("abc")


class RulesAndRegistryTests(unittest.TestCase):
    def test_custom_rules_are_applied(self):
        rules = PrizeRuleSnapshot(
            standard=Decimal("500"),
            rambolito=Decimal("80"),
            rambolito_double=Decimal("160"),
            rule_id=7,
        )
        self.assertEqual(
            evaluate_bet("123", "standard", Decimal("1"), "123", rules).prize,
            Decimal("500.00"),
        )
        self.assertEqual(
            evaluate_bet("223", "rambolito", Decimal("1"), "322", rules).prize,
            Decimal("160.00"),
        )

    def test_snapshot_from_none_is_default(self):
        self.assertIs(PrizeRuleSnapshot.from_model(None), DEFAULT_PRIZE_RULES)

    def test_registry_rejects_duplicates_unless_replace(self):
        registry = MatchRuleRegistry()
        rule = MatchRule("standard", lambda c, w, r: (c == w, r.standard))
        registry.register(rule)
        with self.assertRaises(ValueError):
            registry.register(rule)
        registry.register(rule, replace=True)
        self.assertIn("standard", registry.available_bet_types())

    def test_custom_registry_is_used(self):
        registry = MatchRuleRegistry()
        registry.register(MatchRule("standard", lambda c, w, r: (True, Decimal("2"))))
        result = evaluate_bet("000", "standard", Decimal("3"), "999", registry=registry)
        self.assertTrue(result.is_winner)
        self.assertEqual(result.prize, Decimal("6.00"))


class TicketEvaluationTests(unittest.TestCase):
    def test_bets_are_evaluated_independently_and_summed(self):
        bets = [
            Bet("455", "standard", 10),
            Bet("456", "rambolito", 10),
            Bet("545", "rambolito", 2),
        ]
        evaluation = evaluate_bets(bets, "455")
        self.assertTrue(evaluation.is_winner)
        self.assertEqual([b.is_winner for b in evaluation.bets], [True, False, True])
        self.assertEqual(evaluation.prize, Decimal("4800.00"))

    def test_no_winning_bet(self):
        evaluation = evaluate_bets([Bet("111", "standard", 1)], "222")
        self.assertFalse(evaluation.is_winner)
        self.assertEqual(evaluation.prize, Decimal("0.00"))


class SaleValidationTests(unittest.TestCase):
    def test_triple_rambolito_rejected(self):
        with self.assertRaises(InvalidCombination):
            validate_bet_for_sale("777", "rambolito", Decimal("5"))
        self.assertEqual(validate_bet_for_sale("777", "standard", Decimal("5")), "777")

    def test_amount_must_be_positive_number(self):
        for amount in (Decimal("0"), Decimal("-1"), "abc"):
            with self.assertRaises(InvalidCombination, msg=str(amount)):
                validate_bet_for_sale("123", "standard", amount)

    def test_amount_finer_than_a_centavo_rejected(self):
        with self.assertRaises(InvalidCombination):
            validate_bet_for_sale("455", "standard", "10.005")
        self.assertEqual(validate_bet_for_sale("455", "standard", "10.50"), "455")
        self.assertEqual(validate_bet_for_sale("455", "standard", Decimal("10.500")), "455")


if __name__ == "__main__":
    unittest.main()
