#!/usr/bin/env python3
"""
Fee Calculator Unit Tests

Tests for the tiered and lost-ticket pricing strategies:
1. Billable minutes (partial minutes round up)
2. Minimum charge and incremental blocks
3. Last tier repeating for long stays
4. Daily special ceiling
5. Determinism and invalid durations
"""

import unittest
from datetime import datetime, timedelta, timezone
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from parking_billing.domain.errors import InvalidDuration
from parking_billing.domain.money import Money
from parking_billing.domain.pricing import PricingPolicy
from parking_billing.domain.strategies import (
    FeeCalculator, FeeLineKind, LostTicketPricingStrategy, TieredPricingStrategy,
    billable_minutes
)
from parking_billing.infrastructure.config import DEFAULT_PRICING, default_pricing_policy


ENTRY = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


def make_policy(**overrides) -> PricingPolicy:
    data = dict(DEFAULT_PRICING)
    data.update(overrides)
    return PricingPolicy.from_dict(data)


class TestBillableMinutes(unittest.TestCase):

    def test_exact_minutes(self):
        self.assertEqual(billable_minutes(ENTRY, ENTRY), 0)
        self.assertEqual(billable_minutes(ENTRY, ENTRY + timedelta(minutes=60)), 60)

    def test_partial_minute_rounds_up(self):
        self.assertEqual(billable_minutes(ENTRY, ENTRY + timedelta(minutes=60, seconds=1)), 61)
        self.assertEqual(billable_minutes(ENTRY, ENTRY + timedelta(microseconds=1)), 1)

    def test_multi_day_stay(self):
        self.assertEqual(billable_minutes(ENTRY, ENTRY + timedelta(days=2, minutes=5)), 2 * 1440 + 5)

    def test_exit_before_entry(self):
        with self.assertRaises(InvalidDuration):
            billable_minutes(ENTRY, ENTRY - timedelta(seconds=1))

    def test_naive_and_aware_mix(self):
        with self.assertRaises(InvalidDuration):
            billable_minutes(ENTRY, datetime(2024, 3, 15, 10, 0))


class TestTieredPricingStrategy(unittest.TestCase):
    """Unit tests for the standard tariff"""

    def setUp(self):
        self.calculator = FeeCalculator()
        self.policy = default_pricing_policy()

    def quote(self, policy=None, **delta):
        return self.calculator.calculate(ENTRY, ENTRY + timedelta(**delta), policy or self.policy)

    def test_minimum_charge_up_to_minimum_hours(self):
        for minutes in (0, 1, 30, 59, 60):
            with self.subTest(minutes=minutes):
                result = self.quote(minutes=minutes)
                self.assertEqual(result.total_amount, Money.parse("25.00"))
                self.assertEqual(len(result.increments), 0)
                self.assertEqual(result.duration_minutes, minutes)

    def test_one_second_past_minimum_buys_an_increment(self):
        result = self.quote(minutes=60, seconds=1)
        self.assertEqual(result.duration_minutes, 61)
        self.assertEqual(len(result.increments), 1)
        self.assertEqual(result.total_amount, Money.parse("33.50"))

    def test_one_hour_forty_five_with_single_rate(self):
        policy = make_policy(increment_rates=["5.00"], daily_special_hours=None, daily_special_rate=None)
        result = self.quote(policy, hours=1, minutes=45)
        self.assertEqual(result.total_amount, Money.parse("40.00"))
        self.assertEqual(len(result.increments), 3)

    def test_fourth_and_fifth_increment_reuse_last_tier(self):
        result = self.quote(hours=2, minutes=15)
        increments = [line for line in result.breakdown if line.kind == FeeLineKind.INCREMENT]

        self.assertEqual(len(increments), 5)
        self.assertEqual(
            [line.amount for line in increments],
            [Money.parse(r) for r in ("8.50", "8.50", "12.75", "12.75", "12.75")]
        )
        self.assertEqual([line.index for line in increments], [0, 1, 2, 3, 4])
        self.assertEqual(result.total_amount, Money.parse("80.25"))

    def test_long_stay_without_cap(self):
        policy = make_policy(daily_special_hours=None, daily_special_rate=None)
        result = self.quote(policy, hours=3)
        # 8 blocks: 8.50 + 8.50 + 6 x 12.75
        self.assertEqual(result.total_amount, Money.parse("118.50"))
        self.assertFalse(result.cap_applied)

    def test_breakdown_order_and_subtotal(self):
        result = self.quote(minutes=90)
        kinds = [line.kind for line in result.breakdown]
        self.assertEqual(
            kinds,
            [FeeLineKind.MINIMUM, FeeLineKind.INCREMENT, FeeLineKind.INCREMENT, FeeLineKind.SUBTOTAL]
        )
        self.assertEqual(result.breakdown[-1].amount, Money.parse("42.00"))
        self.assertEqual(result.total_amount, Money.parse("42.00"))

    def test_daily_special_caps_total_exactly(self):
        result = self.quote(hours=8)
        self.assertTrue(result.cap_applied)
        self.assertEqual(result.total_amount, Money.parse("80.00"))
        self.assertEqual(result.breakdown[-1].kind, FeeLineKind.DAILY_CAP)
        # Subtotal before the cap is still itemised
        subtotal = [line for line in result.breakdown if line.kind == FeeLineKind.SUBTOTAL][0]
        self.assertEqual(subtotal.amount, Money.parse("373.50"))

    def test_cap_not_applied_before_special_hours(self):
        result = self.quote(hours=7, minutes=59)
        self.assertFalse(result.cap_applied)
        self.assertTrue(result.total_amount.greater_than(Money.parse("80.00")))

    def test_cap_never_raises_the_price(self):
        policy = make_policy(increment_rates=["1.00"])
        result = self.quote(policy, hours=8)
        # 25 + 28 x 1.00 stays below the 80.00 special
        self.assertEqual(result.total_amount, Money.parse("53.00"))
        self.assertFalse(result.cap_applied)

    def test_total_never_decreases_without_cap(self):
        policy = make_policy(daily_special_hours=None, daily_special_rate=None)
        previous = Money.zero()
        for minutes in range(0, 600, 7):
            total = self.quote(policy, minutes=minutes).total_amount
            self.assertFalse(total.less_than(previous), f"total dropped at {minutes} minutes")
            previous = total

    def test_deterministic(self):
        exit_time = ENTRY + timedelta(hours=5, minutes=17, seconds=3)
        first = self.calculator.calculate(ENTRY, exit_time, self.policy)
        second = self.calculator.calculate(ENTRY, exit_time, self.policy)
        self.assertEqual(first, second)
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_invalid_duration(self):
        with self.assertRaises(InvalidDuration):
            self.calculator.calculate(ENTRY, ENTRY - timedelta(minutes=1), self.policy)

    def test_to_dict(self):
        data = self.quote(minutes=61).to_dict()
        self.assertEqual(data["total_amount"]["amount"], "33.50")
        self.assertEqual(data["duration_minutes"], 61)
        self.assertFalse(data["cap_applied"])
        self.assertEqual(data["breakdown"][1]["kind"], "INCREMENT")

    def test_strategy_name(self):
        self.assertEqual(TieredPricingStrategy().get_strategy_name(), "Tiered")
        self.assertEqual(str(LostTicketPricingStrategy()), "LostTicket Strategy")


class TestLostTicketPricing(unittest.TestCase):

    def test_fixed_fee_and_zero_duration(self):
        result = FeeCalculator().calculate_lost_ticket(default_pricing_policy())
        self.assertEqual(result.total_amount, Money.parse("150.00"))
        self.assertEqual(result.duration_minutes, 0)
        self.assertEqual(len(result.breakdown), 1)
        self.assertEqual(result.breakdown[0].kind, FeeLineKind.LOST_TICKET)


if __name__ == '__main__':
    unittest.main()
