#!/usr/bin/env python3
"""
Pricing Policy Unit Tests
"""

import unittest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from parking_billing.domain.errors import EmptyRateSchedule, InvalidPricingPolicy
from parking_billing.domain.money import Money
from parking_billing.domain.pricing import PricingPolicy
from parking_billing.infrastructure.config import DEFAULT_PRICING, default_pricing_policy


def policy_data(**overrides):
    data = dict(DEFAULT_PRICING)
    data.update(overrides)
    return data


class TestPricingPolicy(unittest.TestCase):
    """Unit tests for PricingPolicy validation and lookup"""

    def test_default_policy(self):
        policy = default_pricing_policy()
        self.assertEqual(policy.minimum_hours, 1)
        self.assertEqual(policy.minimum_rate, Money.parse("25.00"))
        self.assertEqual(policy.increment_minutes, 15)
        self.assertEqual(
            policy.increment_rates,
            (Money.parse("8.50"), Money.parse("8.50"), Money.parse("12.75"))
        )
        self.assertEqual(policy.daily_special_hours, 8)
        self.assertEqual(policy.daily_special_rate, Money.parse("80.00"))
        self.assertEqual(policy.lost_ticket_fee, Money.parse("150.00"))
        self.assertEqual(policy.monthly_rate, Money.parse("800.00"))
        self.assertEqual(policy.minimum_minutes, 60)
        self.assertTrue(policy.has_daily_special)

    def test_last_tier_repeats(self):
        policy = default_pricing_policy()
        self.assertEqual(policy.rate_for_increment(0), Money.parse("8.50"))
        self.assertEqual(policy.rate_for_increment(2), Money.parse("12.75"))
        self.assertEqual(policy.rate_for_increment(3), Money.parse("12.75"))
        self.assertEqual(policy.rate_for_increment(500), Money.parse("12.75"))

    def test_negative_increment_index(self):
        with self.assertRaises(IndexError):
            default_pricing_policy().rate_for_increment(-1)

    def test_empty_rate_schedule_is_integrity_fault(self):
        with self.assertRaises(EmptyRateSchedule):
            PricingPolicy.from_dict(policy_data(increment_rates=[]))

    def test_invalid_fields(self):
        cases = [
            {"minimum_hours": 0},
            {"increment_minutes": 0},
            {"increment_minutes": -15},
            {"minimum_rate": "-1.00"},
            {"increment_rates": ["8.50", "-0.01"]},
            {"increment_rates": "8.50"},
            {"daily_special_hours": None},
            {"daily_special_hours": 0},
            {"minimum_hours": "1"},
            {"lost_ticket_fee": "abc"},
        ]
        for overrides in cases:
            with self.subTest(overrides=overrides):
                with self.assertRaises(InvalidPricingPolicy):
                    PricingPolicy.from_dict(policy_data(**overrides))

    def test_missing_required_field(self):
        data = policy_data()
        del data["monthly_rate"]
        with self.assertRaises(InvalidPricingPolicy) as ctx:
            PricingPolicy.from_dict(data)
        self.assertEqual(ctx.exception.field_name, "monthly_rate")

    def test_without_daily_special(self):
        policy = PricingPolicy.from_dict(
            policy_data(daily_special_hours=None, daily_special_rate=None)
        )
        self.assertFalse(policy.has_daily_special)
        self.assertIsNone(policy.to_dict()["daily_special_rate"])

    def test_mixed_currency_rejected(self):
        with self.assertRaises(InvalidPricingPolicy):
            PricingPolicy(
                minimum_hours=1,
                minimum_rate=Money.parse("25", "USD"),
                increment_minutes=15,
                increment_rates=(Money.parse("5"),),
                monthly_rate=Money.parse("800"),
                lost_ticket_fee=Money.parse("150")
            )

    def test_numeric_rates_accepted(self):
        policy = PricingPolicy.from_dict(policy_data(minimum_rate=25, increment_rates=[8.5, "12.75"]))
        self.assertEqual(policy.minimum_rate, Money(2500))
        self.assertEqual(policy.increment_rates[0], Money(850))

    def test_dict_round_trip(self):
        policy = default_pricing_policy()
        data = policy.to_dict()
        self.assertEqual(data["increment_rates"], ["8.50", "8.50", "12.75"])
        self.assertEqual(PricingPolicy.from_dict(data), policy)

    def test_policy_is_immutable(self):
        policy = default_pricing_policy()
        with self.assertRaises(Exception):
            policy.minimum_hours = 2


if __name__ == '__main__':
    unittest.main()
