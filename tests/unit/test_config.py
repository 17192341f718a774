#!/usr/bin/env python3
"""
Configuration Unit Tests

Tests for settings, YAML and SQL pricing sources and the Redis cache.
"""

import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import Mock
import sys
from pathlib import Path

import redis

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from parking_billing.domain.errors import InvalidPricingPolicy
from parking_billing.domain.money import Money
from parking_billing.infrastructure.config import (
    BillingSettings, RedisCachedPricingSource, SQLAlchemyPricingSource,
    StaticPricingSource, YamlPricingSource, default_pricing_policy,
    load_pricing_policy
)
from parking_billing.infrastructure.repositories import RepositoryFactory


class TestBillingSettings(unittest.TestCase):

    def test_defaults(self):
        settings = BillingSettings.from_env({})
        self.assertEqual(settings.database_url, "sqlite:///./parking_billing.db")
        self.assertIsNone(settings.redis_url)
        self.assertEqual(settings.currency, "MXN")
        self.assertEqual(settings.log_level, "INFO")
        self.assertEqual(settings.policy_cache_seconds, 300)

    def test_from_environment(self):
        settings = BillingSettings.from_env({
            "PARKING_DATABASE_URL": "postgresql://billing@db/parking",
            "PARKING_REDIS_URL": "redis://cache:6379/0",
            "PARKING_AMQP_URL": "amqp://guest:guest@mq:5672/",
            "PARKING_MONGO_URL": "",
            "PARKING_CURRENCY": " usd ",
            "PARKING_LOG_LEVEL": "debug",
            "PARKING_POLICY_CACHE_SECONDS": "60",
        })
        self.assertEqual(settings.database_url, "postgresql://billing@db/parking")
        self.assertEqual(settings.redis_url, "redis://cache:6379/0")
        self.assertIsNone(settings.mongo_url)
        self.assertEqual(settings.currency, "USD")
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertEqual(settings.policy_cache_seconds, 60)

    def test_bad_cache_seconds(self):
        for value in ("soon", "-1"):
            with self.subTest(value=value):
                with self.assertRaises(InvalidPricingPolicy):
                    BillingSettings.from_env({"PARKING_POLICY_CACHE_SECONDS": value})


class TestYamlPricing(unittest.TestCase):
    """Pricing policies read from YAML files"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def write(self, name: str, content: str) -> str:
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def test_nested_pricing_key(self):
        path = self.write("pricing.yaml", """
pricing:
  currency: MXN
  minimum_hours: 1
  minimum_rate: "30.00"
  increment_minutes: 20
  increment_rates: ["10.00", "12.50"]
  monthly_rate: "900.00"
  lost_ticket_fee: "200.00"
""")
        policy = load_pricing_policy(path)
        self.assertEqual(policy.minimum_rate, Money.parse("30.00"))
        self.assertEqual(policy.increment_minutes, 20)
        self.assertFalse(policy.has_daily_special)

    def test_top_level_mapping(self):
        path = self.write("flat.yaml", json.dumps(default_pricing_policy().to_dict()))
        self.assertEqual(load_pricing_policy(path), default_pricing_policy())

    def test_example_file_matches_default(self):
        example = Path(__file__).parent.parent.parent / "config" / "pricing.example.yaml"
        self.assertEqual(load_pricing_policy(example), default_pricing_policy())

    def test_missing_file(self):
        with self.assertRaises(InvalidPricingPolicy):
            load_pricing_policy(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml(self):
        path = self.write("broken.yaml", "pricing: [unclosed")
        with self.assertRaises(InvalidPricingPolicy):
            load_pricing_policy(path)

    def test_not_a_mapping(self):
        path = self.write("list.yaml", "- 1\n- 2\n")
        with self.assertRaises(InvalidPricingPolicy):
            load_pricing_policy(path)

    def test_source_rereads_file(self):
        path = self.write("pricing.yaml", json.dumps(default_pricing_policy().to_dict()))
        source = YamlPricingSource(path)
        self.assertEqual(source.current_policy().minimum_rate, Money.parse("25.00"))

        data = default_pricing_policy().to_dict()
        data["minimum_rate"] = "27.00"
        self.write("pricing.yaml", json.dumps(data))
        self.assertEqual(source.current_policy().minimum_rate, Money.parse("27.00"))


class TestSQLAlchemyPricingSource(unittest.TestCase):

    def setUp(self):
        self.source = SQLAlchemyPricingSource(RepositoryFactory.create_session_factory("sqlite://"))

    def test_empty_table(self):
        with self.assertRaises(InvalidPricingPolicy):
            self.source.current_policy()

    def test_publish_and_read_latest(self):
        self.source.publish(default_pricing_policy())
        self.assertEqual(self.source.current_policy(), default_pricing_policy())

        data = default_pricing_policy().to_dict()
        data["lost_ticket_fee"] = "175.00"
        updated = type(default_pricing_policy()).from_dict(data)
        self.source.publish(updated)
        self.assertEqual(self.source.current_policy().lost_ticket_fee, Money.parse("175.00"))


class TestRedisCachedPricingSource(unittest.TestCase):
    """Redis cache in front of another pricing source"""

    def setUp(self):
        self.policy = default_pricing_policy()
        self.inner = Mock()
        self.inner.current_policy.return_value = self.policy
        self.cache = Mock()
        self.source = RedisCachedPricingSource(self.inner, self.cache, ttl_seconds=120)

    def test_cache_miss_reads_source_and_caches(self):
        self.cache.get.return_value = None

        self.assertEqual(self.source.current_policy(), self.policy)
        self.inner.current_policy.assert_called_once()
        key, payload = self.cache.set.call_args[0]
        self.assertEqual(key, "parking_billing:pricing_policy")
        self.assertEqual(json.loads(payload), self.policy.to_dict())
        self.assertEqual(self.cache.set.call_args[1], {"ex": 120})

    def test_cache_hit_skips_source(self):
        self.cache.get.return_value = json.dumps(self.policy.to_dict()).encode('utf-8')

        self.assertEqual(self.source.current_policy(), self.policy)
        self.inner.current_policy.assert_not_called()

    def test_redis_down_degrades_to_source(self):
        self.cache.get.side_effect = redis.ConnectionError("connection refused")

        with self.assertLogs("RedisCachedPricingSource", level="WARNING"):
            self.assertEqual(self.source.current_policy(), self.policy)
        self.cache.set.assert_not_called()

    def test_cache_write_failure_is_tolerated(self):
        self.cache.get.return_value = None
        self.cache.set.side_effect = redis.TimeoutError("timeout")
        self.assertEqual(self.source.current_policy(), self.policy)

    def test_invalidate(self):
        self.source.invalidate()
        self.cache.delete.assert_called_once_with("parking_billing:pricing_policy")

    def test_static_source(self):
        self.assertEqual(StaticPricingSource().current_policy(), default_pricing_policy())


if __name__ == '__main__':
    unittest.main()
