# File: parking_billing/infrastructure/config.py
"""
Configuration for the Parking Billing Engine

1. BillingSettings - process settings read from PARKING_* environment variables
2. Pricing sources - where the current PricingPolicy snapshot comes from:
   built-in default, YAML file, SQL pricing_configs table, or any of these
   behind a Redis cache

Rates are kept as decimal text in every configuration format and are parsed
at the Money conversion boundary (PricingPolicy.from_dict).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union
import json
import logging
import os

import redis
import yaml
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..domain.errors import InvalidPricingPolicy
from ..domain.money import DEFAULT_CURRENCY
from ..domain.pricing import PricingPolicy
from .repositories import PricingConfigModel, SQLAlchemyUnitOfWork


# Seed tariff: 1h minimum at $25, then 15-minute blocks, 8h daily special
DEFAULT_PRICING: Dict[str, Any] = {
    "currency": DEFAULT_CURRENCY,
    "minimum_hours": 1,
    "minimum_rate": "25.00",
    "increment_minutes": 15,
    "increment_rates": ["8.50", "8.50", "12.75"],
    "daily_special_hours": 8,
    "daily_special_rate": "80.00",
    "monthly_rate": "800.00",
    "lost_ticket_fee": "150.00"
}


def default_pricing_policy(currency: Optional[str] = None) -> PricingPolicy:
    data = dict(DEFAULT_PRICING)
    if currency:
        data["currency"] = currency
    return PricingPolicy.from_dict(data)


# ============================================================================
# SETTINGS
# ============================================================================

@dataclass(frozen=True)
class BillingSettings:
    """Process-level settings; every field maps to a PARKING_* variable"""
    database_url: str = "sqlite:///./parking_billing.db"
    redis_url: Optional[str] = None
    amqp_url: Optional[str] = None
    mongo_url: Optional[str] = None
    pricing_file: Optional[str] = None
    currency: str = DEFAULT_CURRENCY
    log_level: str = "INFO"
    log_file: Optional[str] = None
    policy_cache_seconds: int = 300

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BillingSettings':
        env = os.environ if environ is None else environ

        cache_seconds = env.get("PARKING_POLICY_CACHE_SECONDS", "300")
        try:
            policy_cache_seconds = int(cache_seconds)
        except ValueError:
            raise InvalidPricingPolicy("policy_cache_seconds", f"not an integer: {cache_seconds!r}")
        if policy_cache_seconds < 0:
            raise InvalidPricingPolicy("policy_cache_seconds", "cannot be negative")

        return cls(
            database_url=env.get("PARKING_DATABASE_URL", cls.database_url),
            redis_url=env.get("PARKING_REDIS_URL") or None,
            amqp_url=env.get("PARKING_AMQP_URL") or None,
            mongo_url=env.get("PARKING_MONGO_URL") or None,
            pricing_file=env.get("PARKING_PRICING_FILE") or None,
            currency=env.get("PARKING_CURRENCY", DEFAULT_CURRENCY).strip().upper(),
            log_level=env.get("PARKING_LOG_LEVEL", "INFO").strip().upper(),
            log_file=env.get("PARKING_LOG_FILE") or None,
            policy_cache_seconds=policy_cache_seconds
        )


# ============================================================================
# PRICING SOURCES
# ============================================================================

class PricingConfigSource(ABC):
    """Supplies one immutable pricing snapshot per billing operation"""

    @abstractmethod
    def current_policy(self) -> PricingPolicy:
        pass


class StaticPricingSource(PricingConfigSource):
    """Always returns the same policy"""

    def __init__(self, policy: Optional[PricingPolicy] = None):
        self.policy = policy or default_pricing_policy()

    def current_policy(self) -> PricingPolicy:
        return self.policy


def load_pricing_policy(path: Union[str, Path]) -> PricingPolicy:
    """
    Read a policy from a YAML file

    The mapping may sit at the top level or under a 'pricing' key. Quote the
    rates ("8.50") so they stay decimal text; bare numbers are accepted and
    rounded to the centavo.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise InvalidPricingPolicy("pricing_file", f"cannot read {path}: {e.strerror}") from e
    except yaml.YAMLError as e:
        raise InvalidPricingPolicy("pricing_file", f"invalid YAML in {path}: {e}") from e

    if isinstance(data, dict) and isinstance(data.get("pricing"), dict):
        data = data["pricing"]
    if not isinstance(data, dict):
        raise InvalidPricingPolicy("pricing_file", f"{path} does not contain a pricing mapping")

    return PricingPolicy.from_dict(data)


class YamlPricingSource(PricingConfigSource):
    """Re-reads the YAML file for every snapshot, so edits apply to the next operation"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def current_policy(self) -> PricingPolicy:
        return load_pricing_policy(self.path)


class SQLAlchemyPricingSource(PricingConfigSource):
    """Latest active row of the pricing_configs table"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    def current_policy(self) -> PricingPolicy:
        with SQLAlchemyUnitOfWork(self.session_factory) as uow:
            model = uow.session.scalars(
                select(PricingConfigModel)
                .where(PricingConfigModel.is_active.is_(True))
                .order_by(PricingConfigModel.created_at.desc(), PricingConfigModel.id.desc())
            ).first()
            if model is None:
                raise InvalidPricingPolicy("pricing_configs", "no active pricing configuration")
            data = {
                "currency": model.currency,
                "minimum_hours": model.minimum_hours,
                "minimum_rate": model.minimum_rate,
                "increment_minutes": model.increment_minutes,
                "increment_rates": list(model.increment_rates or []),
                "daily_special_hours": model.daily_special_hours,
                "daily_special_rate": model.daily_special_rate,
                "monthly_rate": model.monthly_rate,
                "lost_ticket_fee": model.lost_ticket_fee
            }
        return PricingPolicy.from_dict(data)

    def publish(self, policy: PricingPolicy) -> None:
        """Store a new active configuration; older rows are deactivated"""
        data = policy.to_dict()
        with SQLAlchemyUnitOfWork(self.session_factory) as uow:
            uow.session.execute(
                update(PricingConfigModel)
                .where(PricingConfigModel.is_active.is_(True))
                .values(is_active=False)
            )
            uow.session.add(PricingConfigModel(
                is_active=True,
                created_at=datetime.now(timezone.utc),
                **data
            ))
        self._logger.info(f"Published pricing configuration ({policy.currency})")


class RedisCachedPricingSource(PricingConfigSource):
    """
    Caches the policy of another source in Redis as a JSON snapshot

    Redis being unavailable degrades to reading the underlying source.
    """

    def __init__(
        self,
        source: PricingConfigSource,
        cache_client: Any,
        ttl_seconds: int = 300,
        key: str = "parking_billing:pricing_policy"
    ):
        self.source = source
        self.cache = cache_client
        self.ttl_seconds = ttl_seconds
        self.key = key
        self._logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_url(cls, source: PricingConfigSource, redis_url: str, ttl_seconds: int = 300):
        return cls(source, redis.Redis.from_url(redis_url), ttl_seconds)

    def current_policy(self) -> PricingPolicy:
        try:
            cached = self.cache.get(self.key)
        except redis.RedisError as e:
            self._logger.warning(f"Pricing cache unavailable, reading source: {e}")
            return self.source.current_policy()

        if cached:
            self._logger.debug("Cache hit for pricing policy")
            if isinstance(cached, bytes):
                cached = cached.decode('utf-8')
            return PricingPolicy.from_dict(json.loads(cached))

        policy = self.source.current_policy()
        try:
            self.cache.set(self.key, json.dumps(policy.to_dict()), ex=self.ttl_seconds)
            self._logger.debug("Cached pricing policy")
        except redis.RedisError as e:
            self._logger.warning(f"Could not cache pricing policy: {e}")
        return policy

    def invalidate(self) -> None:
        self.cache.delete(self.key)
