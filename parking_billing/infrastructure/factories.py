# File: parking_billing/infrastructure/factories.py
"""
Factories that wire a BillingService from its collaborators

1. In-memory wiring - tests, demos and embedding
2. Settings wiring - SQL store and ledger, pricing from YAML or SQL,
   optional Redis cache, optional RabbitMQ and MongoDB sinks
"""

from typing import List, Optional
import logging

from ..application.billing_service import BillingService
from ..domain.errors import InvalidPricingPolicy
from ..domain.pricing import PricingPolicy
from .clock import Clock, FixedClock
from .config import (
    BillingSettings, PricingConfigSource, RedisCachedPricingSource,
    SQLAlchemyPricingSource, StaticPricingSource, YamlPricingSource,
    default_pricing_policy
)
from .identifiers import IdGenerator
from .messaging import (
    CompositeTransactionSink, InMemoryTransactionSink, MongoTransactionSink,
    RabbitMQTransactionSink, TransactionSink
)
from .repositories import RepositoryFactory, SQLAlchemyTransactionSink


class BillingServiceFactory:
    """Factory for creating fully wired billing services"""

    _logger = logging.getLogger("BillingServiceFactory")

    @staticmethod
    def create_in_memory_service(
        clock: Optional[Clock] = None,
        policy: Optional[PricingPolicy] = None
    ) -> BillingService:
        clock = clock or FixedClock()
        return BillingService(
            store=RepositoryFactory.create_in_memory_store(IdGenerator(clock)),
            pricing=StaticPricingSource(policy),
            sink=InMemoryTransactionSink(),
            clock=clock
        )

    @classmethod
    def create_from_settings(
        cls,
        settings: BillingSettings,
        clock: Optional[Clock] = None
    ) -> BillingService:
        session_factory = RepositoryFactory.create_session_factory(settings.database_url)
        id_generator = IdGenerator(clock)
        cls._logger.info(f"Database configured: {settings.database_url}")

        return BillingService(
            store=RepositoryFactory.create_sqlalchemy_store(session_factory, id_generator),
            pricing=cls.create_pricing_source(settings, session_factory),
            sink=cls.create_sink(settings, session_factory),
            clock=clock
        )

    @classmethod
    def create_pricing_source(cls, settings: BillingSettings, session_factory) -> PricingConfigSource:
        if settings.pricing_file:
            source: PricingConfigSource = YamlPricingSource(settings.pricing_file)
            cls._logger.info(f"Pricing read from {settings.pricing_file}")
        else:
            source = SQLAlchemyPricingSource(session_factory)
            try:
                source.current_policy()
            except InvalidPricingPolicy:
                # Empty pricing_configs table: seed the default tariff
                source.publish(default_pricing_policy(settings.currency))

        if settings.redis_url and settings.policy_cache_seconds > 0:
            cls._logger.info(f"Pricing cached in Redis for {settings.policy_cache_seconds}s")
            return RedisCachedPricingSource.from_url(
                source, settings.redis_url, settings.policy_cache_seconds
            )
        return source

    @classmethod
    def create_sink(cls, settings: BillingSettings, session_factory) -> TransactionSink:
        sinks: List[TransactionSink] = [SQLAlchemyTransactionSink(session_factory)]
        if settings.amqp_url:
            sinks.append(RabbitMQTransactionSink(settings.amqp_url))
            cls._logger.info("Transactions published to RabbitMQ")
        if settings.mongo_url:
            sinks.append(MongoTransactionSink(settings.mongo_url))
            cls._logger.info("Transactions written to the MongoDB ledger")

        if len(sinks) == 1:
            return sinks[0]
        return CompositeTransactionSink(sinks)
