# File: parking_billing/infrastructure/messaging.py
"""
Messaging Infrastructure for the Parking Billing Engine

Transactions leave the engine through a TransactionSink once the ticket
change that produced them has been stored. Sinks:

1. InMemoryTransactionSink - tests and embedding
2. RabbitMQTransactionSink - persistent JSON messages on a durable topic exchange
3. MongoTransactionSink - append-only ledger collection
4. CompositeTransactionSink - fan-out to several sinks

A sink that cannot record a transaction raises TransactionSinkError. The
billing service hands that error to a FailureReporter; the payment is not
rolled back and delivery is not retried synchronously.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4
import json
import logging
import threading

import pika
import pika.exceptions
import pymongo
import pymongo.errors

from ..domain.errors import BillingError, TransactionSinkError
from ..domain.models import Transaction


# ============================================================================
# MESSAGE ENVELOPE
# ============================================================================

@dataclass
class TransactionMessage:
    """Envelope published for every recorded transaction"""
    transaction: Transaction
    message_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "parking_billing"

    @property
    def routing_key(self) -> str:
        return f"transaction.{self.transaction.type.value.lower()}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "transaction": self.transaction.to_dict()
        }

    def to_json(self) -> str:
        """Convert message to JSON string"""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> 'TransactionMessage':
        data = json.loads(json_str)
        return cls(
            transaction=Transaction.from_dict(data["transaction"]),
            message_id=data["message_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            source=data.get("source", "parking_billing")
        )


# ============================================================================
# SINK AND REPORTER INTERFACES
# ============================================================================

class TransactionSink(ABC):
    """Destination for financial transactions"""

    @abstractmethod
    def record(self, transaction: Transaction) -> None:
        """Record one transaction; raise TransactionSinkError on failure"""
        pass


class FailureReporter(ABC):
    """Receives failures that must not abort an already completed operation"""

    @abstractmethod
    def report(self, error: BillingError, context: Optional[Dict[str, Any]] = None) -> None:
        pass


class LoggingFailureReporter(FailureReporter):
    """Default reporter: log at ERROR with the structured error payload"""

    def __init__(self):
        self._logger = logging.getLogger(self.__class__.__name__)

    def report(self, error: BillingError, context: Optional[Dict[str, Any]] = None) -> None:
        payload = error.to_dict()
        if context:
            payload["operation"] = context
        self._logger.error(f"{error} {json.dumps(payload, default=str)}", exc_info=error)


# ============================================================================
# IN-MEMORY SINK
# ============================================================================

class InMemoryTransactionSink(TransactionSink):
    """Keeps recorded transactions in a list"""

    def __init__(self):
        self._transactions: List[Transaction] = []
        self._lock = threading.Lock()

    def record(self, transaction: Transaction) -> None:
        with self._lock:
            self._transactions.append(transaction)

    @property
    def transactions(self) -> List[Transaction]:
        with self._lock:
            return list(self._transactions)

    def for_ticket(self, ticket_id: str) -> List[Transaction]:
        return [t for t in self.transactions if t.ticket_id == ticket_id]


# ============================================================================
# RABBITMQ SINK
# ============================================================================

class RabbitMQTransactionSink(TransactionSink):
    """Publishes each transaction to a durable topic exchange"""

    def __init__(self, amqp_url: str = "amqp://localhost:5672", exchange: str = "parking.transactions"):
        self.amqp_url = amqp_url
        self.exchange = exchange
        self._logger = logging.getLogger(self.__class__.__name__)

        # Connection parameters
        self.connection_params = pika.URLParameters(amqp_url)

        # Connection and channel (lazy initialization)
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel = None

    def _ensure_connection(self) -> None:
        """Ensure RabbitMQ connection is established"""
        if not self._connection or self._connection.is_closed:
            self._connection = pika.BlockingConnection(self.connection_params)
            self._channel = self._connection.channel()
            self._channel.exchange_declare(
                exchange=self.exchange,
                exchange_type='topic',
                durable=True
            )
            self._logger.debug("RabbitMQ connection established")

    def record(self, transaction: Transaction) -> None:
        message = TransactionMessage(transaction)
        try:
            self._ensure_connection()
            self._channel.basic_publish(
                exchange=self.exchange,
                routing_key=message.routing_key,
                body=message.to_json().encode('utf-8'),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Persistent
                    content_type='application/json',
                    message_id=message.message_id,
                    timestamp=int(message.timestamp.timestamp())
                )
            )
        except pika.exceptions.AMQPError as e:
            self._logger.error(f"Error publishing transaction {transaction.id} to RabbitMQ: {e!r}")
            self._connection = None
            raise TransactionSinkError(transaction.id, f"RabbitMQ publish failed: {e!r}") from e

        self._logger.debug(f"Published transaction {transaction.id} to {self.exchange}")

    def close(self):
        """Close RabbitMQ connection"""
        if self._connection and self._connection.is_open:
            self._connection.close()
            self._logger.info("RabbitMQ connection closed")


# ============================================================================
# MONGODB LEDGER SINK
# ============================================================================

class MongoTransactionSink(TransactionSink):
    """
    Append-only transaction ledger in MongoDB

    The transaction id is the document _id, so re-recording a transaction
    that already reached the ledger is a no-op.
    """

    def __init__(
        self,
        mongo_url: str = "mongodb://localhost:27017",
        database: str = "parking_billing",
        collection: str = "transactions",
        **kwargs
    ):
        self.mongo_url = mongo_url
        self._logger = logging.getLogger(self.__class__.__name__)

        # MongoDB client
        self.client = pymongo.MongoClient(mongo_url, **kwargs)
        self.collection = self.client[database][collection]

        # Create indexes
        self.collection.create_index([('ticket_id', 1)])
        self.collection.create_index([('pension_customer_id', 1)])
        self.collection.create_index([('timestamp', 1)])

    def record(self, transaction: Transaction) -> None:
        document = transaction.to_dict()
        document['_id'] = transaction.id
        document['recorded_at'] = datetime.now(timezone.utc)

        try:
            self.collection.insert_one(document)
        except pymongo.errors.DuplicateKeyError:
            self._logger.debug(f"Transaction {transaction.id} already in ledger")
            return
        except pymongo.errors.PyMongoError as e:
            self._logger.error(f"Error writing transaction {transaction.id} to ledger: {e}")
            raise TransactionSinkError(transaction.id, f"MongoDB insert failed: {e}") from e

        self._logger.debug(f"Saved transaction {transaction.id} to ledger")

    def find_for_ticket(self, ticket_id: str) -> List[Transaction]:
        cursor = self.collection.find({'ticket_id': ticket_id}).sort('timestamp', 1)
        return [Transaction.from_dict(doc) for doc in cursor]

    def close(self):
        self.client.close()


# ============================================================================
# FAN-OUT
# ============================================================================

class CompositeTransactionSink(TransactionSink):
    """Records to every sink; failures are collected and raised together"""

    def __init__(self, sinks: Sequence[TransactionSink]):
        self.sinks = list(sinks)

    def record(self, transaction: Transaction) -> None:
        failures = []
        for sink in self.sinks:
            try:
                sink.record(transaction)
            except TransactionSinkError as e:
                failures.append(f"{sink.__class__.__name__}: {e.context.get('reason')}")

        if failures:
            raise TransactionSinkError(transaction.id, "; ".join(failures))
