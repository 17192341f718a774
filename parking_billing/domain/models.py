# File: parking_billing/domain/models.py
"""
Domain Models for the Parking Billing Engine
Following Domain-Driven Design (DDD) principles with rich domain models

This module contains:
1. Value Objects: LicensePlate, StatusChange, Transaction, Receipt
2. Entities: Ticket (identity + lifecycle), PensionCustomer (read-only here)
3. Enums: ticket status, payment method, transaction type
4. Barcode resolution: TicketMatch | PensionMatch tagged union

Ticket status changes are driven exclusively by domain.lifecycle; the
entity only guards its write-once fields.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union
import re

from .errors import (
    CorruptRecord, InvalidAmount, InvalidDuration, InvalidLicensePlate,
    UnknownTicketStatus
)
from .money import Money


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)  # Value objects are immutable
class LicensePlate:
    """
    Value Object: License plate number with validation
    Normalised to upper case with surrounding whitespace removed
    """
    value: str

    MIN_LENGTH: ClassVar[int] = 2
    MAX_LENGTH: ClassVar[int] = 15

    def __post_init__(self):
        """Validate license plate after initialization"""
        if not isinstance(self.value, str) or not self.value.strip():
            raise InvalidLicensePlate(str(self.value), "cannot be empty")

        # Remove whitespace and convert to uppercase
        normalized = re.sub(r'\s+', ' ', self.value.strip().upper())
        object.__setattr__(self, 'value', normalized)

        if len(normalized) < self.MIN_LENGTH or len(normalized) > self.MAX_LENGTH:
            raise InvalidLicensePlate(
                normalized, f"must be {self.MIN_LENGTH}-{self.MAX_LENGTH} characters"
            )

        # Alphanumeric with possible spaces and hyphens
        if not re.match(r'^[A-Z0-9\s\-]+$', normalized):
            raise InvalidLicensePlate(
                normalized, "only letters, numbers, spaces and hyphens are allowed"
            )

    @classmethod
    def of(cls, plate: Union[str, 'LicensePlate']) -> 'LicensePlate':
        """Accept either raw text or an existing plate"""
        if isinstance(plate, LicensePlate):
            return plate
        return cls(plate)

    def __str__(self) -> str:
        return self.value


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class TicketStatus(str, Enum):
    """
    Enumeration of ticket statuses
    """
    ACTIVE = "ACTIVE"          # Vehicle inside, fee accruing
    PAID = "PAID"              # Paid, waiting to leave
    COMPLETED = "COMPLETED"    # Left through the exit
    LOST = "LOST"              # Settled through the lost-ticket fee
    CANCELLED = "CANCELLED"    # Administrative override
    REFUNDED = "REFUNDED"      # Administrative reversal of a payment

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.COMPLETED, TicketStatus.CANCELLED, TicketStatus.REFUNDED)

    @classmethod
    def parse(cls, value: Any, ticket_id: Optional[str] = None) -> 'TicketStatus':
        """Coerce a stored value; anything unrecognised is an integrity fault"""
        if isinstance(value, TicketStatus):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise UnknownTicketStatus(ticket_id, value)


class PaymentMethod(str, Enum):
    """How a transaction was settled"""
    CASH = "CASH"
    PENSION = "PENSION"


class TransactionType(str, Enum):
    """Kinds of financial transaction the engine emits"""
    PARKING = "PARKING"
    PENSION = "PENSION"
    LOST_TICKET = "LOST_TICKET"
    REFUND = "REFUND"


class BarcodeKind(str, Enum):
    """What a scanned barcode resolved to"""
    TICKET = "TICKET"
    PENSION = "PENSION"


@dataclass(frozen=True)
class StatusChange:
    """Value Object: one recorded ticket status transition"""
    from_status: TicketStatus
    to_status: TicketStatus
    at: datetime
    operator_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "at": self.at.isoformat(),
            "operator_id": self.operator_id,
            "reason": self.reason
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StatusChange':
        return cls(
            from_status=TicketStatus.parse(data["from_status"]),
            to_status=TicketStatus.parse(data["to_status"]),
            at=datetime.fromisoformat(data["at"]),
            operator_id=data.get("operator_id"),
            reason=data.get("reason")
        )


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Identity is assigned by the store collaborator, not generated here
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id

    @property
    def id(self) -> Optional[str]:
        """Get entity ID"""
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        if self.id is None or other.id is None:
            return self is other
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        """Hash based on ID and type"""
        if self.id is None:
            return id(self)
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"


class Ticket(Entity):
    """
    Entity: one parking session from entry to terminal state

    entry_time is immutable; exit_time, total_amount and paid_at may be set
    exactly once. Status is changed only through domain.lifecycle.
    """

    def __init__(
        self,
        plate: Union[str, LicensePlate],
        entry_time: datetime,
        status: Union[str, TicketStatus] = TicketStatus.ACTIVE,
        id: Optional[str] = None,
        barcode: Optional[str] = None,
        exit_time: Optional[datetime] = None,
        total_amount: Optional[Money] = None,
        payment_method: Optional[PaymentMethod] = None,
        operator_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        version: int = 0,
        status_history: Optional[List[StatusChange]] = None,
        notes: Optional[str] = None
    ):
        super().__init__(id)
        if not isinstance(entry_time, datetime):
            raise InvalidDuration(entry_time, exit_time, "entry time must be a datetime")

        self.plate = LicensePlate.of(plate)
        self._entry_time = entry_time
        self._status = TicketStatus.parse(status, id)
        self.barcode = barcode
        self._exit_time = exit_time
        self._total_amount = total_amount
        self.payment_method = PaymentMethod(payment_method) if payment_method else None
        self.operator_id = operator_id
        self._paid_at = paid_at
        self.version = version
        self._status_history: List[StatusChange] = list(status_history or [])
        self.notes = notes

    @classmethod
    def issue(
        cls,
        plate: Union[str, LicensePlate],
        entry_time: datetime,
        operator_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> 'Ticket':
        """Create a new ACTIVE ticket for a vehicle entering now"""
        return cls(plate=plate, entry_time=entry_time, operator_id=operator_id, notes=notes)

    # ------------------------------------------------------------------
    # Identity (assigned once by the store)
    # ------------------------------------------------------------------

    def assign_identity(self, ticket_id: str, barcode: str) -> None:
        if self._id is not None or self.barcode is not None:
            raise CorruptRecord(
                "Ticket identity can only be assigned once",
                {"ticket_id": self._id, "barcode": self.barcode}
            )
        self._id = ticket_id
        self.barcode = barcode

    # ------------------------------------------------------------------
    # Read-only / write-once attributes
    # ------------------------------------------------------------------

    @property
    def entry_time(self) -> datetime:
        return self._entry_time

    @property
    def status(self) -> TicketStatus:
        return self._status

    @property
    def exit_time(self) -> Optional[datetime]:
        return self._exit_time

    @property
    def total_amount(self) -> Optional[Money]:
        return self._total_amount

    @property
    def paid_at(self) -> Optional[datetime]:
        return self._paid_at

    @property
    def status_history(self) -> List[StatusChange]:
        return list(self._status_history)

    @property
    def plate_number(self) -> str:
        return self.plate.value

    def stamp_settlement(
        self,
        exit_time: datetime,
        paid_at: datetime,
        total_amount: Money,
        payment_method: PaymentMethod,
        operator_id: Optional[str]
    ) -> None:
        """Write the settlement fields; each of them can be written only once"""
        for name in ("_exit_time", "_paid_at", "_total_amount"):
            if getattr(self, name) is not None:
                raise CorruptRecord(
                    f"Ticket {self.id} already has {name.lstrip('_')} set",
                    {"ticket_id": self.id, "field": name.lstrip('_')}
                )
        self._exit_time = exit_time
        self._paid_at = paid_at
        self._total_amount = total_amount
        self.payment_method = payment_method
        if operator_id is not None:
            self.operator_id = operator_id

    def record_status_change(self, change: StatusChange) -> None:
        """Apply a transition already approved by the lifecycle"""
        if change.from_status != self._status:
            raise CorruptRecord(
                f"Transition for ticket {self.id} starts from {change.from_status.value} "
                f"but ticket is {self._status.value}",
                {"ticket_id": self.id}
            )
        self._status = change.to_status
        self._status_history.append(change)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "barcode": self.barcode,
            "plate": self.plate.value,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "status": self.status.value,
            "total_amount": self.total_amount.to_dict() if self.total_amount else None,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "operator_id": self.operator_id,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "version": self.version,
            "status_history": [change.to_dict() for change in self._status_history],
            "notes": self.notes
        }

    def __str__(self) -> str:
        return f"Ticket {self.id} [{self.plate}] {self.status.value}"


@dataclass(frozen=True)
class PensionCustomer:
    """
    Entity: monthly subscription customer

    Created by an external registration flow and never mutated by the engine.
    The validity window is half-open: [start_date, end_date).
    """
    id: str
    name: str
    plate: LicensePlate
    monthly_rate: Money
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    barcode: Optional[str] = None
    phone: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'plate', LicensePlate.of(self.plate))

        try:
            inverted = self.end_date <= self.start_date
        except TypeError as e:
            # naive and timezone-aware datetimes cannot be compared
            raise InvalidDuration(self.start_date, self.end_date, str(e)) from e
        if inverted:
            raise InvalidDuration(self.start_date, self.end_date, "pension window must end after it starts")

        if self.monthly_rate.is_negative():
            raise InvalidAmount(str(self.monthly_rate), "monthly rate cannot be negative")

        barcode = self.barcode or f"PENSION-{self.plate.value}"
        object.__setattr__(self, 'barcode', barcode.strip().upper())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "plate": self.plate.value,
            "monthly_rate": self.monthly_rate.to_dict(),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "is_active": self.is_active,
            "barcode": self.barcode,
            "phone": self.phone
        }


@dataclass(frozen=True)
class Transaction:
    """
    Value Object: append-only financial record

    References exactly one of a ticket or a pension customer. Corrections are
    new REFUND transactions, never edits.
    """
    id: str
    type: TransactionType
    amount: Money
    payment_method: PaymentMethod
    timestamp: datetime
    description: str
    operator_id: Optional[str] = None
    ticket_id: Optional[str] = None
    pension_customer_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'type', TransactionType(self.type))
        object.__setattr__(self, 'payment_method', PaymentMethod(self.payment_method))

        if (self.ticket_id is None) == (self.pension_customer_id is None):
            raise CorruptRecord(
                "Transaction must reference exactly one of ticket or pension customer",
                {
                    "transaction_id": self.id,
                    "ticket_id": self.ticket_id,
                    "pension_customer_id": self.pension_customer_id
                }
            )

        if self.amount.is_negative():
            raise CorruptRecord(
                "Transaction amount cannot be negative",
                {"transaction_id": self.id, "amount": str(self.amount)}
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": self.amount.to_dict(),
            "payment_method": self.payment_method.value,
            "timestamp": self.timestamp.isoformat(),
            "description": self.description,
            "operator_id": self.operator_id,
            "ticket_id": self.ticket_id,
            "pension_customer_id": self.pension_customer_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data["id"],
            type=TransactionType(data["type"]),
            amount=Money.from_dict(data["amount"]),
            payment_method=PaymentMethod(data["payment_method"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            description=data["description"],
            operator_id=data.get("operator_id"),
            ticket_id=data.get("ticket_id"),
            pension_customer_id=data.get("pension_customer_id")
        )


@dataclass(frozen=True)
class Receipt:
    """
    Value Object: data handed to the receipt printing collaborator

    Carries raw values only; currency and date formatting belong to the
    consumer.
    """
    ticket_number: str
    plate: str
    entry_time: datetime
    exit_time: datetime
    duration_minutes: int
    total_amount: Money
    amount_tendered: Money
    change: Money
    payment_method: PaymentMethod
    transaction_id: str
    duration_known: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticket_number": self.ticket_number,
            "plate": self.plate,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "duration_minutes": self.duration_minutes,
            "duration_known": self.duration_known,
            "total_amount": self.total_amount.to_dict(),
            "amount_tendered": self.amount_tendered.to_dict(),
            "change": self.change.to_dict(),
            "payment_method": self.payment_method.value,
            "transaction_id": self.transaction_id
        }


# ============================================================================
# BARCODE RESOLUTION (tagged union)
# ============================================================================

@dataclass(frozen=True)
class TicketMatch:
    """Barcode resolved to a parking ticket"""
    ticket: Ticket
    kind: ClassVar[BarcodeKind] = BarcodeKind.TICKET


@dataclass(frozen=True)
class PensionMatch:
    """Barcode resolved to a subscription customer"""
    customer: PensionCustomer
    kind: ClassVar[BarcodeKind] = BarcodeKind.PENSION


BarcodeMatch = Union[TicketMatch, PensionMatch]
