# File: parking_billing/application/dtos.py
"""
Data Transfer Objects (DTOs) for the Parking Billing Engine

This module defines DTOs for data transfer between the billing service and
its callers:
1. Input DTOs - requests received from clients (plates, tendered amounts)
2. Output DTOs - results sent back (tickets, quotes, receipts, errors)

DTO Principles:
- Immutable (frozen models)
- Shape validation at creation; business validation stays in the domain
- Money travels as decimal text plus integer minor units, never as float
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
import json

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..domain.errors import BillingError
from ..domain.models import (
    BarcodeMatch, PensionCustomer, PensionMatch, Receipt, Ticket, TicketMatch,
    Transaction
)
from ..domain.money import Money
from ..domain.payments import PaymentResult, PensionPaymentResult
from ..domain.pension import PensionValidation
from ..domain.strategies import FeeCalculation


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        use_enum_values=True
    )

    def to_dict(self, exclude_none: bool = False) -> Dict[str, Any]:
        """Convert DTO to a JSON-compatible dictionary"""
        return self.model_dump(mode="json", exclude_none=exclude_none)

    def to_json(self) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        """Create DTO from JSON string"""
        return cls(**json.loads(json_str))


def _amount_text(value: Any) -> Any:
    """Tendered amounts arrive as text, int or Decimal; floats go through repr"""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    return value


# ============================================================================
# VALUE OBJECT DTOs
# ============================================================================

class MoneyDTO(BaseDTO):
    """Money value object DTO"""
    amount: str = Field(description="Decimal text, two places")
    minor_units: int = Field(description="Integer centavos")
    currency: str = Field(min_length=3, max_length=3, description="Currency code (ISO 4217)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyDTO':
        return cls(amount=str(money), minor_units=money.minor_units, currency=money.currency)

    def to_money(self) -> Money:
        return Money(self.minor_units, self.currency)


class DenominationDTO(BaseDTO):
    """One bill or coin in a change breakdown"""
    denomination: MoneyDTO
    count: int = Field(ge=1)


# ============================================================================
# INPUT DTOs
# ============================================================================

class EntryRequestDTO(BaseDTO):
    """Vehicle entry request"""
    plate: str = Field(min_length=1, max_length=20, description="License plate as typed")
    operator_id: Optional[str] = None
    notes: Optional[str] = None


class TicketRequestDTO(BaseDTO):
    """Any request addressed to one ticket"""
    ticket_id: str = Field(min_length=1)
    operator_id: Optional[str] = None


class PaymentRequestDTO(TicketRequestDTO):
    """Cash payment for a ticket"""
    amount_tendered: str = Field(description="Cash received, e.g. '50' or '$1,250.50'")

    @field_validator('amount_tendered', mode='before')
    @classmethod
    def coerce_amount(cls, v):
        return _amount_text(v)


class ExitRequestDTO(TicketRequestDTO):
    """Exit gate request; barcode is checked when given"""
    barcode: Optional[str] = None


class CancelRequestDTO(TicketRequestDTO):
    reason: str = Field(min_length=1)


class RefundRequestDTO(TicketRequestDTO):
    reason: Optional[str] = None


class LostTicketRequestDTO(BaseDTO):
    """Lost ticket settlement by plate"""
    plate: str = Field(min_length=1, max_length=20)
    amount_tendered: str
    operator_id: Optional[str] = None

    @field_validator('amount_tendered', mode='before')
    @classmethod
    def coerce_amount(cls, v):
        return _amount_text(v)


class PensionPaymentRequestDTO(BaseDTO):
    """Subscription payment"""
    customer_id: str = Field(min_length=1)
    amount_tendered: str
    months: int = Field(default=1, ge=1, le=12)
    operator_id: Optional[str] = None

    @field_validator('amount_tendered', mode='before')
    @classmethod
    def coerce_amount(cls, v):
        return _amount_text(v)


class PensionRequestDTO(BaseDTO):
    customer_id: str = Field(min_length=1)


class BarcodeRequestDTO(BaseDTO):
    barcode: str = Field(min_length=1)


# ============================================================================
# OUTPUT DTOs
# ============================================================================

class TicketDTO(BaseDTO):
    """Ticket as returned to callers"""
    id: str
    barcode: str
    plate: str
    status: str
    entry_time: str
    exit_time: Optional[str] = None
    total_amount: Optional[MoneyDTO] = None
    payment_method: Optional[str] = None
    operator_id: Optional[str] = None
    paid_at: Optional[str] = None
    version: int


class FeeLineDTO(BaseDTO):
    kind: str
    amount: MoneyDTO
    description: str
    index: Optional[int] = None


class FeeQuoteDTO(BaseDTO):
    """Current amount owed with its itemised breakdown"""
    ticket_id: Optional[str] = None
    total_amount: MoneyDTO
    duration_minutes: int
    cap_applied: bool
    breakdown: List[FeeLineDTO]


class ReceiptDTO(BaseDTO):
    """Receipt payload for the printing collaborator"""
    ticket_number: str
    plate: str
    entry_time: str
    exit_time: str
    duration_minutes: int
    duration_known: bool
    total_amount: MoneyDTO
    amount_tendered: MoneyDTO
    change: MoneyDTO
    payment_method: str
    transaction_id: str


class TransactionDTO(BaseDTO):
    id: str
    type: str
    amount: MoneyDTO
    payment_method: str
    timestamp: str
    description: str
    operator_id: Optional[str] = None
    ticket_id: Optional[str] = None
    pension_customer_id: Optional[str] = None


class PaymentResultDTO(BaseDTO):
    """Successful ticket payment"""
    success: bool = True
    ticket: TicketDTO
    transaction: TransactionDTO
    total_amount: MoneyDTO
    amount_tendered: MoneyDTO
    change: MoneyDTO
    change_breakdown: List[DenominationDTO]
    receipt: Optional[ReceiptDTO] = None


class PensionCustomerDTO(BaseDTO):
    id: str
    name: str
    plate: str
    monthly_rate: MoneyDTO
    start_date: str
    end_date: str
    is_active: bool
    barcode: str


class PensionPaymentDTO(BaseDTO):
    success: bool = True
    customer_id: str
    transaction: TransactionDTO
    months: int
    total_amount: MoneyDTO
    amount_tendered: MoneyDTO
    change: MoneyDTO
    covered_from: str
    covered_until: str


class PensionValidationDTO(BaseDTO):
    customer_id: str
    is_valid: bool
    reason: str
    days_remaining: Optional[int] = None
    days_expired: Optional[int] = None


class BarcodeLookupDTO(BaseDTO):
    """Barcode resolved to either a ticket or a pension customer"""
    kind: str
    ticket: Optional[TicketDTO] = None
    customer: Optional[PensionCustomerDTO] = None


class ErrorResponseDTO(BaseDTO):
    """Standard error response DTO"""
    success: bool = False
    error: str
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_error(cls, error: BillingError) -> 'ErrorResponseDTO':
        payload = error.to_dict()
        return cls(error=payload["message"], error_code=payload["code"], details=payload["context"])


# ============================================================================
# DTO FACTORY
# ============================================================================

def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class DTOFactory:
    """Builds output DTOs from domain objects"""

    @staticmethod
    def ticket(ticket: Ticket) -> TicketDTO:
        return TicketDTO(
            id=ticket.id,
            barcode=ticket.barcode,
            plate=ticket.plate.value,
            status=ticket.status.value,
            entry_time=ticket.entry_time.isoformat(),
            exit_time=_iso(ticket.exit_time),
            total_amount=MoneyDTO.from_money(ticket.total_amount) if ticket.total_amount else None,
            payment_method=ticket.payment_method.value if ticket.payment_method else None,
            operator_id=ticket.operator_id,
            paid_at=_iso(ticket.paid_at),
            version=ticket.version
        )

    @staticmethod
    def fee_quote(fee: FeeCalculation, ticket_id: Optional[str] = None) -> FeeQuoteDTO:
        return FeeQuoteDTO(
            ticket_id=ticket_id,
            total_amount=MoneyDTO.from_money(fee.total_amount),
            duration_minutes=fee.duration_minutes,
            cap_applied=fee.cap_applied,
            breakdown=[
                FeeLineDTO(
                    kind=line.kind.value,
                    amount=MoneyDTO.from_money(line.amount),
                    description=line.description,
                    index=line.index
                )
                for line in fee.breakdown
            ]
        )

    @staticmethod
    def transaction(transaction: Transaction) -> TransactionDTO:
        return TransactionDTO(
            id=transaction.id,
            type=transaction.type.value,
            amount=MoneyDTO.from_money(transaction.amount),
            payment_method=transaction.payment_method.value,
            timestamp=transaction.timestamp.isoformat(),
            description=transaction.description,
            operator_id=transaction.operator_id,
            ticket_id=transaction.ticket_id,
            pension_customer_id=transaction.pension_customer_id
        )

    @staticmethod
    def receipt(receipt: Receipt) -> ReceiptDTO:
        return ReceiptDTO(
            ticket_number=receipt.ticket_number,
            plate=receipt.plate,
            entry_time=receipt.entry_time.isoformat(),
            exit_time=receipt.exit_time.isoformat(),
            duration_minutes=receipt.duration_minutes,
            duration_known=receipt.duration_known,
            total_amount=MoneyDTO.from_money(receipt.total_amount),
            amount_tendered=MoneyDTO.from_money(receipt.amount_tendered),
            change=MoneyDTO.from_money(receipt.change),
            payment_method=receipt.payment_method.value,
            transaction_id=receipt.transaction_id
        )

    @staticmethod
    def change_breakdown(change: Money) -> List[DenominationDTO]:
        return [
            DenominationDTO(denomination=MoneyDTO.from_money(denomination), count=count)
            for denomination, count in change.split_into_denominations()
        ]

    @staticmethod
    def payment_result(result: PaymentResult) -> PaymentResultDTO:
        return PaymentResultDTO(
            ticket=DTOFactory.ticket(result.ticket),
            transaction=DTOFactory.transaction(result.transaction),
            total_amount=MoneyDTO.from_money(result.fee.total_amount),
            amount_tendered=MoneyDTO.from_money(result.amount_tendered),
            change=MoneyDTO.from_money(result.change),
            change_breakdown=DTOFactory.change_breakdown(result.change),
            receipt=DTOFactory.receipt(result.receipt) if result.receipt else None
        )

    @staticmethod
    def pension_customer(customer: PensionCustomer) -> PensionCustomerDTO:
        return PensionCustomerDTO(
            id=customer.id,
            name=customer.name,
            plate=customer.plate.value,
            monthly_rate=MoneyDTO.from_money(customer.monthly_rate),
            start_date=customer.start_date.isoformat(),
            end_date=customer.end_date.isoformat(),
            is_active=customer.is_active,
            barcode=customer.barcode
        )

    @staticmethod
    def pension_payment(result: PensionPaymentResult) -> PensionPaymentDTO:
        return PensionPaymentDTO(
            customer_id=result.customer.id,
            transaction=DTOFactory.transaction(result.transaction),
            months=result.months,
            total_amount=MoneyDTO.from_money(result.total_amount),
            amount_tendered=MoneyDTO.from_money(result.amount_tendered),
            change=MoneyDTO.from_money(result.change),
            covered_from=result.covered_from.isoformat(),
            covered_until=result.covered_until.isoformat()
        )

    @staticmethod
    def pension_validation(customer_id: str, validation: PensionValidation) -> PensionValidationDTO:
        return PensionValidationDTO(customer_id=customer_id, **validation.to_dict())

    @staticmethod
    def barcode_lookup(match: BarcodeMatch) -> BarcodeLookupDTO:
        if isinstance(match, TicketMatch):
            return BarcodeLookupDTO(kind=match.kind.value, ticket=DTOFactory.ticket(match.ticket))
        if isinstance(match, PensionMatch):
            return BarcodeLookupDTO(kind=match.kind.value, customer=DTOFactory.pension_customer(match.customer))
        raise TypeError(f"Unsupported barcode match {type(match).__name__}")
