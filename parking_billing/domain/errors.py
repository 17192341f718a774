# File: parking_billing/domain/errors.py
"""
Error Taxonomy for the Parking Billing Engine

Three families of failures, each distinguishable by type:

1. ValidationError - malformed input (plate, durations, policy, amounts).
   Never retried, surfaced to the caller immediately.
2. BusinessRuleViolation - expected, user-facing rejections (vehicle already
   inside, insufficient payment, ...). Not logged as system errors. Each
   carries structured context so the caller can render a precise message.
3. IntegrityFault - data corruption detected upstream (unknown ticket status,
   empty rate schedule, ...). Fatal to the single operation.

Every error exposes a stable ``code`` (ErrorCode) and a ``context`` dict.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable error codes exposed to callers"""
    # Validation
    INVALID_LICENSE_PLATE = "INVALID_LICENSE_PLATE"
    INVALID_DURATION = "INVALID_DURATION"
    INVALID_PRICING_POLICY = "INVALID_PRICING_POLICY"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"

    # Business rules
    VEHICLE_ALREADY_INSIDE = "VEHICLE_ALREADY_INSIDE"
    TICKET_NOT_ACTIVE = "TICKET_NOT_ACTIVE"
    PAYMENT_NOT_ALLOWED = "PAYMENT_NOT_ALLOWED"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    INSUFFICIENT_PAYMENT = "INSUFFICIENT_PAYMENT"
    PENSION_EXPIRED = "PENSION_EXPIRED"
    PENSION_INACTIVE = "PENSION_INACTIVE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    BARCODE_MISMATCH = "BARCODE_MISMATCH"
    BARCODE_NOT_FOUND = "BARCODE_NOT_FOUND"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    PENSION_CUSTOMER_NOT_FOUND = "PENSION_CUSTOMER_NOT_FOUND"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    # Integrity
    UNKNOWN_TICKET_STATUS = "UNKNOWN_TICKET_STATUS"
    EMPTY_RATE_SCHEDULE = "EMPTY_RATE_SCHEDULE"
    CORRUPT_RECORD = "CORRUPT_RECORD"

    # Collaborators
    TRANSACTION_SINK_FAILURE = "TRANSACTION_SINK_FAILURE"


# ============================================================================
# BASE CLASSES
# ============================================================================

class BillingError(Exception):
    """Base exception for every error raised by the billing engine"""

    code: ErrorCode = ErrorCode.CORRUPT_RECORD

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for the calling layer"""
        return {
            "code": self.code.value,
            "message": self.message,
            "context": {key: _plain(value) for key, value in self.context.items()}
        }

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(BillingError):
    """Malformed input; never retried"""
    code = ErrorCode.INVALID_AMOUNT


class BusinessRuleViolation(BillingError):
    """Expected, user-facing rejection of an operation"""
    code = ErrorCode.INVALID_TRANSITION


class IntegrityFault(BillingError):
    """Upstream data corruption; the operation must abort rather than guess"""
    code = ErrorCode.CORRUPT_RECORD


def _plain(value: Any) -> Any:
    """Render context values (Money, enums) as JSON-friendly primitives"""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    return value


# ============================================================================
# VALIDATION ERRORS
# ============================================================================

class InvalidLicensePlate(ValidationError):
    """Plate is empty, too long, or contains characters outside the charset"""

    def __init__(self, plate: str, reason: str):
        super().__init__(
            f"Invalid license plate {plate!r}: {reason}",
            ErrorCode.INVALID_LICENSE_PLATE,
            {"plate": plate, "reason": reason}
        )
        self.plate = plate


class InvalidDuration(ValidationError):
    """Exit time precedes entry time (or the two are not comparable)"""

    def __init__(self, entry_time: Any, exit_time: Any, reason: str = "exit time is before entry time"):
        super().__init__(
            f"Invalid parking duration: {reason}",
            ErrorCode.INVALID_DURATION,
            {"entry_time": str(entry_time), "exit_time": str(exit_time)}
        )
        self.entry_time = entry_time
        self.exit_time = exit_time


class InvalidPricingPolicy(ValidationError):
    """Pricing configuration violates its own constraints"""

    def __init__(self, field_name: str, reason: str):
        super().__init__(
            f"Invalid pricing policy field '{field_name}': {reason}",
            ErrorCode.INVALID_PRICING_POLICY,
            {"field": field_name, "reason": reason}
        )
        self.field_name = field_name


class InvalidAmount(ValidationError):
    """Monetary input that cannot be represented exactly or is out of range"""

    def __init__(self, value: Any, reason: str):
        super().__init__(
            f"Invalid monetary amount {value!r}: {reason}",
            ErrorCode.INVALID_AMOUNT,
            {"value": str(value), "reason": reason}
        )


class CurrencyMismatch(ValidationError):
    """Arithmetic or comparison across different currencies"""

    def __init__(self, left: str, right: str):
        super().__init__(
            f"Cannot combine {left} with {right}",
            ErrorCode.CURRENCY_MISMATCH,
            {"left": left, "right": right}
        )


# ============================================================================
# BUSINESS RULE VIOLATIONS
# ============================================================================

class VehicleAlreadyInside(BusinessRuleViolation):
    """Another ACTIVE ticket exists for the same plate"""

    def __init__(self, plate: str, existing_ticket_id: Optional[str]):
        super().__init__(
            f"Vehicle {plate} already has an active ticket",
            ErrorCode.VEHICLE_ALREADY_INSIDE,
            {"plate": plate, "existing_ticket_id": existing_ticket_id}
        )
        self.plate = plate
        self.existing_ticket_id = existing_ticket_id


class TicketNotActive(BusinessRuleViolation):
    """Fee quote requested on a ticket that is no longer ACTIVE"""

    def __init__(self, ticket_id: Optional[str], status: Any):
        super().__init__(
            f"Ticket {ticket_id} is not active",
            ErrorCode.TICKET_NOT_ACTIVE,
            {"ticket_id": ticket_id, "status": status}
        )
        self.ticket_id = ticket_id
        self.status = status


class PaymentNotAllowed(BusinessRuleViolation):
    """Payment attempted from any state other than ACTIVE"""

    def __init__(self, ticket_id: Optional[str], status: Any):
        super().__init__(
            f"Ticket {ticket_id} cannot accept payment",
            ErrorCode.PAYMENT_NOT_ALLOWED,
            {"ticket_id": ticket_id, "status": status}
        )
        self.ticket_id = ticket_id
        self.status = status


class PaymentRequired(BusinessRuleViolation):
    """Exit requested for a ticket that has not been paid"""

    def __init__(self, ticket_id: Optional[str], status: Any):
        super().__init__(
            f"Ticket {ticket_id} must be paid before exit",
            ErrorCode.PAYMENT_REQUIRED,
            {"ticket_id": ticket_id, "status": status}
        )
        self.ticket_id = ticket_id
        self.status = status


class InsufficientPayment(BusinessRuleViolation):
    """Tendered amount is below the amount owed"""

    def __init__(self, required: Any, provided: Any):
        shortfall = required.subtract(provided)
        super().__init__(
            "Tendered amount does not cover the total",
            ErrorCode.INSUFFICIENT_PAYMENT,
            {"required": required, "provided": provided, "shortfall": shortfall}
        )
        self.required = required
        self.provided = provided
        self.shortfall = shortfall


class PensionExpired(BusinessRuleViolation):
    """Subscription window has ended (or has not started yet)"""

    def __init__(self, customer_id: str, days_expired: Optional[int], reason: str = "EXPIRED"):
        super().__init__(
            f"Pension for customer {customer_id} is not within its validity window",
            ErrorCode.PENSION_EXPIRED,
            {"customer_id": customer_id, "days_expired": days_expired, "reason": reason}
        )
        self.customer_id = customer_id
        self.days_expired = days_expired


class PensionInactive(BusinessRuleViolation):
    """Subscription customer is flagged inactive"""

    def __init__(self, customer_id: str):
        super().__init__(
            f"Pension customer {customer_id} is inactive",
            ErrorCode.PENSION_INACTIVE,
            {"customer_id": customer_id}
        )
        self.customer_id = customer_id


class InvalidTransition(BusinessRuleViolation):
    """Requested status change is not permitted by the ticket state machine"""

    def __init__(self, ticket_id: Optional[str], current: Any, target: Any):
        super().__init__(
            f"Ticket {ticket_id} cannot move from {_plain(current)} to {_plain(target)}",
            ErrorCode.INVALID_TRANSITION,
            {"ticket_id": ticket_id, "status": current, "target": target}
        )
        self.ticket_id = ticket_id
        self.current = current
        self.target = target


class BarcodeMismatch(BusinessRuleViolation):
    """Barcode presented at exit does not belong to the ticket"""

    def __init__(self, ticket_id: Optional[str], barcode: str):
        super().__init__(
            f"Barcode does not match ticket {ticket_id}",
            ErrorCode.BARCODE_MISMATCH,
            {"ticket_id": ticket_id, "barcode": barcode}
        )


class BarcodeNotFound(BusinessRuleViolation):
    """Barcode resolves to neither a ticket nor a pension customer"""

    def __init__(self, barcode: str):
        super().__init__(
            f"No ticket or pension customer for barcode {barcode}",
            ErrorCode.BARCODE_NOT_FOUND,
            {"barcode": barcode}
        )
        self.barcode = barcode


class TicketNotFound(BusinessRuleViolation):
    """No ticket with the given id"""

    def __init__(self, ticket_id: str):
        super().__init__(
            f"Ticket {ticket_id} not found",
            ErrorCode.TICKET_NOT_FOUND,
            {"ticket_id": ticket_id}
        )
        self.ticket_id = ticket_id


class PensionCustomerNotFound(BusinessRuleViolation):
    """No pension customer with the given id"""

    def __init__(self, customer_id: str):
        super().__init__(
            f"Pension customer {customer_id} not found",
            ErrorCode.PENSION_CUSTOMER_NOT_FOUND,
            {"customer_id": customer_id}
        )
        self.customer_id = customer_id


class ConcurrentModification(BusinessRuleViolation):
    """Ticket was changed by another operation since it was read"""

    def __init__(self, ticket_id: Optional[str], expected_version: int):
        super().__init__(
            f"Ticket {ticket_id} was modified concurrently",
            ErrorCode.CONCURRENT_MODIFICATION,
            {"ticket_id": ticket_id, "expected_version": expected_version}
        )
        self.ticket_id = ticket_id
        self.expected_version = expected_version


# ============================================================================
# INTEGRITY FAULTS
# ============================================================================

class UnknownTicketStatus(IntegrityFault):
    """Stored status is not part of the ticket state machine"""

    def __init__(self, ticket_id: Optional[str], status: Any):
        super().__init__(
            f"Ticket {ticket_id} has unrecognised status {status!r}",
            ErrorCode.UNKNOWN_TICKET_STATUS,
            {"ticket_id": ticket_id, "status": str(status)}
        )
        self.ticket_id = ticket_id
        self.status = status


class EmptyRateSchedule(IntegrityFault):
    """Pricing policy arrived without any increment rates"""

    def __init__(self):
        super().__init__(
            "Pricing policy has an empty increment rate list",
            ErrorCode.EMPTY_RATE_SCHEDULE
        )


class CorruptRecord(IntegrityFault):
    """Record violates a structural invariant (write-once field, references)"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.CORRUPT_RECORD, context)


# ============================================================================
# COLLABORATOR FAILURES
# ============================================================================

class TransactionSinkError(BillingError):
    """Transaction sink could not record a transaction"""

    def __init__(self, transaction_id: str, reason: str):
        super().__init__(
            f"Transaction {transaction_id} could not be recorded: {reason}",
            ErrorCode.TRANSACTION_SINK_FAILURE,
            {"transaction_id": transaction_id, "reason": reason}
        )
        self.transaction_id = transaction_id
