# File: parking_billing/application/billing_service.py
"""
Parking Billing Application Service

This module implements the application service layer of the billing engine.
It orchestrates the domain services against the injected collaborators and
handles the use cases of the system.

Responsibilities:
1. Load one pricing snapshot per operation and pass it down explicitly
2. Read tickets from the store, run the domain operation, write them back
   with compare-and-set
3. Hand transactions to the sink only after the ticket write succeeded
4. Log outcomes: business-rule rejections at WARNING, integrity faults at ERROR

Key Principles:
- Dependency Injection for every collaborator (store, pricing, sink, clock)
- No hidden time: every operation asks the clock once
- A failing operation leaves the stored ticket unchanged
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional, Union
import logging

from pydantic import ValidationError as RequestValidationError

from ..domain.errors import (
    BarcodeNotFound, BillingError, BusinessRuleViolation, IntegrityFault,
    PensionCustomerNotFound, TicketNotFound, TransactionSinkError, ValidationError
)
from ..domain.lifecycle import TicketLifecycle
from ..domain.models import (
    BarcodeMatch, LicensePlate, PensionCustomer, Ticket, Transaction
)
from ..domain.money import Money
from ..domain.payments import PaymentProcessor, PaymentResult, PensionPaymentResult
from ..domain.pension import PensionValidation, PensionValidator
from ..domain.strategies import FeeCalculation, FeeCalculator
from ..infrastructure.clock import Clock, SystemClock
from ..infrastructure.config import PricingConfigSource
from ..infrastructure.messaging import FailureReporter, LoggingFailureReporter, TransactionSink
from ..infrastructure.repositories import TicketStore
from .dtos import (
    BarcodeRequestDTO, CancelRequestDTO, DTOFactory, EntryRequestDTO,
    ErrorResponseDTO, ExitRequestDTO, LostTicketRequestDTO,
    PaymentRequestDTO, PensionPaymentRequestDTO, PensionRequestDTO,
    RefundRequestDTO, TicketRequestDTO
)


Tendered = Union[Money, str]


def tendered(amount: Tendered, currency: str) -> Money:
    """Cash received; text is parsed in the currency of the operation's snapshot"""
    if isinstance(amount, Money):
        return amount
    return Money.parse(amount, currency)


class BillingService:
    """
    Main application service for parking billing

    Use cases:
    1. Vehicle entry and exit
    2. Fee quotes
    3. Cash payment, lost ticket, refund and cancellation
    4. Pension (subscription) payment and validation
    5. Barcode lookup
    """

    def __init__(
        self,
        store: TicketStore,
        pricing: PricingConfigSource,
        sink: TransactionSink,
        clock: Optional[Clock] = None,
        failure_reporter: Optional[FailureReporter] = None,
        processor: Optional[PaymentProcessor] = None,
        pension_validator: Optional[PensionValidator] = None
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.store = store
        self.pricing = pricing
        self.sink = sink
        self.clock = clock or SystemClock()
        self.failure_reporter = failure_reporter or LoggingFailureReporter()
        self.processor = processor or PaymentProcessor()
        self.lifecycle: TicketLifecycle = self.processor.lifecycle
        self.calculator: FeeCalculator = self.processor.calculator
        self.pension_validator = pension_validator or PensionValidator()

    @contextmanager
    def _operation(self, name: str, **context):
        """Log a failed use case at the level its error family calls for"""
        try:
            yield
        except BusinessRuleViolation as e:
            self.logger.warning(f"{name} rejected {context}: {e}")
            raise
        except ValidationError as e:
            self.logger.info(f"{name} invalid input {context}: {e}")
            raise
        except IntegrityFault as e:
            self.logger.error(f"{name} aborted {context}: {e}", exc_info=True)
            raise

    # ------------------------------------------------------------------
    # Entry / quote / exit
    # ------------------------------------------------------------------

    def enter_vehicle(
        self,
        plate: Union[str, LicensePlate],
        operator_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Ticket:
        """
        Use Case: Vehicle Entry
        Issues a new ACTIVE ticket unless the plate already has one
        """
        with self._operation("enter_vehicle", plate=str(plate)):
            license_plate = LicensePlate.of(plate)
            self.lifecycle.ensure_can_enter(license_plate, self.store.find_active_by_plate(license_plate))

            ticket = self.store.create(
                Ticket.issue(license_plate, self.clock.now(), operator_id, notes)
            )

        self.logger.info(f"Vehicle {license_plate} entered with ticket {ticket.id}")
        return ticket

    def quote_fee(self, ticket_id: str) -> FeeCalculation:
        """Use Case: amount owed right now for an ACTIVE ticket"""
        with self._operation("quote_fee", ticket_id=ticket_id):
            ticket = self._require_ticket(ticket_id)
            self.lifecycle.ensure_quotable(ticket)
            return self.calculator.calculate(
                ticket.entry_time, self.clock.now(), self.pricing.current_policy()
            )

    def authorize_exit(
        self,
        ticket_id: str,
        barcode: Optional[str] = None,
        operator_id: Optional[str] = None
    ) -> Ticket:
        """
        Use Case: Vehicle Exit
        PAID -> COMPLETED; an unpaid ticket is refused with PaymentRequired
        """
        with self._operation("authorize_exit", ticket_id=ticket_id):
            ticket = self._require_ticket(ticket_id)
            self.lifecycle.complete(ticket, self.clock.now(), operator_id, barcode)
            self.store.save(ticket)

        self.logger.info(f"Ticket {ticket.id} completed, vehicle {ticket.plate} left")
        return ticket

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def process_payment(
        self,
        ticket_id: str,
        amount_tendered: Tendered,
        operator_id: Optional[str] = None
    ) -> PaymentResult:
        """Use Case: cash payment, fee re-derived at the moment of payment"""
        with self._operation("process_payment", ticket_id=ticket_id):
            policy = self.pricing.current_policy()
            ticket = self._require_ticket(ticket_id)
            result = self.processor.process_payment(
                ticket, tendered(amount_tendered, policy.currency), policy,
                self.clock.now(), operator_id
            )
            self.store.save(ticket)

        self._record(result.transaction, "process_payment")
        return result

    def process_lost_ticket(
        self,
        plate: Union[str, LicensePlate],
        amount_tendered: Tendered,
        operator_id: Optional[str] = None
    ) -> PaymentResult:
        """
        Use Case: lost ticket
        Settles the plate's ACTIVE ticket, or fabricates a LOST record when
        the plate has none
        """
        with self._operation("process_lost_ticket", plate=str(plate)):
            license_plate = LicensePlate.of(plate)
            policy = self.pricing.current_policy()
            now = self.clock.now()
            amount_tendered = tendered(amount_tendered, policy.currency)

            # Reject short payment before any record is created
            self.processor.check_lost_ticket_tender(amount_tendered, policy)

            ticket = self.store.find_active_by_plate(license_plate)
            if ticket is None:
                # Settled before it is stored: a single insert, already LOST
                ticket = self.store.assign_identity(
                    Ticket.issue(license_plate, now, operator_id, notes="Lost ticket without entry record")
                )
                result = self.processor.process_lost_ticket(
                    ticket, amount_tendered, policy, now, operator_id, fabricated=True
                )
                self.store.create(ticket)
            else:
                result = self.processor.process_lost_ticket(ticket, amount_tendered, policy, now, operator_id)
                self.store.save(ticket)

        self._record(result.transaction, "process_lost_ticket")
        return result

    def refund_ticket(
        self,
        ticket_id: str,
        operator_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Transaction:
        """Use Case: administrative refund of a PAID ticket"""
        with self._operation("refund_ticket", ticket_id=ticket_id):
            ticket = self._require_ticket(ticket_id)
            transaction = self.processor.refund(ticket, self.clock.now(), operator_id, reason)
            self.store.save(ticket)

        self._record(transaction, "refund_ticket")
        return transaction

    def cancel_ticket(
        self,
        ticket_id: str,
        reason: str,
        operator_id: Optional[str] = None
    ) -> Ticket:
        """Use Case: administrative cancellation, reason kept in the history"""
        with self._operation("cancel_ticket", ticket_id=ticket_id):
            ticket = self._require_ticket(ticket_id)
            self.lifecycle.cancel(ticket, self.clock.now(), operator_id, reason)
            self.store.save(ticket)

        self.logger.info(f"Ticket {ticket.id} cancelled by {operator_id}: {reason}")
        return ticket

    # ------------------------------------------------------------------
    # Pension
    # ------------------------------------------------------------------

    def process_pension_payment(
        self,
        customer_id: str,
        amount_tendered: Tendered,
        operator_id: Optional[str] = None,
        months: int = 1
    ) -> PensionPaymentResult:
        """Use Case: subscription payment for one or more months"""
        with self._operation("process_pension_payment", customer_id=customer_id):
            customer = self._require_customer(customer_id)
            result = self.processor.process_pension_payment(
                customer, tendered(amount_tendered, customer.monthly_rate.currency),
                self.clock.now(), operator_id, months
            )

        self._record(result.transaction, "process_pension_payment")
        return result

    def validate_pension(self, customer_id: str) -> PensionValidation:
        with self._operation("validate_pension", customer_id=customer_id):
            customer = self._require_customer(customer_id)
            return self.pension_validator.validate(customer, self.clock.now())

    def lookup_barcode(self, barcode: str) -> BarcodeMatch:
        """Resolve a scanned barcode to a ticket or a pension customer"""
        with self._operation("lookup_barcode", barcode=barcode):
            match = self.store.find_by_barcode(barcode)
            if match is None:
                raise BarcodeNotFound(barcode)
            return match

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.store.get(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def _require_customer(self, customer_id: str) -> PensionCustomer:
        customer = self.store.get_pension_customer(customer_id)
        if customer is None:
            raise PensionCustomerNotFound(customer_id)
        return customer

    def _record(self, transaction: Transaction, operation: str) -> None:
        """Deliver a transaction; a sink failure is reported, never rolled back"""
        try:
            self.sink.record(transaction)
        except TransactionSinkError as e:
            self.failure_reporter.report(e, {"operation": operation, "transaction": transaction.to_dict()})


# ============================================================================
# COMMAND HANDLER
# ============================================================================

class BillingCommandHandler:
    """
    Handler for billing commands

    Implements command pattern for billing operations: a dict with a 'type'
    and a 'data' payload in, a JSON-compatible dict out.
    """

    def __init__(self, service: BillingService):
        self.service = service
        self.logger = logging.getLogger(self.__class__.__name__)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "enter_vehicle": self._enter_vehicle,
            "quote_fee": self._quote_fee,
            "process_payment": self._process_payment,
            "process_lost_ticket": self._process_lost_ticket,
            "authorize_exit": self._authorize_exit,
            "cancel_ticket": self._cancel_ticket,
            "refund_ticket": self._refund_ticket,
            "process_pension_payment": self._process_pension_payment,
            "validate_pension": self._validate_pension,
            "lookup_barcode": self._lookup_barcode,
        }

    def handle(self, command: Dict[str, Any]) -> Dict[str, Any]:
        """Handle a billing command"""
        command_type = command.get("type")
        handler = self._handlers.get(command_type)
        if handler is None:
            return ErrorResponseDTO(
                error=f"Unknown command type: {command_type}",
                error_code="UNKNOWN_COMMAND"
            ).to_dict()

        data = command.get("data") or {}
        if not isinstance(data, dict):
            return ErrorResponseDTO(
                error="Malformed request",
                error_code="INVALID_REQUEST",
                details={"errors": [{"loc": ["data"], "msg": "data must be an object",
                                     "type": type(data).__name__}]}
            ).to_dict()

        try:
            return {"success": True, "data": handler(data)}
        except BillingError as e:
            return ErrorResponseDTO.from_error(e).to_dict()
        except RequestValidationError as e:
            self.logger.info(f"Malformed {command_type} request: {e}")
            return ErrorResponseDTO(
                error="Malformed request",
                error_code="INVALID_REQUEST",
                details={"errors": e.errors(include_url=False, include_context=False)}
            ).to_dict()

    def _enter_vehicle(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = EntryRequestDTO(**data)
        ticket = self.service.enter_vehicle(request.plate, request.operator_id, request.notes)
        return DTOFactory.ticket(ticket).to_dict()

    def _quote_fee(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = TicketRequestDTO(**data)
        return DTOFactory.fee_quote(self.service.quote_fee(request.ticket_id), request.ticket_id).to_dict()

    def _process_payment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = PaymentRequestDTO(**data)
        result = self.service.process_payment(
            request.ticket_id, request.amount_tendered, request.operator_id
        )
        return DTOFactory.payment_result(result).to_dict()

    def _process_lost_ticket(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = LostTicketRequestDTO(**data)
        result = self.service.process_lost_ticket(
            request.plate, request.amount_tendered, request.operator_id
        )
        return DTOFactory.payment_result(result).to_dict()

    def _authorize_exit(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = ExitRequestDTO(**data)
        ticket = self.service.authorize_exit(request.ticket_id, request.barcode, request.operator_id)
        return DTOFactory.ticket(ticket).to_dict()

    def _cancel_ticket(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = CancelRequestDTO(**data)
        ticket = self.service.cancel_ticket(request.ticket_id, request.reason, request.operator_id)
        return DTOFactory.ticket(ticket).to_dict()

    def _refund_ticket(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = RefundRequestDTO(**data)
        transaction = self.service.refund_ticket(request.ticket_id, request.operator_id, request.reason)
        return DTOFactory.transaction(transaction).to_dict()

    def _process_pension_payment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = PensionPaymentRequestDTO(**data)
        result = self.service.process_pension_payment(
            request.customer_id, request.amount_tendered,
            request.operator_id, request.months
        )
        return DTOFactory.pension_payment(result).to_dict()

    def _validate_pension(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = PensionRequestDTO(**data)
        validation = self.service.validate_pension(request.customer_id)
        return DTOFactory.pension_validation(request.customer_id, validation).to_dict()

    def _lookup_barcode(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = BarcodeRequestDTO(**data)
        return DTOFactory.barcode_lookup(self.service.lookup_barcode(request.barcode)).to_dict()
