# File: parking_billing/domain/payments.py
"""
Payment Processor

Settles tickets and subscriptions in cash with exact change. Every operation
follows the same order:

1. Re-derive the amount owed from the policy snapshot (a cached quote is
   never trusted)
2. Validate state and tendered amount
3. Mutate the ticket and build exactly one Transaction

Any error in steps 1-2 leaves the ticket untouched. Persisting the ticket
and recording the transaction are the caller's job (see
application.billing_service).
"""

from calendar import monthrange
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
import logging
import uuid

from .errors import CorruptRecord, InsufficientPayment, InvalidAmount, PensionInactive
from .lifecycle import TicketLifecycle
from .models import (
    PaymentMethod, PensionCustomer, Receipt, Ticket,
    TicketStatus, Transaction, TransactionType
)
from .money import Money
from .pricing import PricingPolicy
from .strategies import FeeCalculation, FeeCalculator, billable_minutes


MIN_PENSION_MONTHS = 1
MAX_PENSION_MONTHS = 12


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a ticket payment (parking, lost ticket or refund)"""
    ticket: Ticket
    transaction: Transaction
    fee: FeeCalculation
    amount_tendered: Money
    change: Money
    receipt: Optional[Receipt] = None


@dataclass(frozen=True)
class PensionPaymentResult:
    """
    Outcome of a subscription payment

    covered_from/covered_until is the validity window the payment buys; the
    registration collaborator owns the customer record and applies it.
    """
    customer: PensionCustomer
    transaction: Transaction
    months: int
    total_amount: Money
    amount_tendered: Money
    change: Money
    covered_from: datetime
    covered_until: datetime


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length"""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _default_transaction_id() -> str:
    return f"TXN-{uuid.uuid4().hex[:12].upper()}"


class PaymentProcessor:
    """
    Domain service for cash settlement
    """

    def __init__(
        self,
        calculator: Optional[FeeCalculator] = None,
        lifecycle: Optional[TicketLifecycle] = None,
        transaction_ids: Optional[Callable[[], str]] = None
    ):
        self.calculator = calculator or FeeCalculator()
        self.lifecycle = lifecycle or TicketLifecycle()
        self._next_transaction_id = transaction_ids or _default_transaction_id
        self.logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Parking payment
    # ------------------------------------------------------------------

    def process_payment(
        self,
        ticket: Ticket,
        amount_tendered: Money,
        policy: PricingPolicy,
        now: datetime,
        operator_id: Optional[str] = None,
        method: PaymentMethod = PaymentMethod.CASH
    ) -> PaymentResult:
        """Charge an ACTIVE ticket for its stay up to now"""
        self.lifecycle.ensure_payable(ticket)
        _require_tendered(amount_tendered)

        fee = self.calculator.calculate(ticket.entry_time, now, policy)
        change = _change_for(fee.total_amount, amount_tendered)

        ticket.stamp_settlement(now, now, fee.total_amount, method, operator_id)
        self.lifecycle.transition(ticket, TicketStatus.PAID, now, operator_id)

        transaction = Transaction(
            id=self._next_transaction_id(),
            type=TransactionType.PARKING,
            amount=fee.total_amount,
            payment_method=method,
            timestamp=now,
            description=f"Parking payment for ticket {ticket.id} ({ticket.plate})",
            operator_id=operator_id,
            ticket_id=ticket.id
        )

        self.logger.info(
            f"Ticket {ticket.id} paid: total {fee.total_amount}, "
            f"tendered {amount_tendered}, change {change}"
        )
        return PaymentResult(
            ticket, transaction, fee, amount_tendered, change,
            _receipt(ticket, fee.duration_minutes, amount_tendered, change, transaction)
        )

    # ------------------------------------------------------------------
    # Lost ticket
    # ------------------------------------------------------------------

    def check_lost_ticket_tender(self, amount_tendered: Money, policy: PricingPolicy) -> FeeCalculation:
        """Validate the tendered amount against the lost-ticket fee without touching any ticket"""
        _require_tendered(amount_tendered)
        fee = self.calculator.calculate_lost_ticket(policy)
        _change_for(fee.total_amount, amount_tendered)
        return fee

    def process_lost_ticket(
        self,
        ticket: Ticket,
        amount_tendered: Money,
        policy: PricingPolicy,
        now: datetime,
        operator_id: Optional[str] = None,
        fabricated: bool = False
    ) -> PaymentResult:
        """
        Charge the fixed lost-ticket fee and move the ACTIVE ticket to LOST

        A fabricated ticket (no entry record existed for the plate) was issued
        at now, so entry = exit = now; its receipt reports a duration of 0
        marked as unknown.
        """
        self.lifecycle.ensure_can_mark_lost(ticket)
        fee = self.check_lost_ticket_tender(amount_tendered, policy)
        change = amount_tendered.subtract(fee.total_amount)
        duration_minutes = 0 if fabricated else billable_minutes(ticket.entry_time, now)

        ticket.stamp_settlement(now, now, fee.total_amount, PaymentMethod.CASH, operator_id)
        self.lifecycle.transition(ticket, TicketStatus.LOST, now, operator_id, "Lost ticket")

        transaction = Transaction(
            id=self._next_transaction_id(),
            type=TransactionType.LOST_TICKET,
            amount=fee.total_amount,
            payment_method=PaymentMethod.CASH,
            timestamp=now,
            description=f"Lost ticket fee for {ticket.plate}",
            operator_id=operator_id,
            ticket_id=ticket.id
        )

        self.logger.info(f"Lost ticket fee {fee.total_amount} charged for {ticket.plate}")
        return PaymentResult(
            ticket, transaction, fee, amount_tendered, change,
            _receipt(ticket, duration_minutes, amount_tendered, change, transaction,
                     duration_known=not fabricated)
        )

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    def refund(
        self,
        ticket: Ticket,
        now: datetime,
        operator_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Transaction:
        """PAID -> REFUNDED with a REFUND transaction for the recorded total"""
        self.lifecycle.ensure_refundable(ticket)
        amount = ticket.total_amount
        if amount is None:
            raise CorruptRecord(f"Paid ticket {ticket.id} has no recorded total", {"ticket_id": ticket.id})

        self.lifecycle.transition(ticket, TicketStatus.REFUNDED, now, operator_id, reason)

        self.logger.info(f"Ticket {ticket.id} refunded {amount}")
        return Transaction(
            id=self._next_transaction_id(),
            type=TransactionType.REFUND,
            amount=amount,
            payment_method=ticket.payment_method or PaymentMethod.CASH,
            timestamp=now,
            description=f"Refund for ticket {ticket.id}" + (f": {reason}" if reason else ""),
            operator_id=operator_id,
            ticket_id=ticket.id
        )

    # ------------------------------------------------------------------
    # Pension (monthly subscription)
    # ------------------------------------------------------------------

    def process_pension_payment(
        self,
        customer: PensionCustomer,
        amount_tendered: Money,
        now: datetime,
        operator_id: Optional[str] = None,
        months: int = 1
    ) -> PensionPaymentResult:
        """
        Charge monthly_rate x months. The customer record is not modified.

        A customer still inside the window is extended from end_date; an
        expired one starts a fresh window at now.
        """
        if not customer.is_active:
            raise PensionInactive(customer.id)

        if isinstance(months, bool) or not isinstance(months, int) \
                or not MIN_PENSION_MONTHS <= months <= MAX_PENSION_MONTHS:
            raise InvalidAmount(
                months, f"months must be between {MIN_PENSION_MONTHS} and {MAX_PENSION_MONTHS}"
            )
        _require_tendered(amount_tendered)

        total = customer.monthly_rate.multiply(months)
        change = _change_for(total, amount_tendered)

        covered_from = customer.end_date if now < customer.end_date else now
        covered_until = add_months(covered_from, months)

        transaction = Transaction(
            id=self._next_transaction_id(),
            type=TransactionType.PENSION,
            amount=total,
            payment_method=PaymentMethod.CASH,
            timestamp=now,
            description=f"Pension payment for {customer.name} ({months} month(s))",
            operator_id=operator_id,
            pension_customer_id=customer.id
        )

        self.logger.info(f"Pension customer {customer.id} paid {total} for {months} month(s)")
        return PensionPaymentResult(
            customer, transaction, months, total, amount_tendered, change,
            covered_from, covered_until
        )


def _require_tendered(amount_tendered: Money) -> None:
    if not isinstance(amount_tendered, Money):
        raise InvalidAmount(amount_tendered, "tendered amount must be Money")
    if amount_tendered.is_negative():
        raise InvalidAmount(str(amount_tendered), "tendered amount cannot be negative")


def _change_for(total: Money, amount_tendered: Money) -> Money:
    if amount_tendered.less_than(total):
        raise InsufficientPayment(total, amount_tendered)
    return amount_tendered.subtract(total)


def _receipt(
    ticket: Ticket,
    duration_minutes: int,
    amount_tendered: Money,
    change: Money,
    transaction: Transaction,
    duration_known: bool = True
) -> Receipt:
    return Receipt(
        ticket_number=ticket.id or "",
        plate=ticket.plate.value,
        entry_time=ticket.entry_time,
        exit_time=ticket.exit_time,
        duration_minutes=duration_minutes,
        total_amount=ticket.total_amount,
        amount_tendered=amount_tendered,
        change=change,
        payment_method=ticket.payment_method,
        transaction_id=transaction.id,
        duration_known=duration_known
    )
