# File: parking_billing/domain/lifecycle.py
"""
Ticket Lifecycle State Machine

    ACTIVE --pay--> PAID --exit--> COMPLETED
    ACTIVE --lost--> LOST
    PAID --refund--> REFUNDED
    ACTIVE | PAID | LOST --cancel--> CANCELLED

COMPLETED, CANCELLED and REFUNDED are terminal. Every guard raises the most
specific business-rule error for the attempted operation, and no guard
mutates the ticket. Mutation happens only in transition(), after the guard
for that operation has passed.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional
import logging

from .errors import (
    BarcodeMismatch, InvalidTransition, PaymentNotAllowed, PaymentRequired,
    TicketNotActive, UnknownTicketStatus, VehicleAlreadyInside
)
from .models import LicensePlate, StatusChange, Ticket, TicketStatus


ALLOWED_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.ACTIVE: frozenset({TicketStatus.PAID, TicketStatus.LOST, TicketStatus.CANCELLED}),
    TicketStatus.PAID: frozenset({TicketStatus.COMPLETED, TicketStatus.REFUNDED, TicketStatus.CANCELLED}),
    TicketStatus.LOST: frozenset({TicketStatus.CANCELLED}),
    TicketStatus.COMPLETED: frozenset(),
    TicketStatus.CANCELLED: frozenset(),
    TicketStatus.REFUNDED: frozenset(),
}


class TicketLifecycle:
    """Guards and applies ticket status transitions"""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def ensure_known_status(ticket: Ticket) -> TicketStatus:
        status = ticket.status
        if not isinstance(status, TicketStatus) or status not in ALLOWED_TRANSITIONS:
            raise UnknownTicketStatus(ticket.id, status)
        return status

    @staticmethod
    def ensure_can_enter(plate: LicensePlate, active_ticket: Optional[Ticket]) -> None:
        if active_ticket is not None:
            raise VehicleAlreadyInside(plate.value, active_ticket.id)

    def ensure_quotable(self, ticket: Ticket) -> None:
        if self.ensure_known_status(ticket) != TicketStatus.ACTIVE:
            raise TicketNotActive(ticket.id, ticket.status)

    def ensure_payable(self, ticket: Ticket) -> None:
        if self.ensure_known_status(ticket) != TicketStatus.ACTIVE:
            raise PaymentNotAllowed(ticket.id, ticket.status)

    def ensure_can_exit(self, ticket: Ticket, barcode: Optional[str] = None) -> None:
        status = self.ensure_known_status(ticket)
        if status == TicketStatus.ACTIVE:
            raise PaymentRequired(ticket.id, status)
        if status != TicketStatus.PAID:
            raise InvalidTransition(ticket.id, status, TicketStatus.COMPLETED)
        if barcode is not None and barcode.strip().upper() != (ticket.barcode or "").upper():
            raise BarcodeMismatch(ticket.id, barcode)

    def ensure_can_mark_lost(self, ticket: Ticket) -> None:
        self._ensure_allowed(ticket, TicketStatus.LOST)

    def ensure_refundable(self, ticket: Ticket) -> None:
        self._ensure_allowed(ticket, TicketStatus.REFUNDED)

    def ensure_cancellable(self, ticket: Ticket) -> None:
        self._ensure_allowed(ticket, TicketStatus.CANCELLED)

    def can_transition(self, ticket: Ticket, target: TicketStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.ensure_known_status(ticket)]

    def _ensure_allowed(self, ticket: Ticket, target: TicketStatus) -> None:
        if not self.can_transition(ticket, target):
            raise InvalidTransition(ticket.id, ticket.status, target)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        ticket: Ticket,
        target: TicketStatus,
        at: datetime,
        operator_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> StatusChange:
        """Move the ticket to target and append the change to its history"""
        current = self.ensure_known_status(ticket)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(ticket.id, current, target)

        change = StatusChange(current, target, at, operator_id, reason)
        ticket.record_status_change(change)
        self.logger.debug(f"Ticket {ticket.id}: {current.value} -> {target.value}")
        return change

    def complete(
        self,
        ticket: Ticket,
        at: datetime,
        operator_id: Optional[str] = None,
        barcode: Optional[str] = None
    ) -> StatusChange:
        """Authorise exit for a paid ticket"""
        self.ensure_can_exit(ticket, barcode)
        return self.transition(ticket, TicketStatus.COMPLETED, at, operator_id)

    def cancel(
        self,
        ticket: Ticket,
        at: datetime,
        operator_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> StatusChange:
        """Administrative override; the reason is kept in the status history"""
        self.ensure_cancellable(ticket)
        return self.transition(ticket, TicketStatus.CANCELLED, at, operator_id, reason)
