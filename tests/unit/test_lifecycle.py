#!/usr/bin/env python3
"""
Ticket Lifecycle Unit Tests

Tests for the ticket state machine guards and transitions.
"""

import unittest
from datetime import datetime, timedelta, timezone
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from parking_billing.domain.errors import (
    BarcodeMismatch, InvalidTransition, PaymentNotAllowed, PaymentRequired,
    TicketNotActive, VehicleAlreadyInside
)
from parking_billing.domain.lifecycle import ALLOWED_TRANSITIONS, TicketLifecycle
from parking_billing.domain.models import LicensePlate, Ticket, TicketStatus


NOW = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


def ticket_in(status: TicketStatus) -> Ticket:
    return Ticket("ABC-123", NOW, status=status, id="T-1", barcode="T-1-ABC-123")


class TestTicketLifecycle(unittest.TestCase):
    """Unit tests for TicketLifecycle"""

    def setUp(self):
        self.lifecycle = TicketLifecycle()

    def test_terminal_states_have_no_exits(self):
        for status in TicketStatus:
            if status.is_terminal:
                self.assertEqual(ALLOWED_TRANSITIONS[status], frozenset())

    def test_duplicate_entry_guard(self):
        plate = LicensePlate("ABC-123")
        self.lifecycle.ensure_can_enter(plate, None)
        with self.assertRaises(VehicleAlreadyInside) as ctx:
            self.lifecycle.ensure_can_enter(plate, ticket_in(TicketStatus.ACTIVE))
        self.assertEqual(ctx.exception.existing_ticket_id, "T-1")

    def test_quote_only_while_active(self):
        self.lifecycle.ensure_quotable(ticket_in(TicketStatus.ACTIVE))
        for status in TicketStatus:
            if status != TicketStatus.ACTIVE:
                with self.subTest(status=status):
                    with self.assertRaises(TicketNotActive):
                        self.lifecycle.ensure_quotable(ticket_in(status))

    def test_payment_only_while_active(self):
        for status in TicketStatus:
            if status != TicketStatus.ACTIVE:
                with self.subTest(status=status):
                    with self.assertRaises(PaymentNotAllowed):
                        self.lifecycle.ensure_payable(ticket_in(status))

    def test_exit_requires_payment(self):
        ticket = ticket_in(TicketStatus.ACTIVE)
        with self.assertRaises(PaymentRequired):
            self.lifecycle.complete(ticket, NOW)
        self.assertEqual(ticket.status, TicketStatus.ACTIVE)
        self.assertEqual(ticket.status_history, [])

    def test_exit_from_paid(self):
        ticket = ticket_in(TicketStatus.PAID)
        change = self.lifecycle.complete(ticket, NOW + timedelta(minutes=5), "gate-1")
        self.assertEqual(ticket.status, TicketStatus.COMPLETED)
        self.assertEqual(change.from_status, TicketStatus.PAID)
        self.assertEqual(change.operator_id, "gate-1")

    def test_exit_from_other_states(self):
        for status in (TicketStatus.LOST, TicketStatus.COMPLETED, TicketStatus.CANCELLED, TicketStatus.REFUNDED):
            with self.subTest(status=status):
                with self.assertRaises(InvalidTransition):
                    self.lifecycle.complete(ticket_in(status), NOW)

    def test_exit_barcode_check(self):
        ticket = ticket_in(TicketStatus.PAID)
        with self.assertRaises(BarcodeMismatch):
            self.lifecycle.complete(ticket, NOW, barcode="T-2-ABC-123")
        self.assertEqual(ticket.status, TicketStatus.PAID)

        self.lifecycle.complete(ticket, NOW, barcode=" t-1-abc-123 ")
        self.assertEqual(ticket.status, TicketStatus.COMPLETED)

    def test_cancel_records_reason(self):
        ticket = ticket_in(TicketStatus.ACTIVE)
        self.lifecycle.cancel(ticket, NOW, "admin", "Gate malfunction")
        self.assertEqual(ticket.status, TicketStatus.CANCELLED)
        self.assertEqual(ticket.status_history[-1].reason, "Gate malfunction")

    def test_cancel_from_terminal_state(self):
        with self.assertRaises(InvalidTransition):
            self.lifecycle.cancel(ticket_in(TicketStatus.COMPLETED), NOW)

    def test_refund_only_from_paid(self):
        self.lifecycle.ensure_refundable(ticket_in(TicketStatus.PAID))
        with self.assertRaises(InvalidTransition):
            self.lifecycle.ensure_refundable(ticket_in(TicketStatus.ACTIVE))

    def test_lost_only_from_active(self):
        self.lifecycle.ensure_can_mark_lost(ticket_in(TicketStatus.ACTIVE))
        with self.assertRaises(InvalidTransition):
            self.lifecycle.ensure_can_mark_lost(ticket_in(TicketStatus.PAID))

    def test_transition_table(self):
        for current, targets in ALLOWED_TRANSITIONS.items():
            for target in TicketStatus:
                with self.subTest(current=current, target=target):
                    ticket = ticket_in(current)
                    if target in targets:
                        self.lifecycle.transition(ticket, target, NOW)
                        self.assertEqual(ticket.status, target)
                    else:
                        with self.assertRaises(InvalidTransition):
                            self.lifecycle.transition(ticket, target, NOW)
                        self.assertEqual(ticket.status, current)


if __name__ == '__main__':
    unittest.main()
