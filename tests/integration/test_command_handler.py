#!/usr/bin/env python3
"""
Integration Tests for the Command Handler and CLI

Commands go in as dicts and come back as JSON-compatible dicts:
1. Success payloads carry exact amounts as text and minor units
2. Business errors map to their error codes
3. Malformed and unknown commands are refused without raising
4. The CLI prints quotes and the effective policy as JSON
"""

import io
import json
import os
import unittest
from unittest.mock import Mock, patch
from datetime import datetime, timedelta, timezone
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from parking_billing.application.billing_service import BillingCommandHandler, BillingService
from parking_billing.domain.models import PensionCustomer
from parking_billing.domain.money import Money
from parking_billing.infrastructure.clock import FixedClock
from parking_billing.infrastructure.config import StaticPricingSource
from parking_billing.infrastructure.factories import BillingServiceFactory
from parking_billing.infrastructure.identifiers import IdGenerator
from parking_billing.infrastructure.messaging import InMemoryTransactionSink
from parking_billing.infrastructure.repositories import InMemoryTicketStore
from parking_billing.main import main


START = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


class CommandHandlerTestBase(unittest.TestCase):

    def setUp(self):
        self.clock = FixedClock(START)
        self.service = BillingServiceFactory.create_in_memory_service(clock=self.clock)
        self.handler = BillingCommandHandler(self.service)

    def enter(self, plate="ABC-123"):
        response = self.handler.handle({"type": "enter_vehicle", "data": {"plate": plate}})
        self.assertTrue(response["success"])
        return response["data"]


class TestTicketCommands(CommandHandlerTestBase):

    def test_enter_vehicle(self):
        ticket = self.enter("abc-123")
        self.assertEqual(ticket["plate"], "ABC-123")
        self.assertEqual(ticket["status"], "ACTIVE")
        self.assertEqual(ticket["entry_time"], "2024-03-15T09:00:00+00:00")

    def test_quote_and_payment(self):
        ticket = self.enter()
        self.clock.advance(hours=1, minutes=30)

        quote = self.handler.handle({"type": "quote_fee", "data": {"ticket_id": ticket["id"]}})
        self.assertEqual(quote["data"]["total_amount"]["amount"], "42.00")
        self.assertEqual(quote["data"]["duration_minutes"], 90)

        response = self.handler.handle({
            "type": "process_payment",
            "data": {"ticket_id": ticket["id"], "amount_tendered": 50, "operator_id": "cashier-1"}
        })
        data = response["data"]
        self.assertTrue(response["success"])
        self.assertEqual(data["change"], {"amount": "8.00", "minor_units": 800, "currency": "MXN"})
        self.assertEqual(data["ticket"]["status"], "PAID")
        self.assertEqual(data["transaction"]["type"], "PARKING")
        self.assertEqual(data["receipt"]["transaction_id"], data["transaction"]["id"])

    def test_exit_after_payment(self):
        ticket = self.enter()
        self.handler.handle({
            "type": "process_payment",
            "data": {"ticket_id": ticket["id"], "amount_tendered": "25.00"}
        })
        response = self.handler.handle({
            "type": "authorize_exit",
            "data": {"ticket_id": ticket["id"], "barcode": ticket["barcode"]}
        })
        self.assertEqual(response["data"]["status"], "COMPLETED")

    def test_lost_ticket(self):
        response = self.handler.handle({
            "type": "process_lost_ticket",
            "data": {"plate": "NEW-001", "amount_tendered": "$200"}
        })
        self.assertEqual(response["data"]["total_amount"]["amount"], "150.00")
        self.assertFalse(response["data"]["receipt"]["duration_known"])


class TestErrorResponses(CommandHandlerTestBase):

    def test_duplicate_entry(self):
        self.enter()
        response = self.handler.handle({"type": "enter_vehicle", "data": {"plate": "ABC-123"}})
        self.assertFalse(response["success"])
        self.assertEqual(response["error_code"], "VEHICLE_ALREADY_INSIDE")

    def test_insufficient_payment(self):
        ticket = self.enter()
        self.clock.advance(hours=2)
        response = self.handler.handle({
            "type": "process_payment",
            "data": {"ticket_id": ticket["id"], "amount_tendered": "10"}
        })
        self.assertEqual(response["error_code"], "INSUFFICIENT_PAYMENT")
        self.assertEqual(response["details"]["required"]["amount"], "67.50")

    def test_unknown_ticket(self):
        response = self.handler.handle({"type": "quote_fee", "data": {"ticket_id": "T-404"}})
        self.assertEqual(response["error_code"], "TICKET_NOT_FOUND")

    def test_unknown_command(self):
        response = self.handler.handle({"type": "open_gate"})
        self.assertFalse(response["success"])
        self.assertEqual(response["error_code"], "UNKNOWN_COMMAND")

    def test_malformed_request(self):
        response = self.handler.handle({"type": "process_payment", "data": {"ticket_id": "T-1"}})
        self.assertEqual(response["error_code"], "INVALID_REQUEST")
        self.assertEqual(response["details"]["errors"][0]["loc"], ["amount_tendered"])

    def test_payload_must_be_an_object(self):
        for data in (["T-1", "50"], "T-1", 42):
            response = self.handler.handle({"type": "process_payment", "data": data})
            self.assertFalse(response["success"])
            self.assertEqual(response["error_code"], "INVALID_REQUEST")

    def test_unparseable_amount(self):
        ticket = self.enter()
        response = self.handler.handle({
            "type": "process_payment",
            "data": {"ticket_id": ticket["id"], "amount_tendered": "fifty"}
        })
        self.assertFalse(response["success"])
        self.assertEqual(self.service.store.get(ticket["id"]).status.value, "ACTIVE")


class TestPricingSnapshot(unittest.TestCase):
    """One pricing read per command, shared by parsing and billing"""

    def test_payment_reads_policy_once(self):
        clock = FixedClock(START)
        pricing = Mock(wraps=StaticPricingSource())
        service = BillingService(
            store=InMemoryTicketStore(IdGenerator(clock)), pricing=pricing,
            sink=InMemoryTransactionSink(), clock=clock
        )
        handler = BillingCommandHandler(service)
        ticket = service.enter_vehicle("ABC-123")
        pricing.current_policy.reset_mock()

        response = handler.handle({
            "type": "process_payment",
            "data": {"ticket_id": ticket.id, "amount_tendered": "$25.00"}
        })

        self.assertTrue(response["success"])
        self.assertEqual(pricing.current_policy.call_count, 1)

    def test_service_accepts_tendered_text(self):
        clock = FixedClock(START)
        service = BillingServiceFactory.create_in_memory_service(clock=clock)
        ticket = service.enter_vehicle("ABC-123")
        result = service.process_payment(ticket.id, "30")
        self.assertEqual(result.change, Money.parse("5.00"))


class TestPensionCommands(CommandHandlerTestBase):

    def setUp(self):
        super().setUp()
        self.service.store.add_pension_customer(PensionCustomer(
            id="P-1", name="Ana Lopez", plate="PEN-001", monthly_rate=Money.parse("800"),
            start_date=START - timedelta(days=10), end_date=START + timedelta(days=20)
        ))

    def test_validate(self):
        response = self.handler.handle({"type": "validate_pension", "data": {"customer_id": "P-1"}})
        self.assertTrue(response["data"]["is_valid"])
        self.assertEqual(response["data"]["days_remaining"], 20)

    def test_payment(self):
        response = self.handler.handle({
            "type": "process_pension_payment",
            "data": {"customer_id": "P-1", "amount_tendered": "1600", "months": 2}
        })
        self.assertEqual(response["data"]["total_amount"]["amount"], "1600.00")
        self.assertEqual(response["data"]["change"]["minor_units"], 0)

    def test_barcode_lookup(self):
        response = self.handler.handle({"type": "lookup_barcode", "data": {"barcode": "PENSION-PEN-001"}})
        self.assertEqual(response["data"]["kind"], "PENSION")
        self.assertEqual(response["data"]["customer"]["id"], "P-1")


# ============================================================================
# COMMAND LINE
# ============================================================================

@patch.dict(os.environ, {}, clear=True)
class TestMain(unittest.TestCase):
    """parking-billing CLI"""

    def run_main(self, argv):
        with patch('sys.stdout', new_callable=io.StringIO) as stdout:
            code = main(argv)
        return code, json.loads(stdout.getvalue())

    def test_quote(self):
        code, output = self.run_main(
            ["quote", "--entry", "2024-03-15T09:00:00", "--exit", "2024-03-15T11:00:00+00:00"]
        )
        self.assertEqual(code, 0)
        self.assertEqual(output["total_amount"]["amount"], "67.50")
        self.assertEqual(output["duration_minutes"], 120)
        self.assertFalse(output["cap_applied"])

    def test_quote_exit_before_entry(self):
        code, output = self.run_main(
            ["quote", "--entry", "2024-03-15T11:00:00", "--exit", "2024-03-15T09:00:00"]
        )
        self.assertEqual(code, 1)
        self.assertEqual(output["code"], "INVALID_DURATION")

    def test_policy(self):
        code, output = self.run_main(["policy"])
        self.assertEqual(code, 0)
        self.assertEqual(output["currency"], "MXN")
        self.assertEqual(output["minimum_hours"], 1)

    def test_bad_timestamp(self):
        with patch('sys.stderr', new_callable=io.StringIO):
            with self.assertRaises(SystemExit) as ctx:
                main(["quote", "--entry", "yesterday", "--exit", "2024-03-15T09:00:00"])
        self.assertEqual(ctx.exception.code, 2)


if __name__ == '__main__':
    unittest.main()
