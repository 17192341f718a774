# File: parking_billing/infrastructure/identifiers.py
"""
Identity generation for tickets, barcodes and transactions

Ticket numbers are human readable: T-<last 8 digits of the epoch millis>-<seq>.
The sequence never wraps, so numbers stay unique under a frozen clock.
The barcode printed on the ticket is <ticket number>-<plate>.
"""

from typing import Optional
import threading
import uuid

from .clock import Clock, SystemClock


class IdGenerator:
    """Thread-safe generator of ticket numbers, barcodes and transaction ids"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._sequence = 0
        self._lock = threading.Lock()

    def next_ticket_number(self) -> str:
        with self._lock:
            self._sequence += 1
            sequence = self._sequence
        millis = int(self.clock.now().timestamp() * 1000)
        return f"T-{str(millis)[-8:]}-{sequence:03d}"

    @staticmethod
    def barcode_for(ticket_number: str, plate: str) -> str:
        return f"{ticket_number}-{plate}".replace(" ", "").upper()

    @staticmethod
    def next_transaction_id() -> str:
        return f"TXN-{uuid.uuid4().hex[:12].upper()}"
