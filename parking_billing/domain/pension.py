# File: parking_billing/domain/pension.py
"""
Pension (monthly subscription) validation

Fails closed: an inactive customer, a window that has not started, and a
window that has ended are all invalid. The window is half-open, so a
customer whose end_date equals now is already expired.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional
import logging

from .errors import InvalidDuration, PensionExpired, PensionInactive
from .models import PensionCustomer


class PensionValidity(str, Enum):
    VALID = "VALID"
    INACTIVE = "INACTIVE"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class PensionValidation:
    """Result of checking a subscription against the current time"""
    is_valid: bool
    reason: PensionValidity
    days_remaining: Optional[int] = None
    days_expired: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "reason": self.reason.value,
            "days_remaining": self.days_remaining,
            "days_expired": self.days_expired
        }


def _ceil_days(delta: timedelta) -> int:
    microseconds = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    return -(-microseconds // (86_400 * 1_000_000))


class PensionValidator:
    """Checks a subscription customer's access at a given moment"""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def validate(self, customer: PensionCustomer, now: datetime) -> PensionValidation:
        if not customer.is_active:
            return PensionValidation(False, PensionValidity.INACTIVE)

        try:
            not_started = now < customer.start_date
        except TypeError as e:
            raise InvalidDuration(customer.start_date, now, str(e)) from e

        if not_started:
            return PensionValidation(False, PensionValidity.NOT_YET_VALID)

        if now >= customer.end_date:
            days_expired = _ceil_days(now - customer.end_date)
            self.logger.debug(f"Pension {customer.id} expired {days_expired} day(s) ago")
            return PensionValidation(False, PensionValidity.EXPIRED, days_expired=days_expired)

        return PensionValidation(
            True, PensionValidity.VALID, days_remaining=_ceil_days(customer.end_date - now)
        )

    def require_valid(self, customer: PensionCustomer, now: datetime) -> PensionValidation:
        """Like validate, but raises for anything other than VALID"""
        result = self.validate(customer, now)
        if result.reason == PensionValidity.INACTIVE:
            raise PensionInactive(customer.id)
        if not result.is_valid:
            raise PensionExpired(customer.id, result.days_expired, result.reason.value)
        return result
