# File: parking_billing/domain/strategies.py
"""
Strategy Pattern Implementation for Fee Calculation

This module implements the Strategy Pattern to encapsulate the pricing
algorithms of the billing engine. Each strategy is a pure function of its
inputs: identical (entry, exit, policy) produce equal results.

Key Strategies:
1. TieredPricingStrategy - minimum stay + tiered increments + daily ceiling
2. LostTicketPricingStrategy - fixed lost-ticket fee, no duration

FeeCalculator is the facade the rest of the engine uses.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import logging

from .errors import InvalidDuration
from .money import Money
from .pricing import PricingPolicy


MICROSECONDS_PER_MINUTE = 60 * 1_000_000


# ============================================================================
# CALCULATION RESULT
# ============================================================================

class FeeLineKind(str, Enum):
    """Kinds of line in an itemised fee breakdown"""
    MINIMUM = "MINIMUM"
    INCREMENT = "INCREMENT"
    SUBTOTAL = "SUBTOTAL"
    DAILY_CAP = "DAILY_CAP"
    LOST_TICKET = "LOST_TICKET"


@dataclass(frozen=True)
class FeeLine:
    """One line of the itemised breakdown"""
    kind: FeeLineKind
    amount: Money
    description: str
    index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "amount": self.amount.to_dict(),
            "description": self.description,
            "index": self.index
        }


@dataclass(frozen=True)
class FeeCalculation:
    """Result of a fee calculation: total, billed duration, breakdown"""
    total_amount: Money
    duration_minutes: int
    breakdown: Tuple[FeeLine, ...]

    @property
    def increments(self) -> Tuple[FeeLine, ...]:
        return tuple(line for line in self.breakdown if line.kind == FeeLineKind.INCREMENT)

    @property
    def cap_applied(self) -> bool:
        return any(line.kind == FeeLineKind.DAILY_CAP for line in self.breakdown)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_amount": self.total_amount.to_dict(),
            "duration_minutes": self.duration_minutes,
            "cap_applied": self.cap_applied,
            "breakdown": [line.to_dict() for line in self.breakdown]
        }


def billable_minutes(entry_time: datetime, exit_time: datetime) -> int:
    """
    Whole minutes between entry and exit, rounded up

    A stay of 60 minutes and 1 second bills as 61 minutes.
    """
    try:
        delta: timedelta = exit_time - entry_time
    except TypeError as e:
        # naive and timezone-aware datetimes cannot be compared
        raise InvalidDuration(entry_time, exit_time, str(e)) from e

    if delta < timedelta(0):
        raise InvalidDuration(entry_time, exit_time)

    microseconds = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    return -(-microseconds // MICROSECONDS_PER_MINUTE)


# ============================================================================
# STRATEGY INTERFACE
# ============================================================================

class PricingStrategy(ABC):
    """
    Abstract base class for pricing strategies
    Defines the interface for fee calculation algorithms
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def calculate(
        self,
        entry_time: datetime,
        exit_time: datetime,
        policy: PricingPolicy
    ) -> FeeCalculation:
        """
        Calculate the fee for a stay under the given policy snapshot
        Returns: FeeCalculation
        """
        pass

    def get_strategy_name(self) -> str:
        """Get human-readable strategy name"""
        return self.__class__.__name__.replace("PricingStrategy", "")

    def __str__(self) -> str:
        return f"{self.get_strategy_name()} Strategy"


# ============================================================================
# CONCRETE STRATEGIES
# ============================================================================

class TieredPricingStrategy(PricingStrategy):
    """
    Standard tiered pricing
    - Minimum charge covers the first minimum_hours
    - Each further block of increment_minutes is charged at its tier rate;
      the last tier repeats indefinitely
    - Optional daily special acts as a ceiling once the stay is long enough
    """

    def calculate(
        self,
        entry_time: datetime,
        exit_time: datetime,
        policy: PricingPolicy
    ) -> FeeCalculation:
        duration_minutes = billable_minutes(entry_time, exit_time)

        lines = [FeeLine(
            FeeLineKind.MINIMUM,
            policy.minimum_rate,
            f"Minimum charge ({policy.minimum_hours}h)"
        )]
        total = policy.minimum_rate

        # Everything stays in whole minutes: hours > minimum_hours <=> minutes > minimum_minutes
        if duration_minutes > policy.minimum_minutes:
            additional_minutes = duration_minutes - policy.minimum_minutes
            increments_needed = -(-additional_minutes // policy.increment_minutes)

            for index in range(increments_needed):
                rate = policy.rate_for_increment(index)
                total = total.add(rate)
                lines.append(FeeLine(
                    FeeLineKind.INCREMENT,
                    rate,
                    f"Increment {index + 1} ({policy.increment_minutes} min)",
                    index=index
                ))

        lines.append(FeeLine(FeeLineKind.SUBTOTAL, total, "Subtotal"))

        # Ceiling only; it never raises the price
        if (policy.has_daily_special
                and duration_minutes >= policy.daily_special_hours * 60
                and total.greater_than(policy.daily_special_rate)):
            self.logger.debug(
                f"Daily special applied: {total} capped at {policy.daily_special_rate}"
            )
            total = policy.daily_special_rate
            lines.append(FeeLine(
                FeeLineKind.DAILY_CAP,
                policy.daily_special_rate,
                f"Daily special ({policy.daily_special_hours}h)"
            ))

        self.logger.debug(f"Calculated {total} for {duration_minutes} minutes")
        return FeeCalculation(total, duration_minutes, tuple(lines))


class LostTicketPricingStrategy(PricingStrategy):
    """
    Lost ticket pricing
    - Fixed lost_ticket_fee regardless of the stay
    - Duration is unknown and reported as 0
    """

    def calculate(
        self,
        entry_time: Optional[datetime],
        exit_time: Optional[datetime],
        policy: PricingPolicy
    ) -> FeeCalculation:
        fee = policy.lost_ticket_fee
        return FeeCalculation(
            fee,
            0,
            (FeeLine(FeeLineKind.LOST_TICKET, fee, "Lost ticket fee"),)
        )


# ============================================================================
# FACADE
# ============================================================================

class FeeCalculator:
    """
    Facade over the pricing strategies

    Holds no pricing state; the policy snapshot is passed to every call.
    """

    def __init__(
        self,
        tiered: Optional[PricingStrategy] = None,
        lost_ticket: Optional[PricingStrategy] = None
    ):
        self.tiered = tiered or TieredPricingStrategy()
        self.lost_ticket = lost_ticket or LostTicketPricingStrategy()

    def calculate(
        self,
        entry_time: datetime,
        exit_time: datetime,
        policy: PricingPolicy
    ) -> FeeCalculation:
        """Fee owed for a stay from entry_time to exit_time"""
        return self.tiered.calculate(entry_time, exit_time, policy)

    def calculate_lost_ticket(self, policy: PricingPolicy) -> FeeCalculation:
        """Fixed fee charged when the ticket cannot be presented"""
        return self.lost_ticket.calculate(None, None, policy)
