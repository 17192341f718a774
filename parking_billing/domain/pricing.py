# File: parking_billing/domain/pricing.py
"""
Pricing Policy

Immutable snapshot of the tariff a billing operation runs against. A policy
is loaded once per operation and passed explicitly into every calculation;
there is no process-wide pricing state, so a configuration update can never
change the result of a calculation already in progress.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .errors import EmptyRateSchedule, InvalidAmount, InvalidPricingPolicy
from .money import DEFAULT_CURRENCY, Money


@dataclass(frozen=True)
class PricingPolicy:
    """
    Value Object: tariff configuration

    increment_rates[i] is charged for the i-th block of increment_minutes
    beyond the minimum stay; the last entry is reused for every further
    block. The optional daily special is a price ceiling that applies once
    the stay reaches daily_special_hours.
    """
    minimum_hours: int
    minimum_rate: Money
    increment_minutes: int
    increment_rates: Tuple[Money, ...]
    monthly_rate: Money
    lost_ticket_fee: Money
    daily_special_hours: Optional[int] = None
    daily_special_rate: Optional[Money] = None
    currency: str = field(default=DEFAULT_CURRENCY)

    def __post_init__(self):
        """Validate the snapshot; a malformed policy never reaches a calculation"""
        object.__setattr__(self, 'increment_rates', tuple(self.increment_rates or ()))

        if not self.increment_rates:
            raise EmptyRateSchedule()

        _require_int(self.minimum_hours, "minimum_hours")
        if self.minimum_hours < 1:
            raise InvalidPricingPolicy("minimum_hours", "must be at least 1")

        _require_int(self.increment_minutes, "increment_minutes")
        if self.increment_minutes <= 0:
            raise InvalidPricingPolicy("increment_minutes", "must be greater than 0")

        self._require_amount(self.minimum_rate, "minimum_rate")
        for index, rate in enumerate(self.increment_rates):
            self._require_amount(rate, f"increment_rates[{index}]")
        self._require_amount(self.monthly_rate, "monthly_rate")
        self._require_amount(self.lost_ticket_fee, "lost_ticket_fee")

        # Daily special comes as a pair or not at all
        if (self.daily_special_hours is None) != (self.daily_special_rate is None):
            raise InvalidPricingPolicy(
                "daily_special",
                "daily_special_hours and daily_special_rate must be set together"
            )

        if self.daily_special_hours is not None:
            _require_int(self.daily_special_hours, "daily_special_hours")
            if self.daily_special_hours <= 0:
                raise InvalidPricingPolicy("daily_special_hours", "must be greater than 0")
            self._require_amount(self.daily_special_rate, "daily_special_rate")

    def _require_amount(self, value: Any, field_name: str) -> None:
        if not isinstance(value, Money):
            raise InvalidPricingPolicy(field_name, "must be a Money value")
        if value.currency != self.currency:
            raise InvalidPricingPolicy(
                field_name, f"currency {value.currency} differs from policy currency {self.currency}"
            )
        if value.is_negative():
            raise InvalidPricingPolicy(field_name, "cannot be negative")

    @property
    def minimum_minutes(self) -> int:
        return self.minimum_hours * 60

    @property
    def has_daily_special(self) -> bool:
        return self.daily_special_hours is not None

    def rate_for_increment(self, index: int) -> Money:
        """Rate of the index-th incremental block; the last tier repeats"""
        if index < 0:
            raise IndexError("increment index cannot be negative")
        return self.increment_rates[min(index, len(self.increment_rates) - 1)]

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Convert to configuration dictionary (rates as decimal text)"""
        return {
            "currency": self.currency,
            "minimum_hours": self.minimum_hours,
            "minimum_rate": str(self.minimum_rate),
            "increment_minutes": self.increment_minutes,
            "increment_rates": [str(rate) for rate in self.increment_rates],
            "daily_special_hours": self.daily_special_hours,
            "daily_special_rate": str(self.daily_special_rate) if self.daily_special_rate else None,
            "monthly_rate": str(self.monthly_rate),
            "lost_ticket_fee": str(self.lost_ticket_fee)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PricingPolicy':
        """
        Build a policy from configuration data

        Rates are decimal text (or ints) and are parsed at the Money
        conversion boundary; missing required keys raise InvalidPricingPolicy.
        """
        required_fields = [
            'minimum_hours', 'minimum_rate', 'increment_minutes',
            'increment_rates', 'monthly_rate', 'lost_ticket_fee'
        ]
        for field_name in required_fields:
            if field_name not in data or data[field_name] is None:
                raise InvalidPricingPolicy(field_name, "missing required field")

        currency = str(data.get('currency') or DEFAULT_CURRENCY).strip().upper()

        rates = data['increment_rates']
        if not isinstance(rates, (list, tuple)):
            raise InvalidPricingPolicy("increment_rates", "must be a list of rates")

        special_rate = data.get('daily_special_rate')

        return cls(
            minimum_hours=data['minimum_hours'],
            minimum_rate=_parse_rate(data['minimum_rate'], 'minimum_rate', currency),
            increment_minutes=data['increment_minutes'],
            increment_rates=tuple(
                _parse_rate(rate, f"increment_rates[{index}]", currency)
                for index, rate in enumerate(rates)
            ),
            monthly_rate=_parse_rate(data['monthly_rate'], 'monthly_rate', currency),
            lost_ticket_fee=_parse_rate(data['lost_ticket_fee'], 'lost_ticket_fee', currency),
            daily_special_hours=data.get('daily_special_hours'),
            daily_special_rate=(
                _parse_rate(special_rate, 'daily_special_rate', currency)
                if special_rate is not None else None
            ),
            currency=currency
        )


def _require_int(value: Any, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidPricingPolicy(field_name, "must be an integer")


def _parse_rate(value: Any, field_name: str, currency: str) -> Money:
    """Parse a configured rate (decimal text, int, or Money)"""
    if isinstance(value, Money):
        return value
    try:
        if isinstance(value, float):
            return Money.from_float(value, currency)
        if isinstance(value, int) and not isinstance(value, bool):
            return Money.from_major_units(value, currency)
        return Money.parse(str(value), currency)
    except InvalidAmount as e:
        raise InvalidPricingPolicy(field_name, e.message) from e
