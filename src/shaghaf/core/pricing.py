"""
Shared-Space Time Pricing

Tiered per-head pricing for time spent in the shared workspace:

- a flat first-hour fee per head, charged even for a five-minute stay
- each started hour after the first costs `additional_hour_rate` per head
- the additional-hour component is capped at `max_additional_charge`
  for the whole group on each settlement event
"""

from dataclasses import dataclass
from typing import Any, Dict

from .money import Money, to_major
from ..errors import InvalidArgument

SECONDS_PER_HOUR = 3600


@dataclass(frozen=True)
class PricingPolicy:
    """Rate configuration, fixed for the lifetime of a session."""
    first_hour_rate: Money
    additional_hour_rate: Money
    max_additional_charge: Money

    def __post_init__(self):
        for name in ("first_hour_rate", "additional_hour_rate", "max_additional_charge"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise InvalidArgument(f"{name} must be a non-negative integer amount, got {value!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "first_hour_rate": self.first_hour_rate,
            "additional_hour_rate": self.additional_hour_rate,
            "max_additional_charge": self.max_additional_charge,
            "display": {
                "first_hour_rate": str(to_major(self.first_hour_rate)),
                "additional_hour_rate": str(to_major(self.additional_hour_rate)),
                "max_additional_charge": str(to_major(self.max_additional_charge)),
            },
        }


# 40 / 30 / 100 EGP
DEFAULT_POLICY = PricingPolicy(
    first_hour_rate=4000,
    additional_hour_rate=3000,
    max_additional_charge=10000,
)


def additional_hour_blocks(elapsed_seconds: int) -> int:
    """Started hours beyond the first one (61 minutes -> 1 block)."""
    if elapsed_seconds <= SECONDS_PER_HOUR:
        return 0
    beyond = elapsed_seconds - SECONDS_PER_HOUR
    return -(-beyond // SECONDS_PER_HOUR)


def compute_time_cost(headcount: int, elapsed_seconds: int, policy: PricingPolicy) -> Money:
    """
    Time cost for `headcount` people present for `elapsed_seconds`.

    Headcount is taken as-is at the moment of settlement; time is not
    integrated per individual.
    """
    if headcount < 0:
        raise InvalidArgument(f"headcount must be >= 0, got {headcount}")
    if elapsed_seconds < 0:
        raise InvalidArgument(f"elapsed_seconds must be >= 0, got {elapsed_seconds}")

    base_cost = headcount * policy.first_hour_rate

    blocks = additional_hour_blocks(elapsed_seconds)
    if blocks == 0:
        return base_cost

    raw_additional = headcount * blocks * policy.additional_hour_rate
    return base_cost + min(raw_additional, policy.max_additional_charge)
