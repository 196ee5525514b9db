"""Plan catalogue: duration and expected price for each purchasable plan"""
import enum
from typing import Optional


class PlanType(str, enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"

    @property
    def duration_days(self) -> int:
        return PLAN_DURATION_DAYS[self]

    @property
    def expected_price(self) -> int:
        """Expected amount in minor currency units"""
        return PLAN_EXPECTED_PRICES[self]

    @classmethod
    def parse(cls, value) -> Optional["PlanType"]:
        """Return the matching plan, or None for unknown values (exact, case-sensitive match)"""
        try:
            return cls(value)
        except ValueError:
            return None


PLAN_DURATION_DAYS = {
    PlanType.MONTHLY: 30,
    PlanType.YEARLY: 365,
    PlanType.LIFETIME: 36500,  # 100 years
}

PLAN_EXPECTED_PRICES = {
    PlanType.MONTHLY: 999,  # $9.99
    PlanType.YEARLY: 9999,  # $99.99
    PlanType.LIFETIME: 29999,  # $299.99
}
