# quota.py
from dataclasses import dataclass
from typing import Optional

from storage import UsageRecord


@dataclass(frozen=True)
class QuotaPolicy:
    daily_limit: int = 5
    captcha_after: int = 3
    standard_max_variants: int = 3
    premium_max_variants: int = 5

    @classmethod
    def from_config(cls, cfg) -> "QuotaPolicy":
        return cls(
            daily_limit=cfg["FREE_DAILY_LIMIT"],
            captcha_after=cfg["FREE_CAPTCHA_AFTER"],
            standard_max_variants=cfg["STANDARD_MAX_VARIANTS"],
            premium_max_variants=cfg["PREMIUM_MAX_VARIANTS"],
        )

    def daily_cap(self, premium: bool) -> Optional[int]:
        """Generations allowed per identity per day; None is unlimited."""
        return None if premium else self.daily_limit

    def needs_challenge(self, rec: Optional[UsageRecord], premium: bool) -> bool:
        if premium:
            return False
        return (rec.calls if rec else 0) >= self.captcha_after

    def max_variants(self, plan: Optional[str]) -> int:
        """Variant cap for a plan; None means free tier."""
        if plan == "premium":
            return self.premium_max_variants
        if plan == "standard":
            return self.standard_max_variants
        return 1

    def effective_variants(self, requested: int, plan: Optional[str]) -> int:
        return max(1, min(requested, self.max_variants(plan)))
