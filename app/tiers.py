"""
Pricing tiers and the Hall of Fame bands they buy into.

This is defined in code (not DB) so it deploys with the application.
Bands are disjoint, so a position number identifies its band.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Band:
    name: str
    first_position: int
    last_position: int

    @property
    def size(self) -> int:
        return self.last_position - self.first_position + 1

    def contains(self, position: int) -> bool:
        return self.first_position <= position <= self.last_position


@dataclass(frozen=True)
class Tier:
    name: str
    amount_cents: int
    display_name: str
    description: str
    band: Optional[Band]


class UnknownTierError(ValueError):
    pass


BANDS = {
    "premium": Band("premium", 1, 1),
    "standard": Band("standard", 2, 11),
    "hall_of_fame": Band("hall_of_fame", 12, 100),
}

TIERS = {
    "premium": Tier(
        name="premium",
        amount_cents=30000,
        display_name="Premium Hall of Famer",
        description="1 app deployment with #1 Hall of Fame placement",
        band=BANDS["premium"],
    ),
    "standard": Tier(
        name="standard",
        amount_cents=15000,
        display_name="Standard Hall of Famer",
        description="1 app deployment with Hall of Fame placement (positions 2-11)",
        band=BANDS["standard"],
    ),
    "hall_of_fame": Tier(
        name="hall_of_fame",
        amount_cents=7500,
        display_name="Hall of Famer",
        description="1 app deployment with Hall of Fame placement (positions 12-100)",
        band=BANDS["hall_of_fame"],
    ),
    "bare_minimum": Tier(
        name="bare_minimum",
        amount_cents=5000,
        display_name="The Bare Minimum",
        description="1 app deployment",
        band=None,
    ),
}

_TIERS_BY_AMOUNT = {t.amount_cents: t for t in TIERS.values()}


def get_tier(name: Optional[str]) -> Tier:
    """Look up a tier by name. Unknown names are a caller error."""
    tier = TIERS.get(name or "")
    if tier is None:
        raise UnknownTierError(f"Unknown tier: {name!r}")
    return tier


def tier_for_amount(amount_cents: Optional[int]) -> Optional[Tier]:
    if amount_cents is None:
        return None
    return _TIERS_BY_AMOUNT.get(amount_cents)


def band_for_amount(amount_cents: Optional[int]) -> Optional[Band]:
    tier = tier_for_amount(amount_cents)
    return tier.band if tier else None


def price_label(tier: Tier) -> str:
    return f"${tier.amount_cents // 100}"
