"""Tests for the tier catalog (app/tiers.py)"""
import pytest

from app.tiers import (
    BANDS,
    TIERS,
    UnknownTierError,
    band_for_amount,
    get_tier,
    price_label,
    tier_for_amount,
)


class TestTierLookup:
    def test_get_tier_returns_price_in_cents(self):
        assert get_tier("premium").amount_cents == 30000
        assert get_tier("standard").amount_cents == 15000
        assert get_tier("hall_of_fame").amount_cents == 7500
        assert get_tier("bare_minimum").amount_cents == 5000

    def test_unknown_tier_raises(self):
        with pytest.raises(UnknownTierError):
            get_tier("platinum")

    def test_missing_tier_raises(self):
        with pytest.raises(UnknownTierError):
            get_tier(None)

    def test_unknown_tier_is_a_value_error(self):
        with pytest.raises(ValueError):
            get_tier("")

    def test_price_label(self):
        assert price_label(get_tier("hall_of_fame")) == "$75"


class TestBands:
    def test_amount_maps_to_band(self):
        assert band_for_amount(30000) == BANDS["premium"]
        assert band_for_amount(15000).first_position == 2
        assert band_for_amount(15000).last_position == 11
        assert band_for_amount(7500).last_position == 100

    def test_bare_minimum_has_no_band(self):
        assert band_for_amount(5000) is None

    def test_unknown_amount_has_no_tier_or_band(self):
        assert tier_for_amount(12345) is None
        assert band_for_amount(12345) is None
        assert tier_for_amount(None) is None

    def test_bands_are_disjoint(self):
        seen = set()
        for band in BANDS.values():
            positions = set(range(band.first_position, band.last_position + 1))
            assert not positions & seen
            seen |= positions

    def test_band_size_and_contains(self):
        standard = BANDS["standard"]
        assert standard.size == 10
        assert standard.contains(2)
        assert standard.contains(11)
        assert not standard.contains(12)

    def test_every_banded_tier_uses_a_catalog_band(self):
        for tier in TIERS.values():
            if tier.band is not None:
                assert BANDS[tier.band.name] == tier.band
