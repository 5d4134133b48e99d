# tests/test_evaluator.py

"""Tests for the pure alert evaluator."""

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

from bytsave.models.decision import SuppressionReason
from bytsave.models.snapshot import ProductSnapshot
from bytsave.models.tracked_item import AlertMode, TrackedItem
from bytsave.services.evaluator import (
    cooldown_remaining,
    discount_percent,
    evaluate,
    rebound_threshold,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _snap(
    current: str, original: str | None = None,
) -> ProductSnapshot:
    return ProductSnapshot(
        identifier="B0TESTASIN",
        current_price=Decimal(current),
        original_price=Decimal(original) if original else None,
    )


def _fixed(target: str, **kwargs: Any) -> TrackedItem:
    return TrackedItem(
        id=1,
        recipient="buyer@example.com",
        identifier="B0TESTASIN",
        alert_mode=AlertMode.FIXED_PRICE,
        target_price=Decimal(target),
        **kwargs,
    )


def _percent(threshold: str, **kwargs: Any) -> TrackedItem:
    return TrackedItem(
        id=2,
        recipient="buyer@example.com",
        identifier="B0TESTASIN",
        alert_mode=AlertMode.PERCENTAGE_DROP,
        percentage_threshold=Decimal(threshold),
        **kwargs,
    )


class TestFixedPrice(unittest.TestCase):
    """Fixed-price trackers fire at or below target."""

    def test_below_target_fires(self) -> None:
        decision = evaluate(_snap("19.99"), _fixed("20.00"), NOW)
        self.assertTrue(decision.fire)

    def test_equal_to_target_fires(self) -> None:
        decision = evaluate(_snap("20.00"), _fixed("20.00"), NOW)
        self.assertTrue(decision.fire)

    def test_above_target_suppressed(self) -> None:
        decision = evaluate(_snap("20.01"), _fixed("20.00"), NOW)
        self.assertFalse(decision.fire)
        self.assertIs(decision.reason, SuppressionReason.PRICE_ABOVE_TARGET)

    def test_float_noise_does_not_block_boundary(self) -> None:
        """0.1 + 0.2 style noise must not break an exact match."""
        snap = ProductSnapshot(
            identifier="X",
            current_price=0.1 + 0.2,  # type: ignore[arg-type]
        )
        self.assertTrue(evaluate(snap, _fixed("0.30"), NOW).fire)


class TestPercentageDrop(unittest.TestCase):
    """Percentage trackers fire when the discount reaches the threshold."""

    def test_sixteen_percent_fires_at_fifteen(self) -> None:
        decision = evaluate(_snap("84.00", "100.00"), _percent("15"), NOW)
        self.assertTrue(decision.fire)

    def test_fourteen_percent_suppressed_at_fifteen(self) -> None:
        decision = evaluate(_snap("86.00", "100.00"), _percent("15"), NOW)
        self.assertFalse(decision.fire)
        self.assertIs(
            decision.reason, SuppressionReason.INSUFFICIENT_DISCOUNT
        )

    def test_exact_threshold_fires(self) -> None:
        decision = evaluate(_snap("85.00", "100.00"), _percent("15"), NOW)
        self.assertTrue(decision.fire)

    def test_fractional_discount_not_truncated(self) -> None:
        """14.99% must not round up to 15%, 15.01% must not truncate."""
        self.assertFalse(
            evaluate(_snap("85.01", "100.00"), _percent("15"), NOW).fire
        )
        self.assertTrue(
            evaluate(_snap("84.99", "100.00"), _percent("15"), NOW).fire
        )

    def test_missing_original_never_fires(self) -> None:
        decision = evaluate(_snap("10.00"), _percent("1"), NOW)
        self.assertFalse(decision.fire)
        self.assertIs(
            decision.reason, SuppressionReason.INSUFFICIENT_DISCOUNT
        )

    def test_highest_seen_price_used_without_list_price(self) -> None:
        snap = ProductSnapshot(
            identifier="B0TESTASIN",
            current_price=Decimal("84.00"),
            highest_price=Decimal("100.00"),
        )
        self.assertTrue(evaluate(snap, _percent("15"), NOW).fire)

    def test_threshold_100_never_fires(self) -> None:
        decision = evaluate(_snap("0.01", "1000.00"), _percent("100"), NOW)
        self.assertFalse(decision.fire)

    def test_invalid_baseline(self) -> None:
        """A zero baseline from a loosely built snapshot is suppressed."""
        snap: Any = SimpleNamespace(
            current_price=Decimal("0"),
            baseline_price=Decimal("0"),
        )
        decision = evaluate(snap, _percent("10"), NOW)
        self.assertIs(decision.reason, SuppressionReason.INVALID_BASELINE)

    def test_discount_percent_helper(self) -> None:
        self.assertEqual(
            discount_percent(_snap("84.00", "100.00")), Decimal("16")
        )
        self.assertEqual(discount_percent(_snap("84.00")), Decimal("0"))


class TestCooldown(unittest.TestCase):
    """Cooldown window and rebound signalling."""

    def test_cooldown_suppresses_regardless_of_price(self) -> None:
        item = _fixed(
            "50.00",
            last_alert_sent_at=NOW - timedelta(hours=10),
            last_alert_price=Decimal("40.00"),
        )
        decision = evaluate(_snap("1.00"), item, NOW)
        self.assertFalse(decision.fire)
        self.assertIs(decision.reason, SuppressionReason.IN_COOLDOWN)
        self.assertFalse(decision.rebound_eligible)

    def test_cooldown_expired_evaluates_normally(self) -> None:
        item = _fixed(
            "50.00",
            last_alert_sent_at=NOW - timedelta(hours=48),
            last_alert_price=Decimal("40.00"),
        )
        self.assertTrue(evaluate(_snap("45.00"), item, NOW).fire)

    def test_rebound_above_ten_percent_flags_reset(self) -> None:
        item = _fixed(
            "100.00",
            last_alert_sent_at=NOW - timedelta(hours=10),
            last_alert_price=Decimal("100.00"),
        )
        decision = evaluate(_snap("115.00"), item, NOW)
        self.assertFalse(decision.fire)
        self.assertIs(decision.reason, SuppressionReason.IN_COOLDOWN)
        self.assertTrue(decision.rebound_eligible)

    def test_rebound_exactly_ten_percent_not_enough(self) -> None:
        item = _fixed(
            "100.00",
            last_alert_sent_at=NOW - timedelta(hours=10),
            last_alert_price=Decimal("100.00"),
        )
        decision = evaluate(_snap("110.00"), item, NOW)
        self.assertFalse(decision.rebound_eligible)

    def test_rebound_needs_last_price(self) -> None:
        item = _fixed(
            "100.00",
            last_alert_sent_at=NOW - timedelta(hours=10),
        )
        decision = evaluate(_snap("500.00"), item, NOW)
        self.assertFalse(decision.rebound_eligible)

    def test_cooldown_override(self) -> None:
        """A global cooldown replaces the tracker's own."""
        item = _fixed(
            "50.00",
            last_alert_sent_at=NOW - timedelta(hours=60),
        )
        self.assertTrue(evaluate(_snap("45.00"), item, NOW).fire)
        decision = evaluate(_snap("45.00"), item, NOW, cooldown_hours=72)
        self.assertIs(decision.reason, SuppressionReason.IN_COOLDOWN)

    def test_custom_rebound_pct(self) -> None:
        item = _fixed(
            "100.00",
            last_alert_sent_at=NOW - timedelta(hours=1),
            last_alert_price=Decimal("100.00"),
        )
        decision = evaluate(
            _snap("106.00"), item, NOW, rebound_pct=Decimal("5"),
        )
        self.assertTrue(decision.rebound_eligible)

    def test_naive_timestamps_treated_as_utc(self) -> None:
        item = _fixed(
            "50.00",
            last_alert_sent_at=datetime(2026, 3, 1, 2, 0),
        )
        remaining = cooldown_remaining(item, NOW)
        self.assertEqual(remaining, timedelta(hours=38))

    def test_cooldown_remaining_zero_when_never_alerted(self) -> None:
        self.assertEqual(
            cooldown_remaining(_fixed("1.00"), NOW), timedelta(0)
        )

    def test_rebound_threshold_is_exact(self) -> None:
        self.assertEqual(
            rebound_threshold(Decimal("19.99")), Decimal("21.989")
        )

    def test_rebound_one_cent_above_exact_threshold(self) -> None:
        """110.06 clears a 110.055 threshold even though it rounds to it."""
        item = _fixed(
            "100.00",
            last_alert_sent_at=NOW - timedelta(hours=1),
            last_alert_price=Decimal("100.05"),
        )
        self.assertTrue(
            evaluate(_snap("110.06"), item, NOW).rebound_eligible
        )
        self.assertFalse(
            evaluate(_snap("110.05"), item, NOW).rebound_eligible
        )


if __name__ == "__main__":
    unittest.main()
