# bytsave/services/evaluator.py

"""Pure price-alert decision logic.

Nothing in this module performs I/O or mutates its inputs; the
processor owns every state change.  All price comparisons happen on
cent-rounded ``Decimal`` values so that e.g. ``19.99 <= 20.00`` can
never be lost to binary floating point.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from bytsave.config.settings import Settings
from bytsave.models.decision import AlertDecision, SuppressionReason
from bytsave.models.money import to_money
from bytsave.models.snapshot import ProductSnapshot
from bytsave.models.tracked_item import AlertMode, TrackedItem

_HUNDRED = Decimal("100")


def _as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def cooldown_remaining(
    item: TrackedItem,
    now: datetime,
    cooldown_hours: int | None = None,
) -> timedelta:
    """Time left before *item* may alert again (zero when clear)."""
    if item.last_alert_sent_at is None:
        return timedelta(0)
    hours = cooldown_hours or item.cooldown_hours
    ends_at = _as_utc(item.last_alert_sent_at) + timedelta(hours=hours)
    remaining = ends_at - _as_utc(now)
    return max(remaining, timedelta(0))


def rebound_threshold(
    last_alert_price: Decimal,
    rebound_pct: Decimal = Settings.REBOUND_PCT,
) -> Decimal:
    """Price the product must exceed to clear an active cooldown.

    Not rounded: a cent-rounded price is compared against the exact
    product so a price just above it is never rounded away.
    """
    factor = 1 + rebound_pct / _HUNDRED
    return to_money(last_alert_price) * factor


def discount_percent(snapshot: ProductSnapshot) -> Decimal:
    """Discount of the current price against the baseline, in percent."""
    baseline = snapshot.baseline_price
    if baseline <= 0:
        return Decimal(0)
    return (baseline - snapshot.current_price) / baseline * _HUNDRED


def evaluate(
    snapshot: ProductSnapshot,
    item: TrackedItem,
    now: datetime,
    *,
    cooldown_hours: int | None = None,
    rebound_pct: Decimal = Settings.REBOUND_PCT,
) -> AlertDecision:
    """Decide whether *item* should alert on *snapshot* right now.

    ``cooldown_hours`` overrides the tracker's own cooldown when a
    global setting is in force.
    """
    current = to_money(snapshot.current_price)

    if cooldown_remaining(item, now, cooldown_hours) > timedelta(0):
        last_price = item.last_alert_price
        rebounded = (
            last_price is not None
            and current > rebound_threshold(last_price, rebound_pct)
        )
        return AlertDecision.suppressed(
            SuppressionReason.IN_COOLDOWN,
            rebound_eligible=rebounded,
        )

    if item.alert_mode is AlertMode.PERCENTAGE_DROP:
        baseline = to_money(snapshot.baseline_price)
        if baseline <= 0:
            return AlertDecision.suppressed(
                SuppressionReason.INVALID_BASELINE
            )
        discount = (baseline - current) / baseline * _HUNDRED
        threshold = item.percentage_threshold
        if threshold is not None and discount >= threshold:
            return AlertDecision.fired()
        return AlertDecision.suppressed(
            SuppressionReason.INSUFFICIENT_DISCOUNT
        )

    target = item.target_price
    if target is not None and current <= to_money(target):
        return AlertDecision.fired()
    return AlertDecision.suppressed(SuppressionReason.PRICE_ABOVE_TARGET)
