# bytsave/models/tracked_item.py

"""A user's price-alert subscription for one product."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from bytsave.config.settings import Settings
from bytsave.models.money import optional_money


class AlertMode(str, Enum):
    """Which condition a tracker fires on."""

    FIXED_PRICE = "fixed_price"
    PERCENTAGE_DROP = "percentage_drop"


@dataclass
class TrackedItem:
    """Subscription linking a recipient, a product and an alert condition.

    Only one of ``target_price`` / ``percentage_threshold`` is
    meaningful, chosen by ``alert_mode``; the other is ignored.
    ``version`` increases on every alert-state write and is what
    conditional updates are checked against.
    """

    id: int
    recipient: str
    identifier: str
    alert_mode: AlertMode
    target_price: Decimal | None = None
    percentage_threshold: Decimal | None = None
    cooldown_hours: int = Settings.DEFAULT_COOLDOWN_HOURS
    last_alert_sent_at: datetime | None = None
    last_alert_price: Decimal | None = None
    version: int = 1
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        self.alert_mode = AlertMode(self.alert_mode)
        self.target_price = optional_money(self.target_price)
        self.last_alert_price = optional_money(self.last_alert_price)
        if self.percentage_threshold is not None:
            self.percentage_threshold = Decimal(
                str(self.percentage_threshold)
            )
        self.validate()

    def validate(self) -> None:
        """Raise ``ValueError`` if the active alert condition is unusable."""
        if self.alert_mode is AlertMode.FIXED_PRICE:
            if self.target_price is None or self.target_price <= 0:
                raise ValueError(
                    f"Tracker {self.id}: fixed-price mode needs a "
                    f"positive target_price, got {self.target_price}"
                )
        else:
            pct = self.percentage_threshold
            if pct is None or not (0 < pct <= 100):
                raise ValueError(
                    f"Tracker {self.id}: percentage threshold must be "
                    f"in (0, 100], got {pct}"
                )
        if self.cooldown_hours <= 0:
            raise ValueError(
                f"Tracker {self.id}: cooldown_hours must be positive, "
                f"got {self.cooldown_hours}"
            )

    @property
    def ever_alerted(self) -> bool:
        """True once an alert has been recorded for this tracker."""
        return self.last_alert_sent_at is not None
