# bytsave/storage/base.py

"""Abstract tracker repository consumed by the alert processor."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from bytsave.models.snapshot import ProductSnapshot
from bytsave.models.tracked_item import TrackedItem


@dataclass(frozen=True)
class DeliveryRecord:
    """One notification attempt, as written to the delivery log."""

    item_id: int
    recipient: str
    subject: str
    status: str  # "sent" or "failed"
    provider: str = ""
    provider_message_id: str = ""
    error: str = ""
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass(frozen=True)
class RejectedTracker:
    """A stored tracker row that no longer passes validation."""

    item_id: int
    reason: str


class TrackerRepository(ABC):
    """Storage for tracked items and their alert state."""

    @abstractmethod
    def list_tracked_items_with_snapshots(
        self,
    ) -> list[tuple[TrackedItem, ProductSnapshot | None]]:
        """Every tracked item with its latest known snapshot, if any."""
        ...

    @abstractmethod
    def update_alert_state(
        self,
        item_id: int,
        *,
        last_alert_sent_at: datetime | None,
        last_alert_price: Decimal | None,
        expected_version: int,
    ) -> int:
        """Write alert state if the record is still at *expected_version*.

        Returns the new version.  Raises ``ConcurrencyError`` when the
        record changed (or vanished) since it was read.
        """
        ...

    def save_snapshot(self, snapshot: ProductSnapshot) -> None:
        """Persist a freshly fetched snapshot. Optional."""

    def log_delivery(self, record: DeliveryRecord) -> None:
        """Append a delivery outcome to the log. Optional."""

    def get_cooldown_override(self) -> int | None:
        """Global cooldown (hours) that replaces per-item values, if set."""
        return None

    def list_rejected_trackers(self) -> list[RejectedTracker]:
        """Stored trackers left out of the listing as invalid. Optional."""
        return []

    def acquire_run_lease(self, owner: str, ttl_seconds: float) -> bool:
        """Claim the shared alert-run lease for *owner*.

        Stores reachable from several processes override this; the
        default grants every request.
        """
        return True

    def release_run_lease(self, owner: str) -> None:
        """Give back a lease taken with :meth:`acquire_run_lease`."""
