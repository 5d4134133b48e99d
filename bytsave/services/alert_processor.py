# bytsave/services/alert_processor.py

"""Runs one alert cycle over every tracked item."""

import asyncio
import dataclasses
import logging
import os
import socket
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal

from bytsave.catalog.base import CatalogProvider
from bytsave.config.logging_config import bound_run_id
from bytsave.config.settings import Settings
from bytsave.models.decision import (
    AlertDecision,
    ErrorKind,
    ItemState,
    ProcessingError,
    ProcessingResult,
    SuppressionReason,
)
from bytsave.models.errors import (
    ConcurrencyError,
    RunInProgressError,
    SnapshotNotFoundError,
)
from bytsave.models.snapshot import ProductSnapshot
from bytsave.models.tracked_item import AlertMode, TrackedItem
from bytsave.notify.base import AlertMessage, NotificationResult, Notifier
from bytsave.notify.rate_limit import RATE_LIMITED_ERROR
from bytsave.notify.templates import render_price_drop
from bytsave.services.evaluator import evaluate
from bytsave.storage.base import DeliveryRecord, TrackerRepository

logger = logging.getLogger("bytsave.processor")

# Held for the whole of a run; shared by every processor in the process
_RUN_LOCK = threading.Lock()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_run_id() -> str:
    """Identify one alert run across hosts and processes."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:12]}"


def carry_highest_price(
    fresh: ProductSnapshot, stored: ProductSnapshot | None,
) -> ProductSnapshot:
    """Give a fresh catalog read the highest price recorded so far."""
    if stored is None:
        return fresh
    highest = max(
        fresh.highest_price or fresh.current_price,
        stored.highest_price or stored.current_price,
    )
    return dataclasses.replace(fresh, highest_price=highest)


def build_alert_message(
    item: TrackedItem,
    snapshot: ProductSnapshot,
    previous: ProductSnapshot | None = None,
) -> AlertMessage:
    """Describe a fired alert for the notifier."""
    old_price: Decimal | None = snapshot.original_price
    if (
        old_price is None
        and snapshot.highest_price is not None
        and snapshot.highest_price > snapshot.current_price
    ):
        old_price = snapshot.highest_price
    if (
        old_price is None
        and previous is not None
        and previous.current_price > snapshot.current_price
    ):
        old_price = previous.current_price

    if item.alert_mode is AlertMode.PERCENTAGE_DROP:
        condition = f"by at least {item.percentage_threshold}%"
    else:
        condition = f"below your target of ${item.target_price:,.2f}"

    return AlertMessage(
        recipient=item.recipient,
        product_title=snapshot.title or item.identifier,
        old_price=old_price,
        new_price=snapshot.current_price,
        product_url=snapshot.url,
        image_url=snapshot.image_url,
        currency=snapshot.currency,
        condition=condition,
    )


class AlertProcessor:
    """Evaluates trackers, sends alerts and records alert state.

    Each item moves through the states in :class:`ItemState`.  An
    item's failure is reported in the run result and never stops the
    batch; only a failure to list the items at all propagates.
    """

    def __init__(
        self,
        repository: TrackerRepository,
        notifier: Notifier,
        catalog: CatalogProvider | None = None,
        *,
        max_workers: int | None = None,
        rebound_pct: Decimal | None = None,
        lease_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.catalog = catalog
        self.max_workers = max_workers or Settings.MAX_WORKERS
        self.rebound_pct = (
            Settings.REBOUND_PCT if rebound_pct is None else rebound_pct
        )
        self.lease_seconds = lease_seconds or Settings.RUN_LEASE_SECONDS
        self._clock = clock
        self._cancel = threading.Event()

    # ── Run control ──────────────────────────────────────

    def cancel(self) -> None:
        """Stop after the items already in flight finish."""
        logger.warning("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    async def process_all(self) -> ProcessingResult:
        """Run one alert cycle over every tracked item.

        Raises ``RunInProgressError`` if another cycle is still
        running, either in this process or in any process holding the
        repository's run lease.  Every log line of the run carries its
        run id.
        """
        if not _RUN_LOCK.acquire(blocking=False):
            raise RunInProgressError("An alert run is already in progress")
        try:
            run_id = new_run_id()
            acquired = await asyncio.to_thread(
                self.repository.acquire_run_lease,
                run_id,
                self.lease_seconds,
            )
            if not acquired:
                raise RunInProgressError(
                    "An alert run is already in progress in another process"
                )
            try:
                with bound_run_id(run_id):
                    self._cancel.clear()
                    return await self._run()
            finally:
                self._release_lease(run_id)
        finally:
            _RUN_LOCK.release()

    def _release_lease(self, run_id: str) -> None:
        # Runs on the event loop thread so a cancelled run still releases
        try:
            self.repository.release_run_lease(run_id)
        except Exception:
            logger.error(
                "Run %s: lease release failed, it expires in %.0fs",
                run_id,
                self.lease_seconds,
                exc_info=True,
            )

    async def _run(self) -> ProcessingResult:
        # Fatal: without the item list there is nothing to do
        pairs = await asyncio.to_thread(
            self.repository.list_tracked_items_with_snapshots
        )
        rejected = await asyncio.to_thread(
            self.repository.list_rejected_trackers
        )
        cooldown_override = await asyncio.to_thread(
            self.repository.get_cooldown_override
        )
        if cooldown_override is not None:
            logger.info("Global cooldown override: %dh", cooldown_override)

        result = ProcessingResult(items_seen=len(pairs) + len(rejected))
        for bad in rejected:
            logger.warning(
                "Tracker %d: skipped, stored row is invalid: %s",
                bad.item_id,
                bad.reason,
            )
            result.errors.append(
                ProcessingError(
                    item_id=bad.item_id,
                    kind=ErrorKind.INVALID_TRACKER,
                    cause=bad.reason,
                )
            )
        logger.info(
            "Alert run started: %d tracked items, %d workers",
            len(pairs),
            self.max_workers,
        )
        semaphore = asyncio.Semaphore(self.max_workers)

        async def run_one(
            item: TrackedItem, stored: ProductSnapshot | None,
        ) -> None:
            async with semaphore:
                if self._cancel.is_set():
                    result.skipped += 1
                    return
                try:
                    state = await self._process_item(
                        item, stored, cooldown_override, result,
                    )
                except Exception as exc:
                    logger.error(
                        "Tracker %d: unexpected failure",
                        item.id,
                        exc_info=True,
                    )
                    state = self._fail(
                        result, item, ErrorKind.INTERNAL_ERROR, str(exc),
                    )
                logger.debug("Tracker %d finished in %s", item.id, state.value)

        batch = asyncio.gather(*(run_one(i, s) for i, s in pairs))
        try:
            await asyncio.shield(batch)
        except asyncio.CancelledError:
            # Let in-flight notify/update pairs complete, skip the rest
            self._cancel.set()
            await batch
            raise

        result.cancelled = self._cancel.is_set()
        logger.info(
            "Alert run complete: %d sent, %d suppressed, %d cooldown "
            "resets, %d conflicts, %d errors, %d skipped",
            result.alerts_sent,
            result.suppressed,
            result.cooldown_resets,
            result.conflicts,
            len(result.errors),
            result.skipped,
        )
        return result

    # ── Per-item state machine ───────────────────────────

    def _fail(
        self,
        result: ProcessingResult,
        item: TrackedItem,
        kind: ErrorKind,
        cause: str,
    ) -> ItemState:
        result.errors.append(
            ProcessingError(item_id=item.id, kind=kind, cause=cause)
        )
        return ItemState.FAILED

    async def _resolve_snapshot(
        self, item: TrackedItem, stored: ProductSnapshot | None,
    ) -> ProductSnapshot:
        if self.catalog is None:
            if stored is None:
                raise SnapshotNotFoundError(
                    item.identifier, "no stored snapshot"
                )
            return stored

        fresh = carry_highest_price(
            await asyncio.to_thread(
                self.catalog.get_snapshot, item.identifier
            ),
            stored,
        )
        try:
            await asyncio.to_thread(self.repository.save_snapshot, fresh)
        except Exception as exc:
            logger.warning(
                "Could not persist snapshot for %s: %s",
                item.identifier,
                exc,
            )
        return fresh

    async def _process_item(
        self,
        item: TrackedItem,
        stored: ProductSnapshot | None,
        cooldown_override: int | None,
        result: ProcessingResult,
    ) -> ItemState:
        # IDLE -> EVALUATING
        try:
            snapshot = await self._resolve_snapshot(item, stored)
        except SnapshotNotFoundError as exc:
            logger.warning("Tracker %d: %s", item.id, exc)
            return self._fail(
                result, item, ErrorKind.SNAPSHOT_UNAVAILABLE, str(exc),
            )
        except Exception as exc:
            logger.error(
                "Tracker %d: snapshot fetch for %s failed",
                item.id,
                item.identifier,
                exc_info=True,
            )
            return self._fail(
                result, item, ErrorKind.SNAPSHOT_UNAVAILABLE, str(exc),
            )

        now = self._clock()
        decision = evaluate(
            snapshot,
            item,
            now,
            cooldown_hours=cooldown_override,
            rebound_pct=self.rebound_pct,
        )
        logger.debug(
            "Tracker %d (%s @ %s): %s",
            item.id,
            item.identifier,
            snapshot.current_price,
            decision,
        )

        if decision.rebound_eligible:
            return await self._reset_cooldown(item, snapshot, result)

        if not decision.fire:
            return self._suppress(item, decision, result)

        return await self._notify(item, snapshot, stored, now, result)

    async def _reset_cooldown(
        self,
        item: TrackedItem,
        snapshot: ProductSnapshot,
        result: ProcessingResult,
    ) -> ItemState:
        """Clear alert state after a rebound; the item fires next cycle."""
        try:
            await asyncio.to_thread(
                self.repository.update_alert_state,
                item.id,
                last_alert_sent_at=None,
                last_alert_price=None,
                expected_version=item.version,
            )
        except ConcurrencyError as exc:
            logger.info("Tracker %d: reset skipped, %s", item.id, exc)
            result.conflicts += 1
            return ItemState.IDLE
        except Exception as exc:
            logger.error(
                "Tracker %d: cooldown reset failed", item.id, exc_info=True,
            )
            return self._fail(
                result, item, ErrorKind.REPOSITORY_ERROR, str(exc),
            )

        logger.info(
            "Tracker %d: price rebounded from %s to %s, cooldown reset",
            item.id,
            item.last_alert_price,
            snapshot.current_price,
        )
        result.cooldown_resets += 1
        return ItemState.REBOUND_ELIGIBLE

    def _suppress(
        self,
        item: TrackedItem,
        decision: AlertDecision,
        result: ProcessingResult,
    ) -> ItemState:
        result.suppressed += 1
        if decision.reason is SuppressionReason.IN_COOLDOWN:
            return ItemState.COOLDOWN_ACTIVE
        if decision.reason is SuppressionReason.INVALID_BASELINE:
            logger.warning(
                "Tracker %d: no usable baseline price for %s",
                item.id,
                item.identifier,
            )
            self._fail(
                result,
                item,
                ErrorKind.INVALID_BASELINE,
                f"no usable baseline price for {item.identifier}",
            )
        return ItemState.IDLE

    async def _notify(
        self,
        item: TrackedItem,
        snapshot: ProductSnapshot,
        stored: ProductSnapshot | None,
        now: datetime,
        result: ProcessingResult,
    ) -> ItemState:
        message = build_alert_message(item, snapshot, stored)
        logger.info(
            "Tracker %d: alert triggered for %s at %s, notifying %s",
            item.id,
            item.identifier,
            snapshot.current_price,
            item.recipient,
        )
        try:
            outcome = await asyncio.to_thread(
                self.notifier.send_price_drop_alert, message,
            )
        except Exception as exc:
            logger.error(
                "Tracker %d: notifier raised", item.id, exc_info=True,
            )
            outcome = NotificationResult(success=False, error=str(exc))

        await self._log_delivery(item, message, outcome)

        if not outcome.success:
            kind = (
                ErrorKind.RATE_LIMITED
                if outcome.error.startswith(RATE_LIMITED_ERROR)
                else ErrorKind.NOTIFICATION_FAILED
            )
            logger.warning(
                "Tracker %d: notification failed (%s), state unchanged",
                item.id,
                outcome.error,
            )
            return self._fail(result, item, kind, outcome.error)

        try:
            await asyncio.to_thread(
                self.repository.update_alert_state,
                item.id,
                last_alert_sent_at=now,
                last_alert_price=snapshot.current_price,
                expected_version=item.version,
            )
        except ConcurrencyError as exc:
            logger.warning(
                "Tracker %d: alert sent but state write lost, %s",
                item.id,
                exc,
            )
            result.conflicts += 1
            return ItemState.IDLE
        except Exception as exc:
            logger.error(
                "Tracker %d: alert sent but state write failed",
                item.id,
                exc_info=True,
            )
            return self._fail(
                result, item, ErrorKind.REPOSITORY_ERROR, str(exc),
            )

        result.alerts_sent += 1
        return ItemState.UPDATED

    async def _log_delivery(
        self,
        item: TrackedItem,
        message: AlertMessage,
        outcome: NotificationResult,
    ) -> None:
        record = DeliveryRecord(
            item_id=item.id,
            recipient=message.recipient,
            subject=render_price_drop(message).subject,
            status="sent" if outcome.success else "failed",
            provider=outcome.provider,
            provider_message_id=outcome.provider_message_id,
            error=outcome.error,
        )
        try:
            await asyncio.to_thread(self.repository.log_delivery, record)
        except Exception as exc:
            logger.error(
                "Tracker %d: delivery log write failed: %s", item.id, exc,
            )
