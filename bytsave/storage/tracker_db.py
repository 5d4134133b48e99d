# bytsave/storage/tracker_db.py

"""SQLite-backed tracker repository."""

import logging
import sqlite3
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from bytsave.config.settings import Settings
from bytsave.models.errors import ConcurrencyError
from bytsave.models.snapshot import ProductSnapshot
from bytsave.models.tracked_item import AlertMode, TrackedItem
from bytsave.storage.base import (
    DeliveryRecord,
    RejectedTracker,
    TrackerRepository,
)

logger = logging.getLogger("bytsave.tracker_db")

COOLDOWN_CONFIG_KEY = "cooldown_hours"

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS products (
    identifier     TEXT PRIMARY KEY,
    title          TEXT NOT NULL DEFAULT '',
    url            TEXT NOT NULL DEFAULT '',
    image_url      TEXT NOT NULL DEFAULT '',
    currency       TEXT NOT NULL DEFAULT 'USD',
    current_price  TEXT NOT NULL,
    original_price TEXT,
    highest_price  TEXT,
    fetched_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tracked_items (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    recipient            TEXT    NOT NULL,
    identifier           TEXT    NOT NULL,
    alert_mode           TEXT    NOT NULL,
    target_price         TEXT,
    percentage_threshold TEXT,
    cooldown_hours       INTEGER NOT NULL DEFAULT 48,
    last_alert_sent_at   TEXT,
    last_alert_price     TEXT,
    version              INTEGER NOT NULL DEFAULT 1,
    created_at           TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tracked_identifier
    ON tracked_items(identifier);

CREATE TABLE IF NOT EXISTS email_logs (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id             INTEGER NOT NULL,
    recipient           TEXT    NOT NULL,
    subject             TEXT    NOT NULL,
    status              TEXT    NOT NULL,
    provider            TEXT    NOT NULL DEFAULT '',
    provider_message_id TEXT    NOT NULL DEFAULT '',
    error               TEXT    NOT NULL DEFAULT '',
    created_at          TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_email_logs_created
    ON email_logs(created_at);

CREATE TABLE IF NOT EXISTS config (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS run_leases (
    name       TEXT PRIMARY KEY,
    owner      TEXT NOT NULL,
    expires_at REAL NOT NULL
);
"""

ALERT_RUN_LEASE = "alert_run"

_ITEM_COLUMNS = (
    "t.id, t.recipient, t.identifier, t.alert_mode, t.target_price, "
    "t.percentage_threshold, t.cooldown_hours, t.last_alert_sent_at, "
    "t.last_alert_price, t.version, t.created_at"
)

_PRODUCT_COLUMNS = (
    "p.identifier, p.current_price, p.original_price, p.title, p.url, "
    "p.image_url, p.currency, p.fetched_at, p.highest_price"
)

# What a malformed stored value raises on conversion
_BAD_ROW_ERRORS = (ValueError, ArithmeticError, TypeError)


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _opt_dec(value: object) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_item(row: tuple[object, ...]) -> TrackedItem:
    return TrackedItem(
        id=int(str(row[0])),
        recipient=str(row[1]),
        identifier=str(row[2]),
        alert_mode=AlertMode(str(row[3])),
        target_price=_opt_dec(row[4]),
        percentage_threshold=_opt_dec(row[5]),
        cooldown_hours=int(str(row[6])),
        last_alert_sent_at=_parse_ts(str(row[7]) if row[7] else None),
        last_alert_price=_opt_dec(row[8]),
        version=int(str(row[9])),
        created_at=_parse_ts(str(row[10])) or datetime.now(timezone.utc),
    )


def _row_to_snapshot(row: tuple[object, ...]) -> ProductSnapshot | None:
    if row[0] is None:
        return None
    try:
        return ProductSnapshot(
            identifier=str(row[0]),
            current_price=Decimal(str(row[1])),
            original_price=_opt_dec(row[2]),
            title=str(row[3]),
            url=str(row[4]),
            image_url=str(row[5]),
            currency=str(row[6]),
            fetched_at=(
                _parse_ts(str(row[7])) or datetime.now(timezone.utc)
            ),
            highest_price=_opt_dec(row[8]),
        )
    except _BAD_ROW_ERRORS as exc:
        logger.warning("Stored snapshot for %s is unusable: %s", row[0], exc)
        return None


class TrackerDB(TrackerRepository):
    """SQLite store for trackers, product snapshots and delivery logs.

    One connection is shared across worker threads; a lock serialises
    access so each conditional update is a single atomic statement.
    """

    def __init__(
        self, db_path: Path | None = None,
    ) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._migrate()
        logger.debug("TrackerDB opened at %s", path)

    def _migrate(self) -> None:
        """Add columns introduced after a database file was created."""
        columns = {
            row[1]
            for row in self._conn.execute("PRAGMA table_info(products)")
        }
        if "highest_price" not in columns:
            self._conn.execute(
                "ALTER TABLE products ADD COLUMN highest_price TEXT"
            )
            self._conn.commit()
            logger.info("Added products.highest_price column")

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # ── Trackers ─────────────────────────────────────────

    def add_tracker(
        self,
        recipient: str,
        identifier: str,
        alert_mode: AlertMode,
        target_price: Decimal | None = None,
        percentage_threshold: Decimal | None = None,
        cooldown_hours: int | None = None,
    ) -> TrackedItem:
        """Create a tracker and return it with its assigned id."""
        draft = TrackedItem(
            id=0,
            recipient=recipient,
            identifier=identifier,
            alert_mode=alert_mode,
            target_price=target_price,
            percentage_threshold=percentage_threshold,
            cooldown_hours=(
                cooldown_hours or Settings.DEFAULT_COOLDOWN_HOURS
            ),
        )
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO tracked_items (recipient, identifier, "
                "alert_mode, target_price, percentage_threshold, "
                "cooldown_hours, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    draft.recipient,
                    draft.identifier,
                    draft.alert_mode.value,
                    _dec(draft.target_price),
                    _dec(draft.percentage_threshold),
                    draft.cooldown_hours,
                    _ts(draft.created_at),
                ),
            )
            self._conn.commit()
            draft.id = int(cur.lastrowid or 0)
        logger.info(
            "Tracker %d created: %s watching %s (%s)",
            draft.id,
            recipient,
            identifier,
            draft.alert_mode.value,
        )
        return draft

    def remove_tracker(self, item_id: int) -> bool:
        """Delete a tracker. Returns False if it did not exist."""
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM tracked_items WHERE id = ?", (item_id,),
            )
            self._conn.commit()
        return cur.rowcount > 0

    def get_tracker(self, item_id: int) -> TrackedItem | None:
        """Fetch one tracker by id."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM tracked_items t "
                "WHERE t.id = ?",
                (item_id,),
            ).fetchone()
        return _row_to_item(row) if row else None

    def list_trackers(self) -> list[TrackedItem]:
        """All readable trackers, oldest first."""
        return [item for item, _ in self.list_tracked_items_with_snapshots()]

    def list_tracked_items_with_snapshots(
        self,
    ) -> list[tuple[TrackedItem, ProductSnapshot | None]]:
        """Every readable tracker with its stored snapshot.

        Rows that no longer form a valid tracker are logged and left
        out; :meth:`list_rejected_trackers` reports them.
        """
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ITEM_COLUMNS}, {_PRODUCT_COLUMNS} "
                "FROM tracked_items t "
                "LEFT JOIN products p ON p.identifier = t.identifier "
                "ORDER BY t.id",
            ).fetchall()
        pairs: list[tuple[TrackedItem, ProductSnapshot | None]] = []
        for row in rows:
            try:
                item = _row_to_item(row[:11])
            except _BAD_ROW_ERRORS as exc:
                logger.warning(
                    "Tracker %s skipped, stored row is invalid: %s",
                    row[0],
                    exc,
                )
                continue
            pairs.append((item, _row_to_snapshot(row[11:])))
        return pairs

    def list_rejected_trackers(self) -> list[RejectedTracker]:
        """Tracker rows that fail validation, with the reason."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM tracked_items t ORDER BY t.id",
            ).fetchall()
        rejected: list[RejectedTracker] = []
        for row in rows:
            try:
                _row_to_item(row)
            except _BAD_ROW_ERRORS as exc:
                rejected.append(
                    RejectedTracker(item_id=int(row[0]), reason=str(exc))
                )
        return rejected

    def update_alert_state(
        self,
        item_id: int,
        *,
        last_alert_sent_at: datetime | None,
        last_alert_price: Decimal | None,
        expected_version: int,
    ) -> int:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE tracked_items SET last_alert_sent_at = ?, "
                "last_alert_price = ?, version = version + 1 "
                "WHERE id = ? AND version = ?",
                (
                    _ts(last_alert_sent_at),
                    _dec(last_alert_price),
                    item_id,
                    expected_version,
                ),
            )
            self._conn.commit()
            if cur.rowcount == 1:
                return expected_version + 1
            row = self._conn.execute(
                "SELECT version FROM tracked_items WHERE id = ?",
                (item_id,),
            ).fetchone()
        raise ConcurrencyError(
            item_id, expected_version, int(row[0]) if row else None,
        )

    # ── Snapshots ────────────────────────────────────────

    def save_snapshot(self, snapshot: ProductSnapshot) -> None:
        """Upsert *snapshot*, keeping the highest price ever stored."""
        highest = max(
            snapshot.highest_price or snapshot.current_price,
            snapshot.current_price,
        )
        # Prices are TEXT: compare them numerically, keep the text as is
        with self._lock:
            self._conn.execute(
                "INSERT INTO products (identifier, title, url, image_url, "
                "currency, current_price, original_price, highest_price, "
                "fetched_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(identifier) DO UPDATE SET "
                "title = excluded.title, url = excluded.url, "
                "image_url = excluded.image_url, "
                "currency = excluded.currency, "
                "current_price = excluded.current_price, "
                "original_price = COALESCE(excluded.original_price, "
                "CASE WHEN CAST(products.original_price AS REAL) >= "
                "CAST(excluded.current_price AS REAL) "
                "THEN products.original_price END), "
                "highest_price = CASE WHEN CAST(COALESCE("
                "products.highest_price, products.current_price) AS REAL) "
                "> CAST(excluded.highest_price AS REAL) THEN COALESCE("
                "products.highest_price, products.current_price) "
                "ELSE excluded.highest_price END, "
                "fetched_at = excluded.fetched_at",
                (
                    snapshot.identifier,
                    snapshot.title,
                    snapshot.url,
                    snapshot.image_url,
                    snapshot.currency,
                    _dec(snapshot.current_price),
                    _dec(snapshot.original_price),
                    _dec(highest),
                    _ts(snapshot.fetched_at),
                ),
            )
            self._conn.commit()

    def get_snapshot(self, identifier: str) -> ProductSnapshot | None:
        """Latest stored snapshot for *identifier*."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products p "
                "WHERE p.identifier = ?",
                (identifier,),
            ).fetchone()
        return _row_to_snapshot(row) if row else None

    # ── Delivery log ─────────────────────────────────────

    def log_delivery(self, record: DeliveryRecord) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO email_logs (item_id, recipient, subject, "
                "status, provider, provider_message_id, error, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.item_id,
                    record.recipient,
                    record.subject,
                    record.status,
                    record.provider,
                    record.provider_message_id,
                    record.error,
                    _ts(record.created_at),
                ),
            )
            self._conn.commit()

    def recent_deliveries(self, limit: int = 20) -> list[DeliveryRecord]:
        """Most recent delivery log entries, newest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT item_id, recipient, subject, status, provider, "
                "provider_message_id, error, created_at "
                "FROM email_logs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            DeliveryRecord(
                item_id=r[0],
                recipient=r[1],
                subject=r[2],
                status=r[3],
                provider=r[4],
                provider_message_id=r[5],
                error=r[6],
                created_at=_parse_ts(r[7]) or datetime.now(timezone.utc),
            )
            for r in rows
        ]

    # ── Config ───────────────────────────────────────────

    def get_config(self, key: str) -> str | None:
        """Read a global config value."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM config WHERE key = ?", (key,),
            ).fetchone()
        return str(row[0]) if row else None

    def set_config(self, key: str, value: str) -> None:
        """Upsert a global config value."""
        with self._lock:
            self._conn.execute(
                "INSERT INTO config (key, value, updated_at) "
                "VALUES (?, ?, ?) ON CONFLICT(key) DO UPDATE SET "
                "value = excluded.value, updated_at = excluded.updated_at",
                (key, value, _ts(datetime.now(timezone.utc))),
            )
            self._conn.commit()

    def delete_config(self, key: str) -> bool:
        """Remove a global config value. Returns False if it was unset."""
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM config WHERE key = ?", (key,),
            )
            self._conn.commit()
        return cur.rowcount > 0

    def get_cooldown_override(self) -> int | None:
        raw = self.get_config(COOLDOWN_CONFIG_KEY)
        if raw is None:
            return None
        try:
            hours = int(raw)
        except ValueError:
            logger.warning("Ignoring non-integer cooldown config %r", raw)
            return None
        if hours <= 0:
            logger.warning("Ignoring non-positive cooldown config %d", hours)
            return None
        return hours

    # ── Run lease ────────────────────────────────────────

    def acquire_run_lease(
        self,
        owner: str,
        ttl_seconds: float,
        name: str = ALERT_RUN_LEASE,
    ) -> bool:
        """Claim the *name* lease for *owner* unless someone else holds it.

        Any connection to the same database file sees the lease, so it
        keeps alert runs in separate processes from overlapping.  An
        expired lease (its holder crashed) is taken over.
        """
        now = time.time()
        with self._lock:
            self._conn.execute(
                "INSERT INTO run_leases (name, owner, expires_at) "
                "VALUES (?, ?, ?) ON CONFLICT(name) DO UPDATE SET "
                "owner = excluded.owner, expires_at = excluded.expires_at "
                "WHERE run_leases.expires_at <= ?",
                (name, owner, now + ttl_seconds, now),
            )
            self._conn.commit()
            row = self._conn.execute(
                "SELECT owner FROM run_leases WHERE name = ?", (name,),
            ).fetchone()
        acquired = row is not None and row[0] == owner
        if not acquired:
            logger.info(
                "Lease %r held by %s, not acquired by %s",
                name,
                row[0] if row else None,
                owner,
            )
        return acquired

    def release_run_lease(
        self, owner: str, name: str = ALERT_RUN_LEASE,
    ) -> None:
        """Drop the *name* lease if *owner* still holds it."""
        with self._lock:
            self._conn.execute(
                "DELETE FROM run_leases WHERE name = ? AND owner = ?",
                (name, owner),
            )
            self._conn.commit()
