# tests/test_cli_runner.py

"""Tests for the headless CLI commands."""

import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, patch

from bytsave.cli import runner
from bytsave.models.snapshot import ProductSnapshot
from bytsave.models.tracked_item import AlertMode
from bytsave.notify.base import NotificationResult, Notifier
from bytsave.notify.rate_limit import RateLimitedNotifier
from bytsave.storage.tracker_db import COOLDOWN_CONFIG_KEY, TrackerDB


class _CliTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.tmp_dir) / "cli.db"

    def _db(self) -> TrackerDB:
        return TrackerDB(db_path=self.db_path)


class TestTrackCommands(_CliTestCase):
    """track / untrack / list / set-cooldown."""

    def test_track_fixed_price_from_url(self) -> None:
        code = runner.run_track(
            "https://www.amazon.com/Sony/dp/B0BXYCS74H?th=1",
            "buyer@example.com",
            target="299.99",
            percent=None,
            cooldown_hours=None,
            db_path=self.db_path,
        )
        self.assertEqual(code, 0)
        db = self._db()
        try:
            (item,) = db.list_trackers()
        finally:
            db.close()
        self.assertEqual(item.identifier, "B0BXYCS74H")
        self.assertIs(item.alert_mode, AlertMode.FIXED_PRICE)
        self.assertEqual(item.target_price, Decimal("299.99"))

    def test_track_percentage(self) -> None:
        code = runner.run_track(
            "B0BXYCS74H", "a@example.com",
            target=None, percent="15", cooldown_hours=12,
            db_path=self.db_path,
        )
        self.assertEqual(code, 0)
        db = self._db()
        try:
            (item,) = db.list_trackers()
        finally:
            db.close()
        self.assertEqual(item.percentage_threshold, Decimal("15"))
        self.assertEqual(item.cooldown_hours, 12)

    def test_track_rejects_bad_input(self) -> None:
        self.assertEqual(
            runner.run_track(
                "https://www.amazon.com/s?k=tv", "a@example.com",
                target="10", percent=None, cooldown_hours=None,
                db_path=self.db_path,
            ),
            1,
        )
        self.assertEqual(
            runner.run_track(
                "B0BXYCS74H", "a@example.com",
                target="10", percent="5", cooldown_hours=None,
                db_path=self.db_path,
            ),
            1,
        )
        self.assertEqual(
            runner.run_track(
                "B0BXYCS74H", "a@example.com",
                target=None, percent="150", cooldown_hours=None,
                db_path=self.db_path,
            ),
            1,
        )

    def test_track_unparseable_price_exits(self) -> None:
        with self.assertRaises(SystemExit):
            runner.run_track(
                "B0BXYCS74H", "a@example.com",
                target="cheap", percent=None, cooldown_hours=None,
                db_path=self.db_path,
            )

    def test_untrack(self) -> None:
        db = self._db()
        try:
            item = db.add_tracker(
                "a@example.com", "B0BXYCS74H", AlertMode.FIXED_PRICE,
                target_price=Decimal("10"),
            )
        finally:
            db.close()
        self.assertEqual(runner.run_untrack(item.id, self.db_path), 0)
        self.assertEqual(runner.run_untrack(item.id, self.db_path), 1)

    def test_list_and_logs_render(self) -> None:
        db = self._db()
        try:
            db.add_tracker(
                "a@example.com", "B0BXYCS74H", AlertMode.FIXED_PRICE,
                target_price=Decimal("10"),
            )
        finally:
            db.close()
        self.assertEqual(runner.run_list(self.db_path), 0)
        self.assertEqual(runner.run_logs(5, self.db_path), 0)

    def test_set_and_clear_cooldown(self) -> None:
        self.assertEqual(runner.run_set_cooldown(72, self.db_path), 0)
        db = self._db()
        try:
            self.assertEqual(db.get_cooldown_override(), 72)
        finally:
            db.close()

        self.assertEqual(runner.run_set_cooldown(0, self.db_path), 0)
        db = self._db()
        try:
            self.assertIsNone(db.get_config(COOLDOWN_CONFIG_KEY))
        finally:
            db.close()

        self.assertEqual(runner.run_set_cooldown(-1, self.db_path), 1)


class TestRunOnce(unittest.IsolatedAsyncioTestCase):
    """Offline alert run through the real SQLite store."""

    def setUp(self) -> None:
        self.tmp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.tmp_dir) / "cli.db"

    def _db(self) -> TrackerDB:
        return TrackerDB(db_path=self.db_path)

    async def test_offline_run_sends_and_logs(self) -> None:
        db = self._db()
        try:
            db.add_tracker(
                "a@example.com", "B0BXYCS74H", AlertMode.FIXED_PRICE,
                target_price=Decimal("300"),
            )
            db.save_snapshot(ProductSnapshot(
                identifier="B0BXYCS74H",
                current_price=Decimal("279.00"),
                title="Headphones",
            ))
        finally:
            db.close()

        notifier = MagicMock(spec=Notifier)
        notifier.send_price_drop_alert.return_value = NotificationResult(
            success=True, provider_message_id="m-1", provider="test",
        )
        with patch.object(runner, "build_notifier", return_value=notifier):
            code = await runner.run_once(db_path=self.db_path, offline=True)

        self.assertEqual(code, 0)
        notifier.send_price_drop_alert.assert_called_once()
        db = self._db()
        try:
            (item,) = db.list_trackers()
            (record,) = db.recent_deliveries()
        finally:
            db.close()
        self.assertEqual(item.last_alert_price, Decimal("279.00"))
        self.assertEqual(record.status, "sent")
        self.assertEqual(record.provider_message_id, "m-1")

    async def test_missing_snapshot_exit_code(self) -> None:
        db = self._db()
        try:
            db.add_tracker(
                "a@example.com", "B0BXYCS74H", AlertMode.FIXED_PRICE,
                target_price=Decimal("300"),
            )
        finally:
            db.close()
        with patch.object(
            runner, "build_notifier", return_value=MagicMock(spec=Notifier),
        ):
            code = await runner.run_once(db_path=self.db_path, offline=True)
        self.assertEqual(code, 1)


class TestBuildNotifier(unittest.TestCase):
    """Transport wiring."""

    def test_rate_limited_wrapper(self) -> None:
        with patch.object(runner.Settings, "SMTP_HOST", "smtp.example.com"):
            notifier = runner.build_notifier()
        self.assertIsInstance(notifier, RateLimitedNotifier)
        names = [n.name for n in notifier.inner.notifiers]  # type: ignore[attr-defined]
        self.assertEqual(names, ["sendgrid", "smtp"])


if __name__ == "__main__":
    unittest.main()
