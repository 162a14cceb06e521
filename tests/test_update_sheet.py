"""
Workflow tests: per-network isolation, the row/no-row rule, whole-run retry,
throttling and the wall-clock timeout.
"""
import asyncio
import os
import sys
import unittest
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeWriter

import update_sheet
from config import Settings
from networks import NETWORKS
from scrape_telemetry_headless import ScrapedStats
from utils import MetricFetchError, NodeCountMissing, RunTimeout, SheetWriteFailed, UpdateFailed

FULL = ScrapedStats(42, 30, 12, 20, 15, 7)


def make_settings(**overrides):
    values = dict(
        client_email="bot@example.iam.gserviceaccount.com",
        private_key="key",
        spreadsheet_id="sheet",
        attempts=1,
        retry_delay=0,
    )
    values.update(overrides)
    return Settings(**values)


class FakeSession:
    def __init__(self):
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def __call__(self, headless=True):
        self.opened += 1
        try:
            yield object()
        finally:
            self.closed += 1


@asynccontextmanager
async def fake_open_page(browser):
    yield object()


class WorkflowTestCase(unittest.IsolatedAsyncioTestCase):
    """Patches the browser, scraper and metric fetcher at update_sheet's seams."""

    def setUp(self):
        self.session = FakeSession()
        self.scrapes = {}
        self.scrape_calls = []
        self.pledged = AsyncMock(return_value=10**15)

        async def fake_scrape(page, target, options=None):
            self.scrape_calls.append(target.name)
            result = self.scrapes.get(target.name, FULL)
            if isinstance(result, list):
                result = result.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

        for name, value in [
            ("browser_session", self.session),
            ("open_page", fake_open_page),
            ("scrape_network", fake_scrape),
            ("fetch_space_pledged", self.pledged),
            ("utc_timestamp", lambda: "2024-06-01T00:00:00.000Z"),
        ]:
            patcher = patch(f"update_sheet.{name}", value)
            patcher.start()
            self.addCleanup(patcher.stop)


# ─── process_network / run_workflow ───────────────────────────────

class TestRunWorkflow(WorkflowTestCase):

    async def test_row_shape(self):
        writer = FakeWriter()
        outcome = await update_sheet.run_workflow([NETWORKS["taurus"]], writer, make_settings())
        self.assertEqual(outcome, {"taurus": update_sheet.APPENDED})
        self.assertEqual(writer.rows, [
            ("taurus", ["2024-06-01T00:00:00.000Z", 42, str(10**15), 30, 12, 20, 15, 7]),
        ])

    async def test_missing_secondary_field_written_blank(self):
        self.scrapes["taurus"] = ScrapedStats(node_count=42, space_acres_node_count=12)
        writer = FakeWriter()
        await update_sheet.run_workflow([NETWORKS["taurus"]], writer, make_settings())
        self.assertEqual(writer.rows[0][1], ["2024-06-01T00:00:00.000Z", 42, str(10**15), "", 12, "", "", ""])

    async def test_no_row_without_node_count(self):
        self.scrapes["taurus"] = ScrapedStats(subspace_node_count=5)
        writer = FakeWriter()
        outcome = await update_sheet.run_workflow([NETWORKS["taurus"]], writer, make_settings())
        self.assertEqual(outcome, {"taurus": update_sheet.SKIPPED})
        self.assertEqual(writer.rows, [])
        self.pledged.assert_not_awaited()

    async def test_missing_node_count_can_be_fatal(self):
        self.scrapes["taurus"] = ScrapedStats()
        writer = FakeWriter()
        outcome = await update_sheet.run_workflow(
            [NETWORKS["taurus"]], writer, make_settings(require_node_count=True)
        )
        self.assertIsInstance(outcome["taurus"], NodeCountMissing)
        self.assertEqual(writer.rows, [])

    async def test_one_network_failing_does_not_block_other(self):
        self.scrapes["taurus"] = RuntimeError("page crashed")
        writer = FakeWriter()
        outcome = await update_sheet.run_workflow(
            [NETWORKS["taurus"], NETWORKS["gemini"]], writer, make_settings()
        )
        self.assertIsInstance(outcome["taurus"], RuntimeError)
        self.assertEqual(outcome["gemini"], update_sheet.APPENDED)
        self.assertEqual([r[0] for r in writer.rows], ["gemini-3h"])

    async def test_sheet_write_failure_is_per_network(self):
        writer = FakeWriter(fail_ranges={"taurus"})
        outcome = await update_sheet.run_workflow(
            [NETWORKS["taurus"], NETWORKS["gemini"]], writer, make_settings()
        )
        self.assertIsInstance(outcome["taurus"], SheetWriteFailed)
        self.assertIsInstance(outcome["taurus"].__cause__, RuntimeError)
        self.assertEqual([r[0] for r in writer.rows], ["gemini-3h"])

    async def test_browser_closed_once_per_pass(self):
        self.scrapes["taurus"] = RuntimeError("boom")
        await update_sheet.run_workflow([NETWORKS["taurus"], NETWORKS["gemini"]], FakeWriter(), make_settings())
        self.assertEqual((self.session.opened, self.session.closed), (1, 1))


# ─── throttle ─────────────────────────────────────────────────────

class TestThrottle(WorkflowTestCase):

    async def test_recent_row_skips_network(self):
        recent = datetime.now(timezone.utc) - timedelta(minutes=5)
        writer = FakeWriter(last={"taurus": recent})
        outcome = await update_sheet.run_workflow(
            [NETWORKS["taurus"]], writer, make_settings(min_update_interval=60)
        )
        self.assertEqual(outcome, {"taurus": update_sheet.THROTTLED})
        self.assertEqual(self.scrape_calls, [])

    async def test_old_row_is_updated(self):
        old = datetime.now(timezone.utc) - timedelta(hours=3)
        writer = FakeWriter(last={"taurus": old})
        outcome = await update_sheet.run_workflow(
            [NETWORKS["taurus"]], writer, make_settings(min_update_interval=60)
        )
        self.assertEqual(outcome, {"taurus": update_sheet.APPENDED})

    async def test_disabled_by_default(self):
        writer = FakeWriter(last={"taurus": datetime.now(timezone.utc)})
        self.assertFalse(await update_sheet.is_throttled(writer, NETWORKS["taurus"], 0))


# ─── run_update (retry) ───────────────────────────────────────────

class TestRunUpdate(WorkflowTestCase):

    async def test_only_failed_networks_rerun(self):
        self.scrapes["taurus"] = [RuntimeError("flaky"), FULL]
        writer = FakeWriter()
        outcome = await update_sheet.run_update(
            make_settings(attempts=3), [NETWORKS["taurus"], NETWORKS["gemini"]], writer
        )
        self.assertEqual(outcome, {"taurus": update_sheet.APPENDED, "gemini": update_sheet.APPENDED})
        self.assertEqual(sorted(self.scrape_calls), ["gemini", "taurus", "taurus"])
        self.assertEqual(sorted(r[0] for r in writer.rows), ["gemini-3h", "taurus"])
        self.assertEqual(self.session.closed, 2)

    async def test_gives_up_after_k_attempts(self):
        self.scrapes["taurus"] = RuntimeError("always broken")
        writer = FakeWriter()
        with self.assertRaises(UpdateFailed) as ctx:
            await update_sheet.run_update(make_settings(attempts=2), [NETWORKS["taurus"]], writer)
        self.assertEqual(list(ctx.exception.failed), ["taurus"])
        self.assertEqual(self.scrape_calls, ["taurus", "taurus"])
        self.assertEqual(writer.rows, [])

    async def test_metric_failure_means_no_row_and_error(self):
        self.pledged.side_effect = MetricFetchError("rpc down")
        writer = FakeWriter()
        with self.assertRaises(UpdateFailed) as ctx:
            await update_sheet.run_update(make_settings(attempts=1), [NETWORKS["gemini"]], writer)
        self.assertIsInstance(ctx.exception.failed["gemini"], MetricFetchError)
        self.assertEqual(writer.rows, [])

    async def test_failed_append_is_not_retried(self):
        writer = FakeWriter(fail_ranges={"taurus"})
        with self.assertRaises(UpdateFailed) as ctx:
            await update_sheet.run_update(make_settings(attempts=3), [NETWORKS["taurus"]], writer)
        self.assertIsInstance(ctx.exception.failed["taurus"], SheetWriteFailed)
        self.assertEqual(writer.append_calls, 1)
        self.assertEqual(self.scrape_calls, ["taurus"])
        self.assertEqual(self.session.opened, 1)

    async def test_failed_append_reported_alongside_retried_networks(self):
        self.scrapes["gemini"] = [RuntimeError("flaky"), FULL]
        writer = FakeWriter(fail_ranges={"taurus"})
        with self.assertRaises(UpdateFailed) as ctx:
            await update_sheet.run_update(
                make_settings(attempts=3), [NETWORKS["taurus"], NETWORKS["gemini"]], writer
            )
        self.assertEqual(list(ctx.exception.failed), ["taurus"])
        self.assertEqual(sorted(self.scrape_calls), ["gemini", "gemini", "taurus"])
        self.assertEqual([r[0] for r in writer.rows], ["gemini-3h"])

    async def test_failed_append_listed_when_other_network_gives_up(self):
        self.scrapes["gemini"] = RuntimeError("always broken")
        writer = FakeWriter(fail_ranges={"taurus"})
        with self.assertRaises(UpdateFailed) as ctx:
            await update_sheet.run_update(
                make_settings(attempts=2), [NETWORKS["taurus"], NETWORKS["gemini"]], writer
            )
        self.assertEqual(sorted(ctx.exception.failed), ["gemini", "taurus"])
        self.assertEqual(writer.append_calls, 1)


# ─── run_with_timeout / run_once ──────────────────────────────────

class TestTimeout(WorkflowTestCase):

    async def test_timeout_raises_and_closes_browser(self):
        async def hang(page, target, options=None):
            await asyncio.sleep(10)

        with patch("update_sheet.scrape_network", hang):
            with self.assertRaises(RunTimeout):
                await update_sheet.run_with_timeout(
                    update_sheet.run_update(make_settings(), [NETWORKS["taurus"]], FakeWriter()),
                    0.05,
                )
        self.assertEqual((self.session.opened, self.session.closed), (1, 1))

    async def test_no_timeout_when_disabled(self):
        async def value():
            return "done"

        self.assertEqual(await update_sheet.run_with_timeout(value(), 0), "done")

    async def test_run_once_uses_configured_networks(self):
        writer = FakeWriter()
        settings = make_settings(networks=["gemini"], run_timeout=5)
        outcome = await update_sheet.run_once(settings, writer)
        self.assertEqual(outcome, {"gemini": update_sheet.APPENDED})


# ─── CLI ──────────────────────────────────────────────────────────

class TestMain(unittest.TestCase):

    def test_exit_zero_on_success(self):
        with patch("update_sheet.load_settings", return_value=make_settings()), \
                patch("update_sheet.run_once", new_callable=AsyncMock, return_value={}) as run:
            self.assertEqual(update_sheet.main(["--network", "taurus", "--attempts", "2"]), 0)
        settings = run.await_args[0][0]
        self.assertEqual(settings.networks, ["taurus"])
        self.assertEqual(settings.attempts, 2)

    def test_exit_one_on_failure(self):
        with patch("update_sheet.load_settings", return_value=make_settings()), \
                patch("update_sheet.run_once", new_callable=AsyncMock, side_effect=RunTimeout("slow")):
            self.assertEqual(update_sheet.main([]), 1)

    def test_exit_one_on_unknown_network(self):
        with patch("update_sheet.load_settings", return_value=make_settings()):
            self.assertEqual(update_sheet.main(["--network", "nope"]), 1)

    def test_exit_one_when_append_fails(self):
        err = UpdateFailed({"taurus": SheetWriteFailed("taurus: append failed")})
        with patch("update_sheet.load_settings", return_value=make_settings()), \
                patch("update_sheet.run_once", new_callable=AsyncMock, side_effect=err) as run:
            self.assertEqual(update_sheet.main(["--attempts", "3"]), 1)
        run.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
