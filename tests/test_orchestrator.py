"""
Tests for orchestrator.py against the simulated catalog.

Pacing is disabled and all waits are shortened; the simulated catalog
answers every range query with pre-built result batches.
"""

import asyncio
import json

import pytest

from auction_crawler import orchestrator as orchestrator_module
from auction_crawler.errors import CursorPersistenceFailure, NavigationFailed
from auction_crawler.monitor import SweepMonitor
from auction_crawler.orchestrator import SweepOrchestrator
from auction_crawler.ranges import PriceRange, Target, check_tiling
from auction_crawler.run_config import CrawlerRunConfig
from auction_crawler.storage import MemoryArtifactStore

from fakes import FailingCursorStore, FakeSessionProvider, body_of_size

RUN_ID = "test-run"


def make_config(**overrides):
    options = dict(
        pacing=False,
        settle_s=0,
        first_response_timeout_s=0.05,
        challenge_timeout_s=0.05,
        challenge_poll_s=0.005,
        capture_min_bytes=10,
        noise_floor_bytes=100,
        max_payload_bytes=1000,
        targets_per_run=0,
    )
    options.update(overrides)
    return CrawlerRunConfig(**options).validate()


# HouseA: the open seed is oversized and splits once; [250, 500] has three
# result pages, one of them delivered twice.
HOUSE_A = {
    PriceRange(250, 500): [
        body_of_size(500, "250-500 p1"),
        body_of_size(400, "250-500 p2"),
        body_of_size(400, "250-500 p2"),
        body_of_size(300, "250-500 p3"),
    ],
    PriceRange(500, 2000): [body_of_size(800, "500-2000 p1")],
    PriceRange(2000): [body_of_size(5000, "2000-plus p1")],
    PriceRange(2000, 4000): [body_of_size(600, "2000-4000 p1"), body_of_size(600, "2000-4000 p2")],
    PriceRange(4000): [body_of_size(50, "4000-plus p1")],
}


def house_a_catalog(rng):
    return HOUSE_A.get(rng, [])


def uniform_catalog(rng):
    return [body_of_size(50, rng.label)]


def _run(orchestrator):
    return asyncio.run(orchestrator.run())


# ====================================================================
# End-to-end sweep
# ====================================================================

class TestEndToEnd:

    def _sweep(self):
        provider = FakeSessionProvider(house_a_catalog)
        store = MemoryArtifactStore()
        orch = SweepOrchestrator(
            make_config(), provider, store, [Target("HouseA", 800, "Furniture")], run_id=RUN_ID,
        )
        return orch, provider, store, _run(orch)

    def test_metrics(self):
        _, _, _, metrics = self._sweep()
        assert metrics.targets_completed == 1
        assert metrics.probes == 5
        assert metrics.leaf_ranges == 4
        assert metrics.ranges_swept == 4
        assert metrics.ranges_failed == 0
        assert metrics.duplicates_dropped == 1
        assert metrics.payloads_saved == 3 + 1 + 2 + 1
        assert metrics.stop_reason == "target list exhausted"
        assert not metrics.degraded

    def test_payloads_stored_per_leaf(self):
        _, _, store, _ = self._sweep()
        prefix = "Furniture/HouseA"
        assert sorted(k for k in store.artifacts if "-response" in k) == sorted([
            f"{prefix}/250-500/{RUN_ID}-response1.json",
            f"{prefix}/250-500/{RUN_ID}-response2.json",
            f"{prefix}/250-500/{RUN_ID}-response3.json",
            f"{prefix}/500-2000/{RUN_ID}-response1.json",
            f"{prefix}/2000-4000/{RUN_ID}-response1.json",
            f"{prefix}/2000-4000/{RUN_ID}-response2.json",
            f"{prefix}/4000-plus/{RUN_ID}-response1.json",
        ])
        data = store.artifacts[f"{prefix}/250-500/{RUN_ID}-response3.json"][0]
        assert data == HOUSE_A[PriceRange(250, 500)][3].encode()

    def test_manifest(self):
        _, _, store, _ = self._sweep()
        manifest = json.loads(store.artifacts[f"Furniture/HouseA/metadata/{RUN_ID}.json"][0])
        assert manifest["searchId"] == RUN_ID
        assert manifest["target"]["name"] == "HouseA"
        leaves = [PriceRange(r["range"]["min"], r["range"]["max"]) for r in manifest["ranges"]]
        assert check_tiling(leaves, 250)
        assert len(leaves) == 4
        assert all(r["status"] == "ok" for r in manifest["ranges"])
        assert manifest["plan"]["probes"] == 5

    def test_sessions_isolated_and_released(self):
        _, provider, _, _ = self._sweep()
        # one session per probe and one per leaf sweep
        assert len(provider.sessions) == 5 + 4
        assert provider.open_sessions == []
        assert provider.started and provider.stopped

    def test_cursor_advanced_once(self):
        _, _, store, metrics = self._sweep()
        assert store.cursor_writes == [1]
        assert (metrics.cursor_start, metrics.cursor_end) == (0, 1)


# ====================================================================
# Cursor semantics
# ====================================================================

class TestCursor:

    TARGETS = [Target("HouseA", 100), Target("HouseB", 100), Target("HouseC", 100)]

    def test_targets_per_run(self):
        store = MemoryArtifactStore()
        orch = SweepOrchestrator(
            make_config(targets_per_run=1), FakeSessionProvider(uniform_catalog), store, self.TARGETS,
        )
        metrics = _run(orch)
        assert orch.processed == [self.TARGETS[0]]
        assert store.cursor == 1
        assert metrics.stop_reason == "completed"

    def test_resumes_from_cursor(self):
        store = MemoryArtifactStore(cursor=1)
        orch = SweepOrchestrator(make_config(), FakeSessionProvider(uniform_catalog), store, self.TARGETS)
        _run(orch)
        assert orch.processed == self.TARGETS[1:]
        assert store.cursor_writes == [2, 3]

    def test_crash_mid_target_skips_it_on_restart(self):
        class CrashingProvider(FakeSessionProvider):
            async def open_session(self, name):
                raise RuntimeError("browser process died")

        store = MemoryArtifactStore()
        with pytest.raises(RuntimeError):
            _run(SweepOrchestrator(make_config(), CrashingProvider(uniform_catalog), store, self.TARGETS))
        assert store.cursor == 1

        orch = SweepOrchestrator(
            make_config(targets_per_run=1), FakeSessionProvider(uniform_catalog), store, self.TARGETS,
        )
        _run(orch)
        assert orch.processed == [self.TARGETS[1]]

    def test_past_end_of_list(self):
        store = MemoryArtifactStore(cursor=3)
        provider = FakeSessionProvider(uniform_catalog)
        metrics = _run(SweepOrchestrator(make_config(), provider, store, self.TARGETS))
        assert metrics.stop_reason == "target list exhausted"
        assert store.cursor_writes == []
        assert provider.sessions == []

    def test_cursor_failure_aborts_before_processing(self):
        provider = FakeSessionProvider(uniform_catalog)
        with pytest.raises(CursorPersistenceFailure):
            _run(SweepOrchestrator(make_config(), provider, FailingCursorStore(), self.TARGETS))
        assert provider.sessions == []
        assert provider.stopped


# ====================================================================
# Degraded coverage
# ====================================================================

class TestDegradedCoverage:

    def test_failing_range_kept_and_reported(self):
        bad = PriceRange(500, 2000)
        provider = FakeSessionProvider(uniform_catalog, fail_ranges=[bad])
        store = MemoryArtifactStore()
        orch = SweepOrchestrator(make_config(), provider, store, [Target("HouseA", 800)], run_id=RUN_ID)
        metrics = _run(orch)

        assert metrics.probe_failures == 1
        assert metrics.ranges_failed == 1
        assert metrics.ranges_swept == 2
        assert metrics.targets_completed == 1
        assert metrics.degraded
        # probe, sweep, one retry
        assert sum(1 for url in provider.navigations if "priceResult%5Bmax%5D=2000" in url) == 3
        manifest = json.loads(store.artifacts[f"uncategorized/HouseA/metadata/{RUN_ID}.json"][0])
        failed = [r for r in manifest["ranges"] if r["status"] == "failed"]
        assert [r["label"] for r in failed] == ["500-2000"]
        assert "NavigationTimeout" in failed[0]["error"]

    def test_no_response_is_capture_empty(self):
        provider = FakeSessionProvider(lambda rng: [] if rng.is_open else [body_of_size(50)])
        orch = SweepOrchestrator(make_config(), provider, MemoryArtifactStore(), [Target("HouseA", 800)])
        metrics = _run(orch)
        assert metrics.probe_failures == 1
        assert metrics.ranges_failed == 1
        assert any("CaptureEmpty" in w for w in metrics.warnings)

    def test_placeholder_only_range_is_empty_bucket(self):
        provider = FakeSessionProvider(lambda rng: [body_of_size(5)])  # 19-byte bodies
        store = MemoryArtifactStore()
        orch = SweepOrchestrator(make_config(capture_min_bytes=100), provider, store, [Target("HouseA", 800)])
        metrics = _run(orch)
        assert metrics.probe_failures == 0
        assert metrics.ranges_swept == 3
        assert metrics.payloads_saved == 0

    def test_page_limit(self):
        bodies = [body_of_size(50, f"p{i}") for i in range(10)]
        provider = FakeSessionProvider(lambda rng: bodies)
        orch = SweepOrchestrator(
            make_config(max_pages_per_range=4), provider, MemoryArtifactStore(), [Target("HouseA", 800)],
        )
        metrics = _run(orch)
        assert metrics.pages_loaded == 3 * 4
        assert metrics.payloads_saved == 3 * 4
        assert any("page limit" in w for w in metrics.warnings)

    @pytest.mark.parametrize("max_pages, listing_pages", [(1, 1), (3, 2), (5, 4)])
    def test_no_page_limit_warning_for_complete_listing(self, max_pages, listing_pages):
        bodies = [body_of_size(50, f"p{i}") for i in range(listing_pages)]
        provider = FakeSessionProvider(lambda rng: bodies)
        orch = SweepOrchestrator(
            make_config(max_pages_per_range=max_pages), provider, MemoryArtifactStore(),
            [Target("HouseA", 800)],
        )
        metrics = _run(orch)
        assert metrics.pages_loaded == 3 * listing_pages
        assert not any("page limit" in w for w in metrics.warnings)

    def test_session_open_failure_does_not_end_run(self):
        class FlakyBrowserProvider(FakeSessionProvider):
            async def open_session(self, name):
                self.opens = getattr(self, "opens", 0) + 1
                if self.opens == 2:
                    raise NavigationFailed(
                        f"could not open session {name}: "
                        "Target page, context or browser has been closed"
                    )
                return await super().open_session(name)

        targets = [Target("HouseA", 800), Target("HouseB", 800)]
        store = MemoryArtifactStore()
        orch = SweepOrchestrator(make_config(), FlakyBrowserProvider(uniform_catalog), store, targets)
        metrics = _run(orch)

        assert orch.processed == targets
        assert metrics.targets_completed == 2
        assert metrics.probe_failures == 1
        assert metrics.ranges_swept == 6
        assert metrics.stop_reason == "target list exhausted"
        assert store.cursor == 2


# ====================================================================
# Challenges
# ====================================================================

class TestChallenges:

    def test_cleared_challenge_saves_page_and_continues(self):
        provider = FakeSessionProvider(uniform_catalog, challenge_on=1, challenge_clears_after=1)
        store = MemoryArtifactStore()
        orch = SweepOrchestrator(make_config(), provider, store, [Target("HouseA", 800)], run_id=RUN_ID)
        metrics = _run(orch)

        assert metrics.challenges_detected == 1
        assert metrics.challenges_cleared == 1
        assert metrics.probe_failures == 0
        assert f"uncategorized/HouseA/challenges/{RUN_ID}-probe-250-500.html" in store.artifacts

    def test_unresolved_challenge_degrades_probe(self):
        provider = FakeSessionProvider(uniform_catalog, challenge_on=1, challenge_clears_after=None)
        orch = SweepOrchestrator(make_config(), provider, MemoryArtifactStore(), [Target("HouseA", 800)])
        metrics = _run(orch)

        assert metrics.challenges_failed == 1
        assert metrics.probe_failures == 1
        assert metrics.ranges_swept == 3
        assert metrics.degraded

    def test_challenge_page_not_saved_when_disabled(self):
        provider = FakeSessionProvider(uniform_catalog, challenge_on=1, challenge_clears_after=1)
        store = MemoryArtifactStore()
        orch = SweepOrchestrator(
            make_config(save_challenge_html=False), provider, store, [Target("HouseA", 800)],
        )
        _run(orch)
        assert not any("/challenges/" in key for key in store.artifacts)


# ====================================================================
# Pacing, stop and cancellation
# ====================================================================

class TestRunControl:

    def _count_pacing(self, monkeypatch, **config):
        delays = []

        def fake_delay(lo, hi):
            delays.append((lo, hi))
            return 0

        monkeypatch.setattr(orchestrator_module, "jittered_delay", fake_delay)
        provider = FakeSessionProvider(uniform_catalog)
        orch = SweepOrchestrator(make_config(**config), provider, MemoryArtifactStore(), [Target("HouseA", 800)])
        _run(orch)
        return delays, provider

    def test_pacing_between_navigations(self, monkeypatch):
        delays, provider = self._count_pacing(monkeypatch, pacing=True, pace_min_s=20, pace_max_s=30)
        assert len(provider.navigations) == 6
        assert delays == [(20, 30)] * 5

    def test_pacing_can_be_disabled(self, monkeypatch):
        delays, _ = self._count_pacing(monkeypatch, pacing=False)
        assert delays == []

    def test_stop_before_run(self):
        provider = FakeSessionProvider(uniform_catalog)
        orch = SweepOrchestrator(make_config(), provider, MemoryArtifactStore(), [Target("HouseA", 800)])
        orch.stop()
        metrics = _run(orch)
        assert metrics.stop_reason == "stop requested"
        assert orch.processed == []

    def test_cancellation_releases_sessions(self):
        class HangingProvider(FakeSessionProvider):
            async def navigate(self, handle, url, **kwargs):
                self.navigations.append(url)
                await asyncio.sleep(3600)

        provider = HangingProvider(uniform_catalog)
        monitor = SweepMonitor()
        orch = SweepOrchestrator(
            make_config(), provider, MemoryArtifactStore(), [Target("HouseA", 800)], monitor=monitor,
        )

        async def scenario():
            task = asyncio.create_task(orch.run())
            for _ in range(100):
                if provider.navigations:
                    break
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return await monitor.snapshot()

        metrics = asyncio.run(scenario())
        assert len(provider.sessions) == 1
        assert provider.open_sessions == []
        assert provider.stopped
        assert metrics.stop_reason == "cancelled"
