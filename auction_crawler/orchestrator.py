"""
Sweep Orchestrator
==================
Composes the planner, capture, challenge handling, pagination and the
progress cursor into one resumable sweep over the target list.

Flow per run:
  1. Read the cursor once.
  2. For each target to process this run:
       a. advance the cursor (durably), then start the target
       b. plan: probe candidate ranges, each in its own session
       c. sweep: every leaf range in its own session with a fresh capture,
          navigate, challenge guard, paginate until exhausted
       d. hand each ``PartitionResult`` and a manifest to the store
  3. Per-range failures are logged and recorded as warnings; only cursor
     and configuration failures abort the run.

Navigations are paced with a jittered delay (disable with
``pacing=False``).  Ranges are processed sequentially.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from .capture import ResponseCapture
from .challenge import ChallengeDetector, ChallengeResolver, ChallengeState
from .cursor import ProgressCursor
from .errors import (
    CaptureEmpty,
    ChallengeUnresolved,
    CursorPersistenceFailure,
    NavigationTimeout,
    PaginationExhausted,
    RangeFailure,
)
from .monitor import SweepMetrics, SweepMonitor
from .pagination import Paginator, default_strategies
from .planner import PartitionPlanner
from .ranges import PriceRange, Target, build_query_url
from .run_config import CrawlerRunConfig
from .session import SessionProvider, session_scope
from .storage import ArtifactStore, PartitionResult
from .utils import format_kb, jittered_delay, make_run_id

logger = logging.getLogger(__name__)

_RETRYABLE = (NavigationTimeout, ChallengeUnresolved)


class SweepOrchestrator:
    """
    Resumable multi-target sweep.

    Usage::

        orchestrator = SweepOrchestrator(config, provider, store, targets)
        metrics = await orchestrator.run()
    """

    def __init__(
        self,
        config: CrawlerRunConfig,
        provider: SessionProvider,
        store: ArtifactStore,
        targets: Sequence[Target],
        *,
        monitor: Optional[SweepMonitor] = None,
        run_id: Optional[str] = None,
        max_retries_per_range: int = 1,
    ):
        self.config = config
        self.provider = provider
        self.store = store
        self.targets = list(targets)
        self.monitor = monitor or SweepMonitor()
        self.run_id = run_id or make_run_id()
        self.max_retries_per_range = max_retries_per_range
        self.cursor = ProgressCursor(store)
        self.detector = ChallengeDetector(
            config.challenge_phrases, config.challenge_selectors,
        )
        self.processed: List[Target] = []
        self._stop_requested = False
        self._navigations = 0

    def stop(self) -> None:
        """Request graceful stop (checked between probes and ranges)."""
        self._stop_requested = True
        logger.info("Stop requested")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> SweepMetrics:
        """Process the next target(s) from the cursor position."""
        await self.monitor.start()
        stop_reason = "completed"

        # Fatal before any target processing if the cursor is unreadable
        index = self.cursor.read()
        self.monitor.cursor_start = self.monitor.cursor_end = index

        logger.info("=" * 65)
        logger.info("SWEEP STARTED")
        logger.info(f"Run ID: {self.run_id}")
        logger.info(f"Targets: {len(self.targets)} (cursor at {index})")
        logger.info("=" * 65)

        await self.provider.start()
        try:
            budget = self.config.targets_per_run
            while True:
                if self._stop_requested:
                    stop_reason = "stop requested"
                    break
                if index >= len(self.targets):
                    stop_reason = "target list exhausted"
                    logger.info(f"[SWEEP] Cursor {index} is past the last target — nothing to do")
                    break
                if budget and len(self.processed) >= budget:
                    break

                target = self.targets[index]
                # Persist first: a crash below skips this target, never repeats it
                index = self.cursor.advance(index)
                self.monitor.cursor_end = index
                self.processed.append(target)
                await self.process_target(target)

        except CursorPersistenceFailure as e:
            stop_reason = f"cursor failure: {e}"
            logger.error(f"[CURSOR] {e}")
            raise
        except asyncio.CancelledError:
            stop_reason = "cancelled"
            logger.warning("[SWEEP] Run cancelled")
            raise
        finally:
            await self.monitor.stop(stop_reason)
            try:
                await self.provider.stop()
            except Exception as e:
                logger.error(f"Error closing session provider: {e}")

        return await self.monitor.snapshot()

    # ------------------------------------------------------------------
    # Target
    # ------------------------------------------------------------------

    async def process_target(self, target: Target) -> List[PartitionResult]:
        """Plan and sweep one target."""
        await self.monitor.incr('targets_started')
        logger.info(f"[SWEEP] Target: {target.name} ({target.expected_count} expected items)")

        planner = PartitionPlanner(
            self.config, self.probe, should_stop=lambda: self._stop_requested,
        )
        leaves = await planner.plan(target)
        report = planner.last_report

        await self.monitor.incr('probes', report.probes)
        await self.monitor.incr('probe_failures', len(report.failures))
        await self.monitor.incr('leaf_ranges', len(leaves))
        for rng, reason in report.failures:
            await self.monitor.warn(f"{target.name} {rng}: probe failed ({reason}); kept coarse")
        for message in report.warnings:
            await self.monitor.warn(f"{target.name}: {message}")

        manifest = {
            'searchId': self.run_id,
            'target': target.to_dict(),
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'plan': {
                'seeds': [r.to_dict() for r in report.seeds],
                'probes': report.probes,
                'splits': report.splits,
                'failures': [
                    {'range': r.to_dict(), 'error': reason} for r, reason in report.failures
                ],
            },
            'ranges': [],
        }

        results: List[PartitionResult] = []
        for i, rng in enumerate(leaves):
            if self._stop_requested:
                await self.monitor.warn(
                    f"{target.name}: stopped with {len(leaves) - i} range(s) not swept"
                )
                break
            entry = {'range': rng.to_dict(), 'label': rng.label}
            try:
                result = await self._sweep_with_retry(target, rng)
            except RangeFailure as e:
                await self.monitor.incr('ranges_failed')
                await self.monitor.warn(f"{target.name} {rng}: {type(e).__name__}: {e}")
                entry.update(status='failed', error=f"{type(e).__name__}: {e}")
                manifest['ranges'].append(entry)
                continue

            keys = self.store.save_partition(result, self.run_id)
            await self.monitor.incr('ranges_swept')
            await self.monitor.incr('payloads_saved', len(keys))
            await self.monitor.incr('total_bytes', result.total_bytes)
            entry.update(status='ok', payloads=len(keys), bytes=result.total_bytes, files=keys)
            manifest['ranges'].append(entry)
            results.append(result)

        self.store.save_manifest(target, self.run_id, manifest)
        await self.monitor.incr('targets_completed')
        logger.info(
            f"[SWEEP] {target.name} done: {len(results)}/{len(leaves)} ranges, "
            f"{sum(len(r.payloads) for r in results)} payloads"
        )
        return results

    # ------------------------------------------------------------------
    # Probe (planner oracle)
    # ------------------------------------------------------------------

    async def probe(self, target: Target, rng: PriceRange) -> int:
        """Size in bytes of the first qualifying response for *rng*."""
        url = self.query_url(target, rng)
        await self._pace()
        logger.info(f"[PROBE] {target.name} {rng}")
        async with session_scope(self.provider, f"probe-{target.name}-{rng.label}") as handle:
            capture = self._new_capture()
            self.provider.on_response(handle, capture.observe)
            await self.provider.navigate(
                handle, url, timeout_ms=self.config.navigation_timeout_ms,
            )
            await self._guard(handle, url, target, f"probe-{rng.label}")
            size = await capture.wait_for_first(self.config.first_response_timeout_s)
            if size is None:
                if capture.ignored_small:
                    # Only placeholder-sized responses: a near-empty bucket
                    return 0
                raise CaptureEmpty(f"no search response observed for {rng}")
            return size

    # ------------------------------------------------------------------
    # Range sweep
    # ------------------------------------------------------------------

    async def _sweep_with_retry(self, target: Target, rng: PriceRange) -> PartitionResult:
        attempt = 0
        while True:
            try:
                return await self.sweep_range(target, rng)
            except _RETRYABLE as e:
                if attempt >= self.max_retries_per_range or self._stop_requested:
                    raise
                attempt += 1
                logger.info(
                    f"[RETRY] {target.name} {rng} after {type(e).__name__} — "
                    f"attempt {attempt}/{self.max_retries_per_range}"
                )

    async def sweep_range(self, target: Target, rng: PriceRange) -> PartitionResult:
        """Load every result page of *rng* and return its unique payloads."""
        url = self.query_url(target, rng)
        await self._pace()
        logger.info(f"[SWEEP] {target.name} {rng}")
        async with session_scope(self.provider, f"sweep-{target.name}-{rng.label}") as handle:
            capture = self._new_capture()
            self.provider.on_response(handle, capture.observe)
            await self.provider.navigate(
                handle, url, timeout_ms=self.config.navigation_timeout_ms,
            )
            await self._guard(handle, url, target, rng.label)

            size = await capture.wait_for_first(self.config.first_response_timeout_s)
            if size is None:
                if capture.ignored_small:
                    logger.info(f"[SWEEP] {rng}: empty bucket")
                    return PartitionResult(target=target, range=rng, payloads=[])
                raise CaptureEmpty(f"no search response observed for {rng}")

            paginator = Paginator(
                self.provider,
                capture.matches,
                strategies=default_strategies(self.config.load_more_selector),
                timeout_ms=self.config.pagination_timeout_ms,
            )
            pages = 1
            limit_hit = False
            try:
                while not self._stop_requested:
                    if pages >= self.config.max_pages_per_range:
                        # A one-page limit turns pagination off
                        limit_hit = pages > 1
                        break
                    await paginator.advance(handle)
                    pages += 1
            except PaginationExhausted:
                logger.debug(f"[SWEEP] {rng}: listing exhausted after {pages} page(s)")
            if limit_hit:
                await self.monitor.warn(
                    f"{target.name} {rng}: page limit ({self.config.max_pages_per_range}) reached"
                )

            # Let in-flight response listeners finish reading bodies
            if self.config.settle_s > 0:
                await asyncio.sleep(self.config.settle_s)

            await self.monitor.incr('pages_loaded', pages)
            await self.monitor.incr('duplicates_dropped', capture.duplicates)
            payloads = capture.unique_payloads()
            logger.info(
                f"[SWEEP] {rng}: {pages} page(s), {len(payloads)} unique payload(s), "
                f"first {format_kb(size)}"
            )
            return PartitionResult(target=target, range=rng, payloads=payloads)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def query_url(self, target: Target, rng: PriceRange) -> str:
        return build_query_url(
            self.config.search_url,
            rng,
            fixed_params=self.config.fixed_params,
            target_params={self.config.target_param: target.name},
            min_key=self.config.min_param,
            max_key=self.config.max_param,
        )

    def _new_capture(self) -> ResponseCapture:
        return ResponseCapture(
            url_pattern=self.config.response_url_pattern,
            min_bytes=self.config.capture_min_bytes,
        )

    async def _pace(self) -> None:
        """Jittered delay before every navigation except the first."""
        if self._navigations and self.config.pacing:
            delay = jittered_delay(self.config.pace_min_s, self.config.pace_max_s)
            logger.debug(f"[SWEEP] Pacing {delay:.1f}s before next navigation")
            await asyncio.sleep(delay)
        self._navigations += 1

    async def _guard(self, handle: Any, url: str, target: Target, label: str) -> ChallengeState:
        """Fresh challenge state machine for this navigation."""
        async def save_page(html: str) -> None:
            if self.config.save_challenge_html:
                self.store.save_challenge_page(target, self.run_id, label, html)

        resolver = ChallengeResolver(
            self.provider,
            self.detector,
            timeout_s=self.config.challenge_timeout_s,
            poll_interval_s=self.config.challenge_poll_s,
            settle_s=self.config.settle_s,
            navigation_timeout_ms=self.config.navigation_timeout_ms,
            on_detected=save_page,
        )
        try:
            return await resolver.guard(handle, url)
        finally:
            if ChallengeState.DETECTED in resolver.history:
                await self.monitor.incr('challenges_detected')
            if resolver.state is ChallengeState.CLEARED:
                await self.monitor.incr('challenges_cleared')
            elif resolver.state is ChallengeState.FAILED:
                await self.monitor.incr('challenges_failed')
