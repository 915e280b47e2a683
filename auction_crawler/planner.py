"""
Partition Planner
=================
Carves a target's price dimension into ranges whose first search response
stays under the API's undocumented size ceiling.

Algorithm:
  1. Seed ranges by the target's expected volume tier.  Seeds span from
     ``base_min`` to a tier ceiling; the last seed is always open-ended.
  2. Worklist refinement — one probe per candidate range:
       - width collapsed to ``min_granularity``   → leaf (no probe)
       - probe failed                             → leaf (coarse coverage)
       - size < noise floor                       → leaf (near-empty bucket)
       - size < payload ceiling and bounded       → leaf
       - bounded [lo, hi]                         → [lo, mid], [mid, hi]
       - open [lo, +inf)                          → [lo, lo*g], [lo*g, +inf)
  3. Leaves are returned sorted; together they tile ``[base_min, +inf)``.

The worklist is an explicit stack so cancellation can be checked between
probes and memory stays bounded regardless of split depth.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple

from .errors import RangeFailure
from .ranges import PriceRange, Target, tiling_gaps
from .run_config import CrawlerRunConfig
from .utils import format_kb

logger = logging.getLogger(__name__)

ProbeFn = Callable[[Target, PriceRange], Awaitable[int]]


@dataclass
class PlanReport:
    """What happened while planning one target."""
    target: Target
    seeds: List[PriceRange] = field(default_factory=list)
    leaves: List[PriceRange] = field(default_factory=list)
    probes: int = 0
    splits: int = 0
    failures: List[Tuple[PriceRange, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stopped: bool = False

    @property
    def degraded(self) -> bool:
        return bool(self.failures or self.warnings)


class PartitionPlanner:
    """
    Adaptive range partitioner.

    Usage::

        planner = PartitionPlanner(config, probe=orchestrator.probe)
        leaves = await planner.plan(target)
        report = planner.last_report
    """

    def __init__(
        self,
        config: CrawlerRunConfig,
        probe: ProbeFn,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        self.config = config
        self.probe = probe
        self.should_stop = should_stop or (lambda: False)
        self.last_report: Optional[PlanReport] = None

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_ranges(self, target: Target) -> List[PriceRange]:
        """Initial coarse ranges for *target*'s volume tier."""
        boundaries = self.config.seed_tiers[-1][1]
        for limit, tier_boundaries in self.config.seed_tiers:
            if limit is None or target.expected_count <= limit:
                boundaries = tier_boundaries
                break

        seeds = [
            PriceRange(lo, hi) for lo, hi in zip(boundaries, boundaries[1:])
        ]
        seeds.append(PriceRange(boundaries[-1], None))
        return seeds

    # ------------------------------------------------------------------
    # Single refinement step
    # ------------------------------------------------------------------

    def is_collapsed(self, rng: PriceRange) -> bool:
        return not rng.is_open and rng.width <= self.config.min_granularity

    def refine(self, rng: PriceRange, probe_size: Optional[int]) -> List[PriceRange]:
        """Split *rng* according to its probe size (None = probe failed)."""
        if self.is_collapsed(rng):
            return [rng]
        if probe_size is None:
            return [rng]
        if probe_size < self.config.noise_floor_bytes:
            return [rng]
        if probe_size < self.config.max_payload_bytes and not rng.is_open:
            return [rng]

        if rng.is_open:
            new_hi = int(rng.min * self.config.open_growth_factor)
            if new_hi <= rng.min:
                new_hi = rng.min + self.config.min_granularity
            return [PriceRange(rng.min, new_hi), PriceRange(new_hi, None)]

        mid = (rng.min + rng.max) // 2
        return [PriceRange(rng.min, mid), PriceRange(mid, rng.max)]

    # ------------------------------------------------------------------
    # Full plan
    # ------------------------------------------------------------------

    async def plan(self, target: Target) -> List[PriceRange]:
        """Probe and refine until every range is a leaf."""
        report = PlanReport(target=target)
        self.last_report = report
        report.seeds = self.seed_ranges(target)

        logger.info(
            f"[PLAN] {target.name}: expected {target.expected_count} items, "
            f"{len(report.seeds)} seed ranges"
        )

        stack: List[PriceRange] = list(reversed(report.seeds))
        leaves: List[PriceRange] = []

        while stack:
            if self.should_stop():
                report.stopped = True
                report.warnings.append(
                    f"planning stopped early; {len(stack)} range(s) kept unrefined"
                )
                leaves.extend(stack)
                break

            rng = stack.pop()

            if self.is_collapsed(rng):
                logger.debug(f"[PLAN] {rng} at minimum granularity — leaf")
                leaves.append(rng)
                continue

            if report.probes >= self.config.max_probes_per_target:
                report.warnings.append(
                    f"probe budget ({self.config.max_probes_per_target}) exhausted; "
                    f"{len(stack) + 1} range(s) kept unrefined"
                )
                logger.warning(f"[PLAN] {target.name}: {report.warnings[-1]}")
                leaves.append(rng)
                leaves.extend(stack)
                break

            report.probes += 1
            try:
                size: Optional[int] = await self.probe(target, rng)
            except RangeFailure as e:
                logger.warning(f"[PROBE] {rng} failed ({type(e).__name__}: {e}) — kept as leaf")
                report.failures.append((rng, f"{type(e).__name__}: {e}"))
                size = None

            children = self.refine(rng, size)
            if len(children) == 1:
                if size is not None:
                    logger.info(f"[PLAN] {rng} -> leaf ({format_kb(size)})")
                leaves.append(rng)
            else:
                report.splits += 1
                logger.info(
                    f"[PLAN] {rng} -> split ({format_kb(size)}): "
                    + ", ".join(str(c) for c in children)
                )
                stack.extend(reversed(children))

        leaves.sort(key=lambda r: r.min)
        report.leaves = leaves

        gaps = tiling_gaps(leaves, report.seeds[0].min)
        if gaps:
            # Unreachable unless seeds were misconfigured
            logger.error(f"[PLAN] {target.name}: tiling violated: {'; '.join(gaps)}")
            report.warnings.extend(gaps)

        logger.info(
            f"[PLAN] {target.name}: {len(leaves)} leaf ranges "
            f"({report.probes} probes, {report.splits} splits, "
            f"{len(report.failures)} failed probes)"
        )
        return leaves
