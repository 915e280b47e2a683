"""
Unified Run Configuration
=========================
Single source of truth for ALL sweep defaults and tunable thresholds.

Every subsystem (planner, capture, challenge handling, pagination,
orchestrator, CLI) reads from this object.  CLI flags and ``SWEEP_*``
environment variables populate it.

The size thresholds and growth factor were tuned by hand against the
catalog and are expected to move; they live here and nowhere else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults; the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    # Catalog query
    "search_url": "https://www.invaluable.com/search",
    "fixed_params": {
        "supercategoryName": "Furniture",
        "upcoming": "false",
        "query": "furniture",
        "keyword": "furniture",
    },
    "target_param": "houseName",
    "min_param": "priceResult[min]",
    "max_param": "priceResult[max]",
    "category": "Furniture",
    "response_url_pattern": "catResults",

    # Capture / partitioning thresholds (bytes)
    "capture_min_bytes": 1000,            # shorter responses are placeholders, never data
    "noise_floor_bytes": 90 * 1024,       # probe below this → near-empty bucket, keep as leaf
    "max_payload_bytes": 750 * 1024,      # probe below this (bounded range) → fits in one query
    "min_granularity": 1,                 # currency units; narrower ranges are never split
    "open_growth_factor": 2.0,            # open range [lo, +inf) splits at lo * factor
    "base_min": 250,
    "max_probes_per_target": 200,
    # (max expected items, seed boundaries); the last seed range is always open
    "seed_tiers": [
        (1000, [250, 500, 2000]),
        (5000, [250, 400, 700, 1000, 2000, 5000]),
        (20000, [250, 350, 500, 750, 1000, 1500, 2500, 5000, 10000]),
        (None, [250, 300, 400, 500, 600, 800, 1000, 1250, 1500, 2000,
                3000, 5000, 7500, 10000, 25000]),
    ],

    # Timeouts
    "navigation_timeout_ms": 60000,
    "first_response_timeout_s": 15.0,
    "settle_s": 2.0,

    # Pacing between navigations (seconds)
    "pacing": True,
    "pace_min_s": 20.0,
    "pace_max_s": 30.0,

    # Challenge detection / recovery
    "challenge_phrases": [
        "checking your browser",
        "Access to this page has been denied",
    ],
    "challenge_selectors": ['[id^="px-captcha"]', '.px-block'],
    "challenge_timeout_s": 30.0,
    "challenge_poll_s": 1.0,
    "save_challenge_html": True,

    # Pagination
    "load_more_selector": ".load-more-btn",
    "pagination_timeout_ms": 30000,
    "max_pages_per_range": 50,

    # Run scope
    "targets_per_run": 1,                 # 0 = all remaining targets

    # Browser
    "headless": True,
    "viewport_width": 1920,
    "viewport_height": 1080,
    "user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
    ),
    "block_resources": True,

    # Storage
    "output_dir": "sweep_output",
}


@dataclass
class CrawlerRunConfig:
    """
    Unified configuration consumed by every sweep subsystem.

    Populate via:
      - ``CrawlerRunConfig()``                  → all defaults
      - ``CrawlerRunConfig(pacing=False)``      → override one value
      - ``CrawlerRunConfig.from_cli_args(ns)``  → from argparse Namespace
    """

    # ---- Catalog query ----
    search_url: str = _DEFAULTS["search_url"]
    fixed_params: Dict[str, str] = field(
        default_factory=lambda: dict(_DEFAULTS["fixed_params"]))
    target_param: str = _DEFAULTS["target_param"]
    min_param: str = _DEFAULTS["min_param"]
    max_param: str = _DEFAULTS["max_param"]
    category: str = _DEFAULTS["category"]
    response_url_pattern: str = _DEFAULTS["response_url_pattern"]

    # ---- Partitioning ----
    capture_min_bytes: int = _DEFAULTS["capture_min_bytes"]
    noise_floor_bytes: int = _DEFAULTS["noise_floor_bytes"]
    max_payload_bytes: int = _DEFAULTS["max_payload_bytes"]
    min_granularity: int = _DEFAULTS["min_granularity"]
    open_growth_factor: float = _DEFAULTS["open_growth_factor"]
    base_min: int = _DEFAULTS["base_min"]
    max_probes_per_target: int = _DEFAULTS["max_probes_per_target"]
    seed_tiers: List[Tuple[Optional[int], List[int]]] = field(
        default_factory=lambda: [(limit, list(b)) for limit, b in _DEFAULTS["seed_tiers"]])

    # ---- Timeouts ----
    navigation_timeout_ms: int = _DEFAULTS["navigation_timeout_ms"]
    first_response_timeout_s: float = _DEFAULTS["first_response_timeout_s"]
    settle_s: float = _DEFAULTS["settle_s"]

    # ---- Pacing ----
    pacing: bool = _DEFAULTS["pacing"]
    pace_min_s: float = _DEFAULTS["pace_min_s"]
    pace_max_s: float = _DEFAULTS["pace_max_s"]

    # ---- Challenge handling ----
    challenge_phrases: List[str] = field(
        default_factory=lambda: list(_DEFAULTS["challenge_phrases"]))
    challenge_selectors: List[str] = field(
        default_factory=lambda: list(_DEFAULTS["challenge_selectors"]))
    challenge_timeout_s: float = _DEFAULTS["challenge_timeout_s"]
    challenge_poll_s: float = _DEFAULTS["challenge_poll_s"]
    save_challenge_html: bool = _DEFAULTS["save_challenge_html"]

    # ---- Pagination ----
    load_more_selector: str = _DEFAULTS["load_more_selector"]
    pagination_timeout_ms: int = _DEFAULTS["pagination_timeout_ms"]
    max_pages_per_range: int = _DEFAULTS["max_pages_per_range"]

    # ---- Run scope ----
    targets_per_run: int = _DEFAULTS["targets_per_run"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    viewport_width: int = _DEFAULTS["viewport_width"]
    viewport_height: int = _DEFAULTS["viewport_height"]
    user_agent: str = _DEFAULTS["user_agent"]
    block_resources: bool = _DEFAULTS["block_resources"]
    storage_state: Optional[str] = None     # cookies file injected into every session

    # ---- Storage ----
    output_dir: str = _DEFAULTS["output_dir"]
    targets_file: Optional[str] = None

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_cli_args(cls, args) -> "CrawlerRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        cfg = cls(
            targets_file=getattr(args, "targets", None),
            output_dir=getattr(args, "output_dir", None) or _DEFAULTS["output_dir"],
            storage_state=getattr(args, "storage_state", None),
            category=getattr(args, "category", None) or _DEFAULTS["category"],
            targets_per_run=getattr(args, "targets_per_run", _DEFAULTS["targets_per_run"]),
            max_pages_per_range=getattr(args, "max_pages", _DEFAULTS["max_pages_per_range"]),
            navigation_timeout_ms=getattr(args, "timeout", 60) * 1000,
            headless=not getattr(args, "headed", False),
            pacing=not getattr(args, "no_pacing", False),
            pace_min_s=getattr(args, "pace_min", _DEFAULTS["pace_min_s"]),
            pace_max_s=getattr(args, "pace_max", _DEFAULTS["pace_max_s"]),
        )
        if getattr(args, "noise_floor_kb", None):
            cfg.noise_floor_bytes = int(args.noise_floor_kb * 1024)
        if getattr(args, "max_payload_kb", None):
            cfg.max_payload_bytes = int(args.max_payload_kb * 1024)
        if getattr(args, "growth_factor", None):
            cfg.open_growth_factor = args.growth_factor
        return cfg

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------
    def validate(self) -> "CrawlerRunConfig":
        """Raise ``ConfigError`` on inconsistent settings; return self."""
        if self.base_min < 0:
            raise ConfigError(f"base_min must be >= 0 (got {self.base_min})")
        if self.min_granularity < 1:
            raise ConfigError("min_granularity must be at least 1")
        if self.open_growth_factor <= 1.0:
            raise ConfigError(
                f"open_growth_factor must be > 1.0 (got {self.open_growth_factor})"
            )
        if self.noise_floor_bytes >= self.max_payload_bytes:
            raise ConfigError(
                f"noise_floor_bytes ({self.noise_floor_bytes}) must be below "
                f"max_payload_bytes ({self.max_payload_bytes})"
            )
        if self.pace_min_s < 0 or self.pace_max_s < self.pace_min_s:
            raise ConfigError(
                f"invalid pacing window {self.pace_min_s}..{self.pace_max_s}s"
            )
        if self.targets_per_run < 0:
            raise ConfigError("targets_per_run must be >= 0")
        if self.max_pages_per_range < 1:
            raise ConfigError("max_pages_per_range must be at least 1")
        if not self.seed_tiers:
            raise ConfigError("seed_tiers must not be empty")
        for limit, boundaries in self.seed_tiers:
            if not boundaries or boundaries[0] != self.base_min:
                raise ConfigError(
                    f"seed tier {limit}: boundaries must start at base_min={self.base_min}"
                )
            if any(nxt <= cur for cur, nxt in zip(boundaries, boundaries[1:])):
                raise ConfigError(f"seed tier {limit}: boundaries must be strictly increasing")
        return self

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("SWEEP RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Search URL:       {self.search_url}")
        logger.info(f"  Category:         {self.category}")
        logger.info(f"  Targets File:     {self.targets_file}")
        logger.info(f"  Output Dir:       {self.output_dir}")
        logger.info(f"  Targets/Run:      {self.targets_per_run or 'all remaining'}")
        logger.info(f"  Noise Floor:      {self.noise_floor_bytes / 1024:.0f} KB")
        logger.info(f"  Payload Ceiling:  {self.max_payload_bytes / 1024:.0f} KB")
        logger.info(f"  Growth Factor:    {self.open_growth_factor}x (open ranges)")
        logger.info(f"  Nav Timeout:      {self.navigation_timeout_ms / 1000:.0f}s")
        if self.pacing:
            logger.info(f"  Pacing:           {self.pace_min_s:.0f}-{self.pace_max_s:.0f}s between navigations")
        else:
            logger.info("  Pacing:           disabled")
        if self.storage_state:
            logger.info(f"  Storage State:    {self.storage_state}")
        logger.info("=" * 60)
