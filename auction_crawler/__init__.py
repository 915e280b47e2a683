"""
Auction Catalog Range Crawler
Adaptive price-range partitioning sweep for a paginated auction catalog.

CLI Usage:
    python -m auction_crawler --targets <file> [options]

    Options:
        --targets-per-run   Targets to process this run, 0 = all (default: 1)
        --output-dir        Artifact and cursor directory (default: sweep_output)
        --storage-state     Playwright cookies file
        --max-pages         Max result pages per range (default: 50)
        --no-pacing         Disable the delay between navigations
        --headed            Show the browser window
"""

from .ranges import PriceRange, Target, check_tiling, tiling_gaps, build_query_url
from .run_config import CrawlerRunConfig
from .errors import (
    SweepError,
    RangeFailure,
    NavigationTimeout,
    NavigationFailed,
    ChallengeUnresolved,
    CaptureEmpty,
    PaginationExhausted,
    CursorPersistenceFailure,
    ConfigError,
)
from .planner import PartitionPlanner, PlanReport
from .capture import ResponseCapture, CapturePayload
from .challenge import ChallengeDetector, ChallengeResolver, ChallengeState
from .pagination import Paginator, PaginationStrategy, default_strategies
from .cursor import ProgressCursor
from .session import SessionProvider, PlaywrightSessionProvider, session_scope
from .storage import ArtifactStore, FileArtifactStore, MemoryArtifactStore, PartitionResult
from .targets import load_targets, parse_targets
from .monitor import SweepMonitor, SweepMetrics
from .orchestrator import SweepOrchestrator

__all__ = [
    # Data model
    'PriceRange',
    'Target',
    'check_tiling',
    'tiling_gaps',
    'build_query_url',
    'CrawlerRunConfig',
    # Errors
    'SweepError',
    'RangeFailure',
    'NavigationTimeout',
    'NavigationFailed',
    'ChallengeUnresolved',
    'CaptureEmpty',
    'PaginationExhausted',
    'CursorPersistenceFailure',
    'ConfigError',
    # Components
    'PartitionPlanner',
    'PlanReport',
    'ResponseCapture',
    'CapturePayload',
    'ChallengeDetector',
    'ChallengeResolver',
    'ChallengeState',
    'Paginator',
    'PaginationStrategy',
    'default_strategies',
    'ProgressCursor',
    # Collaborators
    'SessionProvider',
    'PlaywrightSessionProvider',
    'session_scope',
    'ArtifactStore',
    'FileArtifactStore',
    'MemoryArtifactStore',
    'PartitionResult',
    'load_targets',
    'parse_targets',
    # Orchestration
    'SweepMonitor',
    'SweepMetrics',
    'SweepOrchestrator',
]

__version__ = '1.0.0'
