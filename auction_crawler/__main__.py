#!/usr/bin/env python3
"""
Auction Catalog Sweep CLI
=========================
Runs one resumable sweep: reads the progress cursor, processes the next
target(s) from the target list and writes captured payloads under the
output directory.

All configuration flows through ``CrawlerRunConfig``.  Path defaults can
come from the environment (or a ``.env`` file):

    SWEEP_TARGETS        target list (.json / .csv)
    SWEEP_OUTPUT_DIR     artifact + cursor directory
    SWEEP_STORAGE_STATE  Playwright storage-state (cookies) file

Exit status: 0 on completion (partial coverage is reported as warnings),
1 on configuration or cursor failures, 130 when interrupted.

Run with: python -m auction_crawler --targets houses.json
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError, CursorPersistenceFailure
from .monitor import SweepMonitor
from .orchestrator import SweepOrchestrator
from .run_config import CrawlerRunConfig, _DEFAULTS
from .session import PlaywrightSessionProvider
from .storage import FileArtifactStore
from .targets import load_targets

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def _load_env() -> None:
    """Load ``.env`` from the project root, falling back to the CWD."""
    env_path = Path(__file__).resolve().parent.parent / '.env'
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='auction_crawler',
        description='Adaptive price-range sweep of an auction catalog',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m auction_crawler --targets houses.json
  python -m auction_crawler --targets houses.csv --targets-per-run 0 --no-pacing
  python -m auction_crawler --targets houses.json --storage-state cookies.json --headed
        """
    )

    parser.add_argument(
        '--targets', type=str, default=os.environ.get('SWEEP_TARGETS'),
        help='Target list file, .json or .csv (env: SWEEP_TARGETS)',
    )
    parser.add_argument(
        '--output-dir', type=str,
        default=os.environ.get('SWEEP_OUTPUT_DIR', _DEFAULTS['output_dir']),
        help=f"Artifact and cursor directory (default: {_DEFAULTS['output_dir']}, env: SWEEP_OUTPUT_DIR)",
    )
    parser.add_argument(
        '--storage-state', type=str, default=os.environ.get('SWEEP_STORAGE_STATE'),
        help='Playwright storage-state file with cookies (env: SWEEP_STORAGE_STATE)',
    )
    parser.add_argument(
        '--category', type=str, default=None,
        help=f"Default category for targets without one (default: {_DEFAULTS['category']})",
    )
    parser.add_argument(
        '--targets-per-run', type=int, default=_DEFAULTS['targets_per_run'],
        help='Targets to process this run, 0 = all remaining (default: 1)',
    )
    parser.add_argument(
        '--max-pages', type=int, default=_DEFAULTS['max_pages_per_range'],
        help=f"Max result pages per range (default: {_DEFAULTS['max_pages_per_range']})",
    )
    parser.add_argument(
        '--timeout', type=int, default=_DEFAULTS['navigation_timeout_ms'] // 1000,
        help='Navigation timeout in seconds (default: 60)',
    )

    # ── Pacing ────────────────────────────────────────────────────
    pacing_group = parser.add_argument_group('Pacing')
    pacing_group.add_argument(
        '--no-pacing', action='store_true',
        help='Disable the jittered delay between navigations',
    )
    pacing_group.add_argument(
        '--pace-min', type=float, default=_DEFAULTS['pace_min_s'],
        help=f"Minimum delay between navigations in seconds (default: {_DEFAULTS['pace_min_s']:.0f})",
    )
    pacing_group.add_argument(
        '--pace-max', type=float, default=_DEFAULTS['pace_max_s'],
        help=f"Maximum delay between navigations in seconds (default: {_DEFAULTS['pace_max_s']:.0f})",
    )

    # ── Partitioning thresholds ───────────────────────────────────
    tuning_group = parser.add_argument_group('Partitioning',
        'Size thresholds used to decide whether a range must be split')
    tuning_group.add_argument(
        '--noise-floor-kb', type=float,
        help=f"Probe size below which a range is a near-empty leaf (default: {_DEFAULTS['noise_floor_bytes'] // 1024})",
    )
    tuning_group.add_argument(
        '--max-payload-kb', type=float,
        help=f"Probe size at or above which a range is split (default: {_DEFAULTS['max_payload_bytes'] // 1024})",
    )
    tuning_group.add_argument(
        '--growth-factor', type=float,
        help=f"Split point multiplier for open-ended ranges (default: {_DEFAULTS['open_growth_factor']})",
    )

    parser.add_argument('--headed', action='store_true', help='Show the browser window')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


async def _run_sweep(orchestrator: SweepOrchestrator):
    """Run the sweep; SIGINT / SIGTERM cancel it cleanly."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform (Windows); KeyboardInterrupt still applies
            pass
    try:
        return await orchestrator.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv=None) -> int:
    _load_env()
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        cfg = CrawlerRunConfig.from_cli_args(args).validate()
        if not cfg.targets_file:
            raise ConfigError("no target list given (use --targets or SWEEP_TARGETS)")
        targets = load_targets(cfg.targets_file, default_category=cfg.category)
    except ConfigError as e:
        logger.error(f"[CONFIG] {e}")
        return EXIT_FATAL

    cfg.log_summary()

    monitor = SweepMonitor()
    orchestrator = SweepOrchestrator(
        cfg,
        PlaywrightSessionProvider(cfg),
        FileArtifactStore(cfg.output_dir),
        targets,
        monitor=monitor,
    )

    exit_code = EXIT_OK
    try:
        metrics = asyncio.run(_run_sweep(orchestrator))
    except CursorPersistenceFailure as e:
        logger.error(f"Fatal: {e}")
        exit_code = EXIT_FATAL
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("Interrupted — cursor already points past the target in progress")
        exit_code = EXIT_INTERRUPTED
    except Exception as e:
        logger.error(f"Sweep failed: {e}", exc_info=True)
        exit_code = EXIT_FATAL
    else:
        print(SweepMonitor.format_summary(metrics))
        return exit_code

    # Summary of whatever was done before the failure
    print(SweepMonitor.format_summary(asyncio.run(monitor.snapshot())))
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
