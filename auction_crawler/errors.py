"""
Error Kinds
===========
Exception hierarchy shared by every sweep subsystem.

Two families:
  - ``RangeFailure``  — scoped to one range / navigation. Caught at the
    range-processing boundary; the range is kept as a coarse leaf.
  - fatal errors      — ``CursorPersistenceFailure`` and ``ConfigError``.
    These stop the run with a non-zero exit status.
"""

from __future__ import annotations


class SweepError(Exception):
    """Base class for all sweep errors."""


# ---------------------------------------------------------------------------
# Per-range failures (recoverable)
# ---------------------------------------------------------------------------

class RangeFailure(SweepError):
    """A failure that only invalidates the current range or target."""


class NavigationTimeout(RangeFailure):
    """Navigation or a bounded wait exceeded its timeout."""


class NavigationFailed(RangeFailure):
    """Navigation failed for a non-timeout reason (network, HTTP, closed tab)."""


class ChallengeUnresolved(RangeFailure):
    """An anti-automation challenge did not clear within the recovery window."""


class CaptureEmpty(RangeFailure):
    """No qualifying search-results response was observed at all."""


# ---------------------------------------------------------------------------
# Terminal states / fatal errors
# ---------------------------------------------------------------------------

class PaginationExhausted(SweepError):
    """Normal end of a result listing, not an error condition."""


class CursorPersistenceFailure(SweepError):
    """The progress cursor could not be durably written. Always fatal."""


class ConfigError(SweepError):
    """Invalid configuration or target list. Always fatal."""


__all__ = [
    'SweepError',
    'RangeFailure',
    'NavigationTimeout',
    'NavigationFailed',
    'ChallengeUnresolved',
    'CaptureEmpty',
    'PaginationExhausted',
    'CursorPersistenceFailure',
    'ConfigError',
]
