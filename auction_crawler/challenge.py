"""
Challenge Detection & Recovery
==============================
Detects anti-automation interstitials in captured page content and drives
a bounded recovery sequence.

State machine (fresh for every navigation, never persisted)::

    NONE ──markers──▶ DETECTED ──▶ RESOLVING ──markers gone──▶ CLEARED
                                       │
                                       └──timeout──▶ FAILED

``CLEARED`` re-navigates to the original URL before returning.
``FAILED`` raises ``ChallengeUnresolved``; the caller decides whether to
retry the range or keep it as a coarse leaf.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from .errors import ChallengeUnresolved, NavigationFailed
from .session import SessionProvider

logger = logging.getLogger(__name__)

DEFAULT_PHRASES: Tuple[str, ...] = (
    "checking your browser",
    "Access to this page has been denied",
)
DEFAULT_SELECTORS: Tuple[str, ...] = ('[id^="px-captcha"]', '.px-block')


class ChallengeState(Enum):
    NONE = "none"
    DETECTED = "detected"
    RESOLVING = "resolving"
    CLEARED = "cleared"
    FAILED = "failed"


class ChallengeDetector:
    """Matches block-page phrases and selectors against page HTML."""

    def __init__(
        self,
        phrases: Sequence[str] = DEFAULT_PHRASES,
        selectors: Sequence[str] = DEFAULT_SELECTORS,
    ):
        self.phrases = [p.lower() for p in phrases]
        self.selectors = list(selectors)

    def find_marker(self, html: str) -> Optional[str]:
        """Return the first matching marker, or None."""
        if not html:
            return None
        lowered = html.lower()
        for phrase in self.phrases:
            if phrase in lowered:
                return phrase
        if self.selectors:
            soup = BeautifulSoup(html, "lxml")
            for selector in self.selectors:
                if soup.select_one(selector) is not None:
                    return selector
        return None

    def detect(self, html: str) -> bool:
        return self.find_marker(html) is not None


class ChallengeResolver:
    """
    One-shot challenge guard for a single navigation.

    Usage::

        resolver = ChallengeResolver(provider, detector)
        state = await resolver.guard(handle, url)   # NONE or CLEARED, else raises
    """

    def __init__(
        self,
        provider: SessionProvider,
        detector: ChallengeDetector,
        *,
        timeout_s: float = 30.0,
        poll_interval_s: float = 1.0,
        settle_s: float = 1.0,
        navigation_timeout_ms: int = 60000,
        on_detected: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self.provider = provider
        self.detector = detector
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self.settle_s = settle_s
        self.navigation_timeout_ms = navigation_timeout_ms
        self.on_detected = on_detected
        self.state = ChallengeState.NONE
        self.history: List[ChallengeState] = [ChallengeState.NONE]
        self.marker: Optional[str] = None

    def _transition(self, new_state: ChallengeState) -> None:
        logger.debug(f"[CHALLENGE] {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    async def guard(self, handle: Any, url: str) -> ChallengeState:
        """Inspect the current page; recover if a challenge is showing."""
        html = await self.provider.capture_content(handle)
        self.marker = self.detector.find_marker(html)
        if self.marker is None:
            return self.state

        self._transition(ChallengeState.DETECTED)
        logger.warning(f"[CHALLENGE] Protection page detected (marker: {self.marker!r})")
        if self.on_detected is not None:
            try:
                await self.on_detected(html)
            except Exception as e:
                logger.debug(f"[CHALLENGE] on_detected hook failed: {e}")

        self._transition(ChallengeState.RESOLVING)
        if not await self._resolve(handle):
            self._transition(ChallengeState.FAILED)
            logger.error(f"[CHALLENGE] Not cleared within {self.timeout_s:.0f}s")
            raise ChallengeUnresolved(
                f"challenge ({self.marker}) not cleared within {self.timeout_s:.0f}s at {url}"
            )

        self._transition(ChallengeState.CLEARED)
        logger.info("[CHALLENGE] Protection cleared — reloading target URL")
        await self.provider.navigate(handle, url, timeout_ms=self.navigation_timeout_ms)
        return self.state

    async def _resolve(self, handle: Any) -> bool:
        """Recovery sequence, then poll for marker absence until timeout."""
        deadline = time.monotonic() + self.timeout_s
        await self.provider.perform_interaction(handle, 'mouse_move')
        await self.provider.perform_interaction(handle, 'scroll', top=100)
        await self.provider.perform_interaction(handle, 'wait', seconds=self.settle_s)

        while True:
            try:
                html = await self.provider.capture_content(handle)
            except NavigationFailed as e:
                # Content is unreadable while the interstitial reloads the page
                logger.debug(f"[CHALLENGE] Content unavailable during recovery: {e}")
            else:
                if not self.detector.detect(html):
                    return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval_s)
