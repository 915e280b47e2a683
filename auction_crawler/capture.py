"""
Response Capture & Dedup
========================
Observes one session's network traffic and keeps the unique
search-results payloads.

Rules (in order):
  1. Only responses whose URL contains the search-results pattern and whose
     status is 200 are considered.
  2. Bodies shorter than ``min_bytes`` are placeholders and are ignored entirely
     (not counted, not hashed).
  3. A body whose content hash was already seen *by this instance* is a
     duplicate delivery and is dropped.
  4. Everything else is appended; the size of the first unique payload is
     kept separately as the planner's probe signal.

One ``ResponseCapture`` is created per session and discarded with it.
Different ranges can legitimately return byte-identical payloads, so hash
state is never shared between instances.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Set

from .utils import ContentHasher, format_kb

logger = logging.getLogger(__name__)


@dataclass
class CapturePayload:
    """One unique search-results response body."""
    url: str
    text: str

    @property
    def data(self) -> bytes:
        return self.text.encode('utf-8')

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @property
    def content_hash(self) -> str:
        return ContentHasher.payload_hash(self.data)


class ResponseCapture:
    """Per-session capture state with hash-based dedup."""

    def __init__(self, url_pattern: str = "catResults", min_bytes: int = 1000):
        self.url_pattern = url_pattern
        self.min_bytes = min_bytes
        self._payloads: List[CapturePayload] = []
        self._seen: Set[str] = set()
        self._first_size = 0
        self._first_event = asyncio.Event()
        self.duplicates = 0
        self.ignored_small = 0

    # ── Observation ───────────────────────────────────────────────

    def matches(self, url: str, status: int) -> bool:
        """True if the response is a successful search-results response."""
        return self.url_pattern in url and status == 200

    async def observe(self, response) -> None:
        """Response listener: read the body of a matching response and record it."""
        try:
            url = response.url
            if not self.matches(url, response.status):
                return
            body = await response.text()
        except Exception as e:
            # Bodies of responses from a tab that is already closing are gone
            if 'closed' not in str(e).lower():
                logger.debug(f"[CAPTURE] Could not read response body: {e}")
            return
        self.observe_body(url, response.status, body)

    def observe_body(self, url: str, status: int, body: str) -> bool:
        """Record *body* if it qualifies. Returns True when it was kept."""
        if not self.matches(url, status):
            return False

        payload = CapturePayload(url=url, text=body or "")
        size = payload.byte_length
        if size < self.min_bytes:
            self.ignored_small += 1
            logger.debug(f"[CAPTURE] Skipping small response: {size} bytes")
            return False

        digest = payload.content_hash
        if digest in self._seen:
            self.duplicates += 1
            logger.debug("[CAPTURE] Duplicate response detected")
            return False

        self._seen.add(digest)
        self._payloads.append(payload)
        if len(self._payloads) == 1:
            self._first_size = size
            self._first_event.set()
            logger.info(f"[CAPTURE] First response captured: {format_kb(size)}")
        else:
            logger.info(
                f"[CAPTURE] New unique response #{len(self._payloads)}: {format_kb(size)}"
            )
        return True

    # ── Queries ───────────────────────────────────────────────────

    def first_payload_size(self) -> int:
        """Byte size of the first unique payload (0 when none captured)."""
        return self._first_size

    def has_payload(self) -> bool:
        return bool(self._payloads)

    def unique_payloads(self) -> List[CapturePayload]:
        return list(self._payloads)

    @property
    def count(self) -> int:
        return len(self._payloads)

    async def wait_for_first(self, timeout_s: float) -> Optional[int]:
        """Wait up to *timeout_s* for the first unique payload.

        Returns its size, or None on timeout.
        """
        if self._payloads:
            return self._first_size
        try:
            await asyncio.wait_for(self._first_event.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return None
        return self._first_size
