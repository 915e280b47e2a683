"""
Utility Functions
Content hashing, pacing delays, and naming helpers.
"""

import hashlib
import logging
import random
import re
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class ContentHasher:
    """
    Generates content hashes for detecting duplicate response payloads.
    """

    @staticmethod
    def payload_hash(data: bytes) -> str:
        """SHA-256 of the raw payload bytes.

        No whitespace normalisation: two payloads are duplicates only when
        they are byte-identical.
        """
        return hashlib.sha256(data).hexdigest()


def jittered_delay(min_s: float, max_s: float) -> float:
    """Random delay within ``[min_s, max_s]`` seconds."""
    if max_s <= min_s:
        return max(0.0, min_s)
    return random.uniform(min_s, max_s)


def safe_label(text: str, max_len: int = 80) -> str:
    """Filesystem/object-key safe label for a target or range name."""
    cleaned = re.sub(r'[^\w\-.]+', '_', (text or '').strip())
    cleaned = cleaned.strip('_.') or 'unnamed'
    return cleaned[:max_len]


def format_kb(size: int) -> str:
    """Human readable size in KB."""
    return f"{size / 1024:.2f} KB"


def make_run_id(prefix: str = "sweep") -> str:
    """Timestamped id used to group the artifacts of one run."""
    stamp = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H-%M-%S-%fZ')
    return f"{prefix}-{stamp}"
