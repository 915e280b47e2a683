"""
Artifact Store
==============
Persistence for captured payloads, per-target manifests and the progress
cursor.

Key layout (hierarchical by category, target, range)::

    {category}/{target}/{range_label}/{run_id}-response{n}.json
    {category}/{target}/metadata/{run_id}.json
    {category}/{target}/challenges/{run_id}-{label}.html

``FileArtifactStore`` writes under a local directory; the cursor lives in
``cursor.json`` and is replaced atomically.  ``MemoryArtifactStore`` keeps
everything in dictionaries (tests, dry runs).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .capture import CapturePayload
from .ranges import PriceRange, Target
from .utils import safe_label

logger = logging.getLogger(__name__)

_CURSOR_FILE = "cursor.json"


@dataclass
class PartitionResult:
    """Unique payloads captured for one leaf range of one target."""
    target: Target
    range: PriceRange
    payloads: List[CapturePayload] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(p.byte_length for p in self.payloads)


def target_prefix(target: Target) -> str:
    return f"{safe_label(target.category or 'uncategorized')}/{safe_label(target.name)}"


class ArtifactStore(ABC):
    """Storage contract consumed by the orchestrator and the cursor."""

    @abstractmethod
    def get_cursor(self) -> int:
        ...

    @abstractmethod
    def set_cursor(self, value: int) -> None:
        ...

    @abstractmethod
    def save_artifact(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/json",
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Persist *data* under *path*; return the stored key."""
        ...

    # ── Convenience layers ────────────────────────────────────────

    def save_partition(self, result: PartitionResult, run_id: str) -> List[str]:
        """Save every payload of *result*; return the stored keys."""
        base = f"{target_prefix(result.target)}/{result.range.label}"
        keys = []
        for i, payload in enumerate(result.payloads, 1):
            key = self.save_artifact(
                f"{base}/{run_id}-response{i}.json",
                payload.data,
                content_type="application/json",
                metadata={
                    'type': 'api_response',
                    'responseNumber': str(i),
                    'searchId': run_id,
                    'target': result.target.name,
                    'range': result.range.label,
                },
            )
            keys.append(key)
        logger.info(
            f"[STORE] {result.target.name} {result.range.label}: "
            f"{len(keys)} payload(s) saved"
        )
        return keys

    def save_manifest(self, target: Target, run_id: str, manifest: dict) -> str:
        return self.save_artifact(
            f"{target_prefix(target)}/metadata/{run_id}.json",
            json.dumps(manifest, indent=2, ensure_ascii=False).encode('utf-8'),
            content_type="application/json",
            metadata={'type': 'metadata', 'searchId': run_id},
        )

    def save_challenge_page(self, target: Target, run_id: str, label: str, html: str) -> str:
        return self.save_artifact(
            f"{target_prefix(target)}/challenges/{run_id}-{safe_label(label)}.html",
            html.encode('utf-8'),
            content_type="text/html",
            metadata={'type': 'protection_page', 'searchId': run_id},
        )


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------

class FileArtifactStore(ArtifactStore):
    """Artifacts and cursor under a local directory."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"artifact path escapes store root: {path}")
        return target

    def get_cursor(self) -> int:
        path = self.root / _CURSOR_FILE
        if not path.exists():
            return 0
        data = json.loads(path.read_text(encoding="utf-8"))
        return int(data.get("cursor", 0))

    def set_cursor(self, value: int) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"cursor": int(value)})
        fd, tmp = tempfile.mkstemp(dir=str(self.root), prefix=".cursor-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp, self.root / _CURSOR_FILE)
        except BaseException:
            try:
                os.remove(tmp)
            except FileNotFoundError:
                pass
            raise

    def save_artifact(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/json",
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        sidecar = dict(metadata or {})
        sidecar['contentType'] = content_type
        target.with_name(target.name + ".meta.json").write_text(
            json.dumps(sidecar, indent=2), encoding="utf-8"
        )
        logger.debug(f"[STORE] Wrote {path} ({len(data)} bytes)")
        return path


class MemoryArtifactStore(ArtifactStore):
    """In-memory store."""

    def __init__(self, cursor: int = 0):
        self.cursor = cursor
        self.artifacts: Dict[str, Tuple[bytes, str, Dict[str, str]]] = {}
        self.cursor_writes: List[int] = []

    def get_cursor(self) -> int:
        return self.cursor

    def set_cursor(self, value: int) -> None:
        self.cursor = value
        self.cursor_writes.append(value)

    def save_artifact(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/json",
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        self.artifacts[path] = (data, content_type, dict(metadata or {}))
        return path
