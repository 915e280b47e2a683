"""
Ranges & Targets
================
Core value types of the sweep: price ranges, targets and the tiling check.

A ``PriceRange`` is either bounded ``[min, max]`` or open-ended
``[min, +inf)`` (``max is None``).  Leaf ranges produced for one target
must tile ``[base_min, +inf)``: sorted by ``min``, each leaf starts where
the previous one ended and only the last leaf is open.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl


@dataclass(frozen=True)
class PriceRange:
    """Contiguous price interval used to bound one catalog query."""
    min: int
    max: Optional[int] = None

    def __post_init__(self):
        if self.min < 0:
            raise ValueError(f"range min must be >= 0, got {self.min}")
        if self.max is not None and self.max <= self.min:
            raise ValueError(
                f"range max must be greater than min, got [{self.min}, {self.max}]"
            )

    @property
    def is_open(self) -> bool:
        return self.max is None

    @property
    def width(self) -> Optional[int]:
        if self.max is None:
            return None
        return self.max - self.min

    @property
    def label(self) -> str:
        """Filesystem-safe label, e.g. ``250-500`` or ``2000-plus``."""
        if self.max is None:
            return f"{self.min}-plus"
        return f"{self.min}-{self.max}"

    def query_params(self, min_key: str, max_key: str) -> Dict[str, str]:
        params = {min_key: str(self.min)}
        if self.max is not None:
            params[max_key] = str(self.max)
        return params

    def to_dict(self) -> dict:
        return {'min': self.min, 'max': self.max}

    def __str__(self) -> str:
        upper = '+inf)' if self.max is None else f"{self.max}]"
        return f"[{self.min}, {upper}"


@dataclass(frozen=True)
class Target:
    """One catalog partition (e.g. an auction house) to sweep completely."""
    name: str
    expected_count: int = 0
    category: str = ""

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'expected_count': self.expected_count,
            'category': self.category,
        }


# ---------------------------------------------------------------------------
# Tiling invariant
# ---------------------------------------------------------------------------

def tiling_gaps(ranges: Iterable[PriceRange], base_min: int) -> List[str]:
    """Return human-readable tiling violations (empty list = valid tiling)."""
    leaves = sorted(ranges, key=lambda r: r.min)
    if not leaves:
        return ["no ranges"]

    problems: List[str] = []
    if leaves[0].min != base_min:
        problems.append(f"first range starts at {leaves[0].min}, expected {base_min}")

    for prev, cur in zip(leaves, leaves[1:]):
        if prev.max is None:
            problems.append(f"open range {prev} is not last")
        elif cur.min > prev.max:
            problems.append(f"gap between {prev} and {cur}")
        elif cur.min < prev.max:
            problems.append(f"overlap between {prev} and {cur}")

    if not leaves[-1].is_open:
        problems.append(f"last range {leaves[-1]} is bounded; domain must stay open-ended")
    return problems


def check_tiling(ranges: Iterable[PriceRange], base_min: int) -> bool:
    """True when *ranges* tile ``[base_min, +inf)`` without gaps or overlaps."""
    return not tiling_gaps(ranges, base_min)


# ---------------------------------------------------------------------------
# Query URL encoding
# ---------------------------------------------------------------------------

def build_query_url(
    base_url: str,
    rng: PriceRange,
    *,
    fixed_params: Optional[Mapping[str, str]] = None,
    target_params: Optional[Mapping[str, str]] = None,
    min_key: str = 'priceResult[min]',
    max_key: str = 'priceResult[max]',
) -> str:
    """Build the catalog search URL for *rng*.

    Parameters already present on *base_url* are kept; fixed, target and
    range parameters are layered on top in that order (later wins).
    """
    parts = urlsplit(base_url)
    params: Dict[str, str] = dict(parse_qsl(parts.query, keep_blank_values=True))
    params.update(fixed_params or {})
    params.update(target_params or {})
    params.pop(max_key, None)
    params.update(rng.query_params(min_key, max_key))
    return urlunsplit((
        parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment,
    ))


__all__ = [
    'PriceRange',
    'Target',
    'tiling_gaps',
    'check_tiling',
    'build_query_url',
]
