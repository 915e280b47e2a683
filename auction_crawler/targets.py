"""Target list loading (JSON or CSV, order preserved)."""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Iterable, List, Mapping

from .errors import ConfigError
from .ranges import Target

logger = logging.getLogger(__name__)


def _parse_count(raw_count, name: str, where: str) -> int:
    text = str(raw_count).replace(',', '').strip() or '0'
    try:
        value = float(text)
    except ValueError:
        raise ConfigError(f"{where}: invalid expected count {raw_count!r} for {name!r}")
    if not value.is_integer():
        raise ConfigError(f"{where}: expected count {raw_count!r} for {name!r} is not a whole number")
    return int(value)


def _target_from_row(row: Mapping, default_category: str, where: str) -> Target:
    if not isinstance(row, Mapping):
        raise ConfigError(f"{where}: target must be an object, got {type(row).__name__}")
    name = str(row.get('name') or '').strip()
    if not name:
        raise ConfigError(f"{where}: target has no name")
    raw_count = row.get('expected_count', row.get('expectedCount', 0))
    count = _parse_count(raw_count, name, where)
    if count < 0:
        raise ConfigError(f"{where}: negative expected count for {name!r}")
    category = str(row.get('category') or '').strip() or default_category
    return Target(name=name, expected_count=count, category=category)


def parse_targets(rows: Iterable[Mapping], default_category: str = "", source: str = "targets") -> List[Target]:
    return [
        _target_from_row(row, default_category, f"{source}[{i}]")
        for i, row in enumerate(rows)
    ]


def load_targets(path: str, default_category: str = "") -> List[Target]:
    """Load the ordered target list from a ``.json`` or ``.csv`` file."""
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigError(f"target list not found: {path}")

    suffix = file_path.suffix.lower()
    if suffix == '.json':
        try:
            data = json.loads(file_path.read_text(encoding='utf-8'))
        except json.JSONDecodeError as e:
            raise ConfigError(f"target list {path} is not valid JSON: {e}")
        if isinstance(data, dict):
            data = data.get('targets', [])
        if not isinstance(data, list):
            raise ConfigError(f"target list {path} must be a JSON list")
        targets = parse_targets(data, default_category, file_path.name)
    elif suffix == '.csv':
        with open(file_path, newline='', encoding='utf-8') as handle:
            targets = parse_targets(csv.DictReader(handle), default_category, file_path.name)
    else:
        raise ConfigError(f"unsupported target list format: {suffix or path}")

    logger.info(f"Loaded {len(targets)} targets from {path}")
    return targets
