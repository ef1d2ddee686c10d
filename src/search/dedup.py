"""Merge raw rows from all providers into one row per swarm."""

import re
from collections.abc import Iterable

from src.search.models import RawTorrent

INFO_HASH_RE = re.compile(r"btih:([a-fA-F0-9]{32,40})", re.IGNORECASE)


def extract_content_id(locator: str) -> str:
    """Return the upper-cased info hash in a locator, or the locator itself."""
    match = INFO_HASH_RE.search(locator)
    return match.group(1).upper() if match else locator


def dedup_candidates(rows: Iterable[RawTorrent]) -> list[RawTorrent]:
    """Keep the best-seeded row per content id.

    Rows without a locator are dropped. Output keeps first-seen key order,
    so running it on its own output changes nothing.
    """
    kept: dict[str, RawTorrent] = {}
    for row in rows:
        if not row.magnet:
            continue
        key = extract_content_id(row.magnet)
        existing = kept.get(key)
        if existing is None or row.seeds > existing.seeds:
            kept[key] = row
    return list(kept.values())
