"""Ordering and per-tier selection of filtered candidates."""

from src.search.models import CandidateTorrent


def health_ratio(seeds: int, leeches: int) -> float:
    """Seeds per leech; with no leeches the seed count itself."""
    if leeches == 0:
        return float(seeds)
    return seeds / leeches


def rank_candidates(candidates: list[CandidateTorrent]) -> list[CandidateTorrent]:
    """Sort by health ratio, then seeds, both descending.

    ``sorted`` is stable, so equal rows keep their input order and the
    result is deterministic for a fixed input.
    """
    return sorted(candidates, key=lambda c: (-c.ratio, -c.seeds))


def select_per_tier(ranked: list[CandidateTorrent], limit: int = 20) -> list[CandidateTorrent]:
    """Keep the best candidate of each quality tier, at most ``limit`` rows.

    Falls back to the top ``limit`` ranked rows if nothing was selected.
    """
    seen_tiers = set()
    selected: list[CandidateTorrent] = []

    for candidate in ranked:
        if len(selected) >= limit:
            break
        if candidate.quality in seen_tiers:
            continue
        seen_tiers.add(candidate.quality)
        selected.append(candidate)

    if not selected:
        return ranked[:limit]
    return selected
