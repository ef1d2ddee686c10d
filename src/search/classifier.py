"""Release-name heuristics: quality tagging and candidate filtering.

Everything here is a pure function over strings and models so each rule can
be tested without touching the network.

Rules applied per candidate (first failing rule wins):
- CAM releases are always rejected
- strict pass: minimum seeds (5 for episodes, 20 for movies)
- relaxed pass: seeds must still exceed a floor (default 0)
- explicit non-English language tags
- episode searches: season-pack size, SxxEyy match, title before episode token
- movie searches: title near the start, no episode token, year agreement
"""

import re
from dataclasses import dataclass

import structlog

from src.config import Settings
from src.search.dedup import extract_content_id
from src.search.models import CandidateTorrent, QualityTier, RawTorrent, SearchQuery
from src.search.ranking import health_ratio

logger = structlog.get_logger(__name__)

# Fewer strict survivors than this triggers the relaxed pass
RELAXED_FALLBACK_THRESHOLD = 2

QUALITY_RE = re.compile(
    r"(2160p|(?<![a-z0-9])4K(?![a-z0-9])|1080p|720p|480p|HDRIP|BLURAY|WEBRIP)",
    re.IGNORECASE,
)

# Matches inside release tags such as HDCAM, CAMRip and TeleCAM
CAM_RE = re.compile(r"CAM", re.IGNORECASE)

NON_ENGLISH_RE = re.compile(
    r"\b(?:FRENCH|FRENCHSUB|SUBFRENCH|VOSTFR|MULTI|SPANISH|LATINO|CASTELLANO|ESPANOL"
    r"|PORTUGUESE|PORTUGUES|BRRip\s?PORT|HINDI|HUN|DUTCH|GERMAN|DEUTSCH|ITALIAN|ITA"
    r"|KOREAN|JAPANESE|RUSSIAN|TURKISH|NORWEGIAN|SWEDISH|NORDIC|FINNISH|POLISH|DANISH)\b",
    re.IGNORECASE,
)

EPISODE_TOKEN_RE = re.compile(
    r"(?:S\d{1,2}[\s._-]*E\d{1,2}|\d{1,2}[xX]\d{1,2}|Season[\s._-]*\d{1,2}[\s._-]*Episode)",
    re.IGNORECASE,
)

SEASON_TOKEN_RE = re.compile(r"^(?:s\d{1,2}e\d{1,2}|\d{1,2}x\d{1,2})$", re.IGNORECASE)

YEAR_TOKEN_RE = re.compile(r"\b(?:19|20)\d{2}\b")

GROUP_PREFIX_RE = re.compile(r"^(?:\[[^\]]+\][\s._-]*)+")

TOKEN_SPLIT_RE = re.compile(r"[\s._-]+")

# Neither another digit nor a hyphen may follow (rejects "E02-03" ranges)
_END = r"(?![\d-])"


# =============================================================================
# Quality
# =============================================================================


def detect_quality_tier(name: str, hint: str | None = None) -> QualityTier:
    """Tag a release with a quality tier.

    ``CAM`` anywhere in the name (HDCAM, CAMRip) marks the release as CAM.
    Otherwise the first quality token wins, with ``4K`` counted as
    ``2160P``. Without a token, a provider hint naming a known tier is used.
    """
    name = name or ""
    if CAM_RE.search(name):
        return QualityTier.CAM

    match = QUALITY_RE.search(name)
    if match:
        return QualityTier(match.group(1).upper().replace("4K", "2160P"))

    if hint:
        try:
            return QualityTier(hint.upper().replace("4K", "2160P"))
        except ValueError:
            pass

    return QualityTier.UNKNOWN


# =============================================================================
# Name checks
# =============================================================================


def is_non_english(name: str | None) -> bool:
    """True when the name carries an explicit non-English language tag."""
    return bool(name) and NON_ENGLISH_RE.search(name) is not None


def matches_episode(name: str | None, season: int, episode: int) -> bool:
    """True when the name explicitly refers to the given season and episode.

    Accepts ``S01E02``/``S1E2``, ``1x02``, ``Season 1 Episode 2`` and the
    compact ``0102`` form bounded by non-digits.
    """
    if not name:
        return False

    patterns = [
        rf"S0?{season}[\s._-]*E0?{episode}{_END}",
        rf"(?<!\d){season}[\s._-]*x[\s._-]*0?{episode}{_END}",
        rf"Season[\s._-]+0?{season}[\s._-]+Episode[\s._-]+0?{episode}\b",
        rf"(?:^|\D){season:02d}{episode:02d}(?:\D|$)",
    ]
    return any(re.search(p, name, re.IGNORECASE) for p in patterns)


def has_episode_token(name: str | None) -> bool:
    """True when the name looks like a single TV episode."""
    return bool(name) and EPISODE_TOKEN_RE.search(name) is not None


def _normalize(token: str) -> str:
    return re.sub(r"[^a-z0-9]", "", token.lower())


def _name_tokens(name: str) -> list[str]:
    stripped = GROUP_PREFIX_RE.sub("", name)
    return [t for t in TOKEN_SPLIT_RE.split(stripped) if t]


def _title_tokens(title: str) -> list[str]:
    return re.sub(r"[^a-z0-9\s]", "", title.lower()).split()


def _find_title_index(tokens: list[str], title_tokens: list[str]) -> int:
    """Index where all title tokens appear consecutively, or -1."""
    normalized = [_normalize(t) for t in tokens]
    width = len(title_tokens)
    for i in range(len(normalized) - width + 1):
        if normalized[i : i + width] == title_tokens:
            return i
    return -1


def title_appears_before_episode(name: str | None, title: str) -> bool:
    """True when the series title precedes the first season/episode token."""
    if not name:
        return False

    title_tokens = _title_tokens(title)
    if not title_tokens:
        return False

    tokens = _name_tokens(name)
    title_idx = _find_title_index(tokens, title_tokens)
    if title_idx == -1:
        return False

    season_idx = next(
        (i for i, token in enumerate(tokens) if SEASON_TOKEN_RE.match(token)),
        len(tokens),
    )
    return title_idx < season_idx


def title_appears_early(name: str | None, title: str, max_index: int = 2) -> bool:
    """True when the movie title starts within the first few name tokens."""
    if not name:
        return False

    title_tokens = _title_tokens(title)
    if not title_tokens:
        return False

    title_idx = _find_title_index(_name_tokens(name), title_tokens)
    return 0 <= title_idx <= max_index


def year_matches(name: str | None, year: int | None, tolerance: int = 0) -> bool:
    """True unless the first year token in the name is further than ``tolerance`` from ``year``."""
    if not name or not year:
        return True

    match = YEAR_TOKEN_RE.search(name)
    if not match:
        return True
    return abs(int(match.group(0)) - year) <= tolerance


# =============================================================================
# Filtering
# =============================================================================


@dataclass(frozen=True)
class FilterOptions:
    """Thresholds used by the filter passes."""

    episode_min_seeds: int = 5
    movie_min_seeds: int = 20
    relaxed_min_seeds: int = 0
    strict_year_tolerance: int = 0
    relaxed_year_tolerance: int = 1
    season_pack_max_bytes: int = 20 * 1024**3

    @classmethod
    def from_settings(cls, settings: Settings) -> "FilterOptions":
        return cls(
            episode_min_seeds=settings.episode_min_seeds,
            movie_min_seeds=settings.movie_min_seeds,
            relaxed_min_seeds=settings.relaxed_min_seeds,
            strict_year_tolerance=settings.strict_year_tolerance,
            relaxed_year_tolerance=settings.relaxed_year_tolerance,
            season_pack_max_bytes=settings.season_pack_max_bytes,
        )

    def min_seeds_for(self, query: SearchQuery) -> int:
        return self.episode_min_seeds if query.is_episode else self.movie_min_seeds


def classify(row: RawTorrent) -> CandidateTorrent:
    """Turn a raw row into a candidate with quality tier, ratio and content id."""
    return CandidateTorrent(
        name=row.name,
        magnet=row.magnet,
        content_id=extract_content_id(row.magnet),
        seeds=row.seeds,
        leeches=row.leeches,
        size=row.size,
        quality=detect_quality_tier(row.name, row.quality),
        ratio=health_ratio(row.seeds, row.leeches),
        source=row.source,
    )


def rejection_reason(
    candidate: CandidateTorrent,
    query: SearchQuery,
    options: FilterOptions,
    relaxed: bool = False,
) -> str | None:
    """Why a candidate is rejected, or None if it survives."""
    name = candidate.name

    if candidate.quality == QualityTier.CAM:
        return "cam"

    if relaxed:
        if candidate.seeds <= options.relaxed_min_seeds:
            return f"no seeds ({candidate.seeds})"
    elif candidate.seeds < options.min_seeds_for(query):
        return f"low seeds ({candidate.seeds})"

    if is_non_english(name):
        return "non-english language tag"

    if query.is_episode:
        if (candidate.size or 0) > options.season_pack_max_bytes:
            return "likely season pack"
        if not matches_episode(name, query.season, query.episode):
            return "episode token mismatch"
        if not title_appears_before_episode(name, query.base_title):
            return "series title after episode token"
        return None

    if not title_appears_early(name, query.base_title):
        return "title appears late in name"
    if has_episode_token(name):
        return "tv episode in movie search"

    tolerance = options.relaxed_year_tolerance if relaxed else options.strict_year_tolerance
    if not year_matches(name, query.year, tolerance):
        return "year mismatch"

    return None


def filter_candidates(
    candidates: list[CandidateTorrent],
    query: SearchQuery,
    options: FilterOptions,
    relaxed: bool = False,
) -> list[CandidateTorrent]:
    """Apply one filter pass, logging each decision at debug level."""
    survivors = []
    for candidate in candidates:
        reason = rejection_reason(candidate, query, options, relaxed=relaxed)
        if reason:
            logger.debug(
                "filter_reject",
                name=candidate.name,
                seeds=candidate.seeds,
                quality=candidate.quality.value,
                reason=reason,
                relaxed=relaxed,
            )
            continue
        logger.debug("filter_keep", name=candidate.name, seeds=candidate.seeds, relaxed=relaxed)
        survivors.append(candidate)
    return survivors


def classify_and_filter(
    rows: list[RawTorrent],
    query: SearchQuery,
    options: FilterOptions | None = None,
) -> list[CandidateTorrent]:
    """Classify deduplicated rows and keep the suitable ones.

    When the strict pass leaves fewer than two candidates, a relaxed pass
    without the seed threshold runs too; strict survivors stay first and win
    on duplicate content.
    """
    options = options or FilterOptions()
    candidates = [classify(row) for row in rows]

    strict = filter_candidates(candidates, query, options)
    if len(strict) >= RELAXED_FALLBACK_THRESHOLD:
        return strict

    relaxed = filter_candidates(candidates, query, options, relaxed=True)
    seen = {c.content_id for c in strict}
    combined = strict + [c for c in relaxed if c.content_id not in seen]

    logger.info(
        "relaxed_fallback",
        strict_count=len(strict),
        relaxed_count=len(relaxed),
        total=len(combined),
    )
    return combined
