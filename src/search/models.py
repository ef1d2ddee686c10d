"""Data models shared by the search pipeline."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class QualityTier(str, Enum):
    """Coarse resolution/source class parsed from a release name."""

    UHD_2160P = "2160P"
    FHD_1080P = "1080P"
    HD_720P = "720P"
    SD_480P = "480P"
    HDRIP = "HDRIP"
    BLURAY = "BLURAY"
    WEBRIP = "WEBRIP"
    CAM = "CAM"
    UNKNOWN = "UNKNOWN"


class RawTorrent(BaseModel):
    """One provider row before deduplication.

    Attributes:
        name: Release name as listed by the provider.
        magnet: Swarm locator (magnet URI).
        seeds: Number of seeders.
        leeches: Number of leechers.
        size: Size in bytes when the provider reports one.
        quality: Provider-supplied quality hint (YTS reports it separately).
        source: Provider name.
    """

    name: str = Field(..., description="Release name")
    magnet: str = Field(default="", description="Magnet link")
    seeds: int = Field(default=0, ge=0)
    leeches: int = Field(default=0, ge=0)
    size: int | None = Field(default=None, ge=0, description="Size in bytes")
    quality: str | None = Field(default=None, description="Provider quality hint")
    source: str = Field(default="unknown", description="Provider name")


class CandidateTorrent(BaseModel):
    """A deduplicated, classified search result.

    Serialized with :meth:`to_api` as ``name, magnet, seeds, leeches, size,
    quality, ratio``.
    """

    name: str
    magnet: str
    content_id: str
    seeds: int = 0
    leeches: int = 0
    size: int | None = None
    quality: QualityTier = QualityTier.UNKNOWN
    ratio: float = 0.0
    source: str = "unknown"

    def to_api(self) -> dict:
        """Public JSON shape of a search result."""
        return {
            "name": self.name,
            "magnet": self.magnet,
            "seeds": self.seeds,
            "leeches": self.leeches,
            "size": self.size,
            "quality": self.quality.value,
            "ratio": self.ratio,
        }


class SearchQuery(BaseModel):
    """What the caller asked for: a title optionally narrowed to a year or episode."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    year: int | None = None
    season: int | None = Field(default=None, ge=0)
    episode: int | None = Field(default=None, ge=0)

    @property
    def is_episode(self) -> bool:
        """True when both season and episode are given."""
        return self.season is not None and self.episode is not None

    @property
    def base_title(self) -> str:
        return self.title.strip()
