"""
Data types for the svgshelf image library.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


SUPPORTED_EXTENSION = "svg"

# Keyword presence filter applied after text matching
FILTER_ALL = "all"
FILTER_WITH_KEYWORDS = "with_keywords"
FILTER_WITHOUT_KEYWORDS = "without_keywords"
FILTER_MODES = (FILTER_ALL, FILTER_WITH_KEYWORDS, FILTER_WITHOUT_KEYWORDS)

# Secondary order used for ties and for the empty query
SORT_ALPHA = "alpha"
SORT_RECENT = "recent"
SORT_FAVORITES = "favorites"
SORT_MODES = (SORT_ALPHA, SORT_RECENT, SORT_FAVORITES)


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.ffffff.

    Microseconds are kept so that string order matches recency order
    for inserts made within the same second.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


def validate_filter_mode(mode: str) -> str:
    if mode not in FILTER_MODES:
        raise ValueError(f"Unknown filter mode {mode!r} (expected one of {', '.join(FILTER_MODES)})")
    return mode


def validate_sort_mode(mode: str) -> str:
    if mode not in SORT_MODES:
        raise ValueError(f"Unknown sort mode {mode!r} (expected one of {', '.join(SORT_MODES)})")
    return mode


@dataclass
class Asset:
    """
    One indexed image in the current archive generation.

    ``id`` is an ordinal within one archive load and is reassigned
    wholesale when the archive is reloaded. ``is_favorite`` and
    ``last_used_at`` are carried over by name from the preference store.
    """
    id: int
    name: str
    extension: str = SUPPORTED_EXTENSION
    keywords: list[str] = field(default_factory=list)
    search_text: str = ""
    last_used_at: Optional[str] = None
    is_favorite: bool = False
    relevance_score: int = 0

    # Populated lazily by hydration
    content: Optional[str] = field(default=None, repr=False)
    render_handle: Optional[str] = field(default=None, repr=False)

    @property
    def has_keywords(self) -> bool:
        return bool(self.keywords)

    @property
    def stem(self) -> str:
        """Name without its extension."""
        suffix = "." + self.extension
        if self.name.lower().endswith(suffix.lower()):
            return self.name[:-len(suffix)]
        return self.name


@dataclass
class ArchiveMetadata:
    """Descriptive data stored next to the cached archive buffer."""
    name: str
    size: int
    count: int
    updated_at: str = field(default_factory=utc_now)


@dataclass
class ArchiveRecord:
    """The single persisted archive slot."""
    buffer: bytes
    metadata: ArchiveMetadata


@dataclass
class IngestStats:
    total: int = 0
    duplicates: int = 0
    ignored: int = 0


@dataclass
class ArchiveEntry:
    """A supported entry found in the archive, before ids are assigned."""
    name: str
    path: str
    extension: str = SUPPORTED_EXTENSION


@dataclass
class IngestResult:
    items: list[ArchiveEntry]
    stats: IngestStats


@dataclass
class Preference:
    """Per-name user attributes that survive archive reloads."""
    name: str
    is_favorite: bool = False
    last_used_at: Optional[str] = None


@dataclass(frozen=True)
class Bounds:
    """A rectangle in host document points."""
    left: float
    top: float
    width: float
    height: float


@dataclass
class InsertResult:
    """Outcome of one successful insertion."""
    asset_name: str
    context_id: Optional[str]
    bounds: Bounds
    replaced_selection: bool = False
    attempts: int = 1


@dataclass
class Tile:
    """One rendered result cell: ready content or a placeholder."""
    asset: Asset
    handle: Optional[str] = None

    @property
    def is_placeholder(self) -> bool:
        return self.handle is None
