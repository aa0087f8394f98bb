"""
In-memory search over the assets of one archive generation.

The index maps token prefixes to asset ids. Tokens of up to three
characters are stored verbatim; longer tokens store every prefix from
three characters to the full token, so a keystroke-by-keystroke prefix
query is a single dict lookup instead of a scan over every search text.

Query semantics:

- distinct query tokens combine with AND;
- each token may match literally or through one of its synonyms (OR);
- the index only proves that some word starts with the token, so every
  candidate is confirmed by a substring check on its search text;
- score = literal matches x DIRECT_WEIGHT + distinct synonym matches x
  SYNONYM_WEIGHT, ties broken by the selected secondary order.

Results are memoized per (filter, sort, normalized query). The memo is
dropped whenever the asset set, a favorite or a last-use time changes,
and when the sort mode differs from the previous query's.
"""

import logging
from typing import Iterable, Optional

from .text import normalize, tokenize
from .thesaurus import SYNONYM_CAP, Thesaurus
from .types import (
    FILTER_ALL,
    FILTER_WITH_KEYWORDS,
    FILTER_WITHOUT_KEYWORDS,
    SORT_ALPHA,
    SORT_FAVORITES,
    SORT_RECENT,
    Asset,
    validate_filter_mode,
    validate_sort_mode,
)

logger = logging.getLogger(__name__)

DIRECT_WEIGHT = 10
SYNONYM_WEIGHT = 1

# Shortest indexed prefix
PREFIX_MIN = 3

# The result memo is cleared outright once it holds this many queries
CACHE_LIMIT = 256


def index_keys(token: str) -> list[str]:
    """Index keys for one token: itself if short, else every prefix >= 3."""
    if len(token) <= PREFIX_MIN:
        return [token]
    return [token[:n] for n in range(PREFIX_MIN, len(token) + 1)]


def build_search_text(asset: Asset) -> str:
    return normalize(" ".join([asset.name, asset.stem, *asset.keywords]))


def _alpha_key(asset: Asset) -> tuple[str, str]:
    return (asset.name.casefold(), asset.name)


def secondary_order(assets: Iterable[Asset], sort_mode: str) -> list[Asset]:
    """Order assets by the secondary sort alone (stable, alphabetical base)."""
    ordered = sorted(assets, key=_alpha_key)
    if sort_mode == SORT_RECENT:
        # Never-used assets ("" sorts lowest) go last
        ordered.sort(key=lambda a: a.last_used_at or "", reverse=True)
    elif sort_mode == SORT_FAVORITES:
        ordered.sort(key=lambda a: a.is_favorite, reverse=True)
    return ordered


def _passes_filter(asset: Asset, filter_mode: str) -> bool:
    if filter_mode == FILTER_WITH_KEYWORDS:
        return asset.has_keywords
    if filter_mode == FILTER_WITHOUT_KEYWORDS:
        return not asset.has_keywords
    return True


class SearchIndex:
    """Prefix-token inverted index with a result memo."""

    def __init__(
        self,
        thesaurus: Optional[Thesaurus] = None,
        *,
        synonym_cap: int = SYNONYM_CAP,
        cache_limit: int = CACHE_LIMIT,
    ):
        self._thesaurus = thesaurus or Thesaurus()
        self._synonym_cap = synonym_cap
        self._cache_limit = cache_limit

        self._assets: tuple[Asset, ...] = ()
        self._by_id: dict[int, Asset] = {}
        self._by_name: dict[str, Asset] = {}
        self._index: dict[str, set[int]] = {}

        self._cache: dict[tuple[str, str, str], list[tuple[Asset, int]]] = {}
        self._last_sort_mode: Optional[str] = None

    # -------------------------------------------------------------------------
    # Index lifecycle
    # -------------------------------------------------------------------------

    @property
    def assets(self) -> tuple[Asset, ...]:
        return self._assets

    @property
    def thesaurus(self) -> Thesaurus:
        return self._thesaurus

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def __len__(self) -> int:
        return len(self._assets)

    def build(self, assets: Iterable[Asset]) -> None:
        """Replace the asset set and rebuild the whole index."""
        assets = tuple(assets)
        index: dict[str, set[int]] = {}
        for asset in assets:
            asset.search_text = build_search_text(asset)
            for token in set(asset.search_text.split()):
                for key in index_keys(token):
                    index.setdefault(key, set()).add(asset.id)

        self._assets = assets
        self._by_id = {a.id: a for a in assets}
        self._by_name = {a.name: a for a in assets}
        self._index = index
        self.invalidate()
        logger.debug("Indexed %d assets under %d keys", len(assets), len(index))

    def invalidate(self) -> None:
        self._cache.clear()

    def get(self, asset_id: int) -> Optional[Asset]:
        return self._by_id.get(asset_id)

    def find_by_name(self, name: str) -> Optional[Asset]:
        return self._by_name.get(name)

    def ids_for(self, key: str) -> frozenset[int]:
        """Asset ids stored under one index key."""
        return frozenset(self._index.get(key, ()))

    # -------------------------------------------------------------------------
    # User attributes (change ordering, so drop the memo)
    # -------------------------------------------------------------------------

    def set_favorite(self, asset: Asset, is_favorite: bool) -> None:
        asset.is_favorite = is_favorite
        self.invalidate()

    def mark_used(self, asset: Asset, when: str) -> None:
        asset.last_used_at = when
        self.invalidate()

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def query(
        self,
        text: str = "",
        filter_mode: str = FILTER_ALL,
        sort_mode: str = SORT_ALPHA,
    ) -> list[Asset]:
        """
        Search the current asset set.

        Args:
            text: Free text; empty means "everything"
            filter_mode: Keyword presence filter
            sort_mode: Secondary order for ties and for the empty query

        Returns:
            Matching assets, best first, with ``relevance_score`` set
        """
        validate_filter_mode(filter_mode)
        validate_sort_mode(sort_mode)

        if sort_mode != self._last_sort_mode:
            self.invalidate()
            self._last_sort_mode = sort_mode

        normalized = normalize(text)
        key = (filter_mode, sort_mode, normalized)
        scored = self._cache.get(key)
        if scored is None:
            scored = self._compute(normalized, filter_mode, sort_mode)
            if len(self._cache) >= self._cache_limit:
                self._cache.clear()
            self._cache[key] = scored

        results = []
        for asset, score in scored:
            asset.relevance_score = score
            results.append(asset)
        return results

    def _compute(self, normalized: str, filter_mode: str, sort_mode: str) -> list[tuple[Asset, int]]:
        if not normalized:
            matched = [a for a in self._assets if _passes_filter(a, filter_mode)]
            return [(a, 0) for a in secondary_order(matched, sort_mode)]

        groups = []
        for token in dict.fromkeys(tokenize(normalized)):
            synonyms = self._thesaurus.related(token, self._synonym_cap)
            groups.append((token, synonyms))

        candidates = self._candidates(groups)
        if not candidates:
            return []

        scores: dict[int, int] = {}
        for asset_id in candidates:
            asset = self._by_id[asset_id]
            score = self._score(asset.search_text, groups)
            if score is None or not _passes_filter(asset, filter_mode):
                continue
            scores[asset_id] = score

        ordered = secondary_order((self._by_id[i] for i in scores), sort_mode)
        ordered.sort(key=lambda a: scores[a.id], reverse=True)
        return [(a, scores[a.id]) for a in ordered]

    def _term_ids(self, term: str) -> set[int]:
        """Ids whose words start with each token of ``term``."""
        sets = []
        for token in term.split():
            ids = self._index.get(token)
            if not ids:
                return set()
            sets.append(ids)
        if not sets:
            return set()
        sets.sort(key=len)
        result = set(sets[0])
        for ids in sets[1:]:
            result &= ids
        return result

    def _candidates(self, groups: list[tuple[str, tuple[str, ...]]]) -> set[int]:
        group_sets = []
        for token, synonyms in groups:
            ids: set[int] = set()
            for term in (token, *synonyms):
                ids |= self._term_ids(term)
            if not ids:
                return set()
            group_sets.append(ids)
        group_sets.sort(key=len)
        result = set(group_sets[0])
        for ids in group_sets[1:]:
            result &= ids
            if not result:
                break
        return result

    @staticmethod
    def _score(search_text: str, groups: list[tuple[str, tuple[str, ...]]]) -> Optional[int]:
        """Score one candidate, or None if some token group has no literal match."""
        direct = 0
        synonym_hits: set[str] = set()
        for token, synonyms in groups:
            literal = token in search_text
            hits = [s for s in synonyms if s in search_text]
            if not literal and not hits:
                return None
            if literal:
                direct += 1
            synonym_hits.update(hits)
        return direct * DIRECT_WEIGHT + len(synonym_hits) * SYNONYM_WEIGHT
