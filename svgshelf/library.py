"""
The library context: one object owning every piece of state.

A ``Library`` holds the current archive generation (assets + index), the
local cache, the render scheduler and the insertion queue. Nothing lives
at module level, so several libraries can coexist (one per test, say).

Loading an archive replaces the asset list and the index together; the
previous generation's image handles and prepared SVG are released at the
same time. Favorites and last-use times come from the preference store
and are matched to assets by name on every load.
"""

import asyncio
import logging
from typing import Callable, Optional, Union

from .archive import ArchiveSession, AssetArchiveStore
from .cache import ArchiveCache, PreferenceStore
from .config import LibraryConfig
from .errors import NotFoundError, ParseError
from .insertion import HostDocument, InsertionCoordinator
from .keywords import load_keywords
from .render import FrameScheduler, RenderScheduler, ResultView
from .search import SearchIndex
from .svg import normalize_svg
from .thesaurus import Thesaurus, load_thesaurus
from .types import (
    ArchiveMetadata,
    Asset,
    IngestResult,
    InsertResult,
    utc_now,
    validate_filter_mode,
    validate_sort_mode,
)


logger = logging.getLogger(__name__)


class Library:
    """
    Browse, search and insert images from a local SVG archive.

    ``host`` and ``view`` are optional: without a host, ``insert`` is
    unavailable; without a view, nothing is rendered.
    """

    def __init__(
        self,
        config: LibraryConfig,
        *,
        host: Optional[HostDocument] = None,
        view: Optional[ResultView] = None,
        frames: Optional[FrameScheduler] = None,
        worker_factory: Optional[Callable[[], ArchiveSession]] = None,
        thesaurus: Optional[Thesaurus] = None,
        keywords: Optional[dict[str, list[str]]] = None,
    ):
        self.config = config
        self._archive_cache = ArchiveCache(config.cache_path)
        self._preferences = PreferenceStore(config.cache_path)
        self.store = AssetArchiveStore(
            use_worker=config.use_worker, worker_factory=worker_factory,
        )

        if thesaurus is None:
            thesaurus = load_thesaurus(config.resolve(config.synonyms_path))
        if keywords is None:
            keywords = load_keywords(config.resolve(config.keywords_path))
        self.thesaurus = thesaurus
        self.keywords = keywords

        self.index = SearchIndex(thesaurus)
        self.renderer: Optional[RenderScheduler] = None
        if view is not None:
            self.renderer = RenderScheduler(
                self.store, view, frames=frames, batch_size=config.batch_size,
            )
        self.coordinator: Optional[InsertionCoordinator] = None
        if host is not None:
            self.coordinator = InsertionCoordinator(
                self.store, host,
                replace_mode=config.replace_mode,
                on_inserted=self._record_use,
            )

        self.metadata: Optional[ArchiveMetadata] = None
        self.last_result: Optional[IngestResult] = None

    @property
    def assets(self) -> tuple[Asset, ...]:
        return self.index.assets

    # -------------------------------------------------------------------------
    # Archive lifecycle
    # -------------------------------------------------------------------------

    async def load_archive(self, buffer: bytes, name: str = "archive.zip") -> IngestResult:
        """
        Import an archive, replacing the current one, and cache it locally.

        Raises:
            ParseError: If the archive is malformed; the library is left empty
        """
        result = await self._apply(buffer)
        self.metadata = ArchiveMetadata(name=name, size=len(buffer), count=result.stats.total)
        if not self._archive_cache.persist(bytes(buffer), self.metadata):
            logger.info("Archive %s loaded but not cached", name)
        return result

    async def restore(self) -> Optional[IngestResult]:
        """Reload the cached archive, if there is a usable one."""
        record = self._archive_cache.read()
        if record is None:
            return None
        try:
            result = await self._apply(record.buffer)
        except ParseError as e:
            logger.warning("Cached archive %s is unreadable: %s", record.metadata.name, e)
            return None
        self.metadata = record.metadata
        return result

    async def _apply(self, buffer: bytes) -> IngestResult:
        try:
            result = await self.store.ingest(buffer)
        except ParseError:
            self._replace_assets([])
            self.last_result = None
            self.metadata = None
            raise

        preferences = self._preferences.all()
        assets = []
        for ordinal, entry in enumerate(result.items):
            pref = preferences.get(entry.name)
            assets.append(Asset(
                id=ordinal,
                name=entry.name,
                extension=entry.extension,
                keywords=list(self.keywords.get(entry.name, ())),
                is_favorite=pref.is_favorite if pref else False,
                last_used_at=pref.last_used_at if pref else None,
            ))
        self._replace_assets(assets)
        self.last_result = result
        return result

    def _replace_assets(self, assets: list[Asset]) -> None:
        self.index.build(assets)
        if self.renderer is not None:
            self.renderer.reset()
        if self.coordinator is not None:
            self.coordinator.reset()

    # -------------------------------------------------------------------------
    # Browsing
    # -------------------------------------------------------------------------

    def search(
        self,
        query: str = "",
        filter_mode: Optional[str] = None,
        sort_mode: Optional[str] = None,
    ) -> list[Asset]:
        filter_mode = validate_filter_mode(filter_mode or self.config.default_filter)
        sort_mode = validate_sort_mode(sort_mode or self.config.default_sort)
        return self.index.query(query, filter_mode, sort_mode)

    def show(
        self,
        query: str = "",
        filter_mode: Optional[str] = None,
        sort_mode: Optional[str] = None,
    ) -> list[Asset]:
        """Search and hand the results to the render scheduler."""
        results = self.search(query, filter_mode, sort_mode)
        if self.renderer is not None:
            self.renderer.render(results)
        return results

    def get_asset(self, name: str) -> Asset:
        asset = self.index.find_by_name(name)
        if asset is None:
            raise NotFoundError(f"No asset named {name}")
        return asset

    async def get_svg(self, name: str) -> str:
        """Normalized SVG text for one asset."""
        asset = self.get_asset(name)
        if self.coordinator is not None:
            return await self.coordinator.prepared_svg(asset)
        return normalize_svg(await self.store.get_content(asset.name))

    def set_favorite(self, name: str, is_favorite: bool) -> Asset:
        asset = self.get_asset(name)
        self.index.set_favorite(asset, is_favorite)
        self._preferences.set_favorite(name, is_favorite)
        return asset

    def toggle_favorite(self, name: str) -> bool:
        asset = self.get_asset(name)
        self.set_favorite(name, not asset.is_favorite)
        return asset.is_favorite

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def insert(self, asset: Union[str, Asset]) -> "asyncio.Future[InsertResult]":
        if self.coordinator is None:
            raise RuntimeError("No host document attached; cannot insert")
        if isinstance(asset, str):
            asset = self.get_asset(asset)
        return self.coordinator.insert(asset)

    def _record_use(self, asset: Asset, result: InsertResult) -> None:
        when = utc_now()
        self.index.mark_used(asset, when)
        self._preferences.mark_used(asset.name, when)

    async def close(self) -> None:
        if self.coordinator is not None:
            await self.coordinator.close()
        if self.renderer is not None:
            self.renderer.reset()
        self.store.close()
        self._archive_cache.close()
        self._preferences.close()
