"""
Incremental rendering of search results.

``RenderScheduler.render`` never materializes a large result list in one
go: it hands fixed-size batches to the view, one batch per frame callback,
so input handling keeps running between batches. Every call bumps a
generation counter; a batch belonging to an older generation does nothing,
so only the latest query ever reaches the view.

Tiles whose image is not ready yet are placeholders. The view reports
when one comes near the viewport (``on_visible``); the scheduler then
decompresses that entry and publishes a transient handle for it. Repeated
visibility events for the same asset share a single hydration. Handles
are tracked and revoked when the asset set is replaced.
"""

import asyncio
import logging
import uuid
from typing import Callable, Optional, Protocol, Sequence, Union

from .archive import AssetArchiveStore
from .errors import NotFoundError, ParseError
from .svg import normalize_svg
from .types import Asset, Tile

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 48
FRAME_INTERVAL = 1 / 60


class FrameScheduler(Protocol):
    def request_frame(self, callback: Callable[[], None]) -> None: ...


class LoopFrameScheduler:
    """Runs frame callbacks on the running asyncio loop, about 60 per second."""

    def __init__(self, interval: float = FRAME_INTERVAL):
        self._interval = interval

    def request_frame(self, callback: Callable[[], None]) -> None:
        asyncio.get_running_loop().call_later(self._interval, callback)


class ResultView(Protocol):
    """What the view wiring must provide."""

    def clear(self) -> None: ...

    def show_empty(self) -> None: ...

    def append_tiles(self, tiles: Sequence[Tile]) -> None: ...

    def observe(self, asset: Asset) -> None: ...

    def hydrate(self, asset: Asset, handle: str) -> None: ...


class HandleRegistry:
    """Transient, revocable references to in-memory image content."""

    def __init__(self) -> None:
        self._handles: dict[str, tuple[bytes, str]] = {}

    def create(self, data: Union[str, bytes], mime: str = "image/svg+xml") -> str:
        if isinstance(data, str):
            data = data.encode("utf-8")
        handle = f"blob:{uuid.uuid4()}"
        self._handles[handle] = (data, mime)
        return handle

    def resolve(self, handle: str) -> Optional[tuple[bytes, str]]:
        return self._handles.get(handle)

    def revoke(self, handle: str) -> bool:
        return self._handles.pop(handle, None) is not None

    def revoke_all(self) -> int:
        count = len(self._handles)
        self._handles.clear()
        return count

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, handle: object) -> bool:
        return handle in self._handles


class RenderScheduler:
    """Batches result tiles across frames and hydrates images lazily."""

    def __init__(
        self,
        store: AssetArchiveStore,
        view: ResultView,
        *,
        frames: Optional[FrameScheduler] = None,
        handles: Optional[HandleRegistry] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        prepare: Callable[[str], str] = normalize_svg,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._store = store
        self._view = view
        self._frames = frames or LoopFrameScheduler()
        self._handles = handles or HandleRegistry()
        self._batch_size = batch_size
        self._prepare = prepare

        self._generation = 0
        self._completed_generation = 0
        self._resets = 0
        self._hydrating: dict[int, asyncio.Future] = {}
        self._hydrated: dict[str, Asset] = {}

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def completed_generation(self) -> int:
        """Last generation whose every batch reached the view."""
        return self._completed_generation

    @property
    def handles(self) -> HandleRegistry:
        return self._handles

    # -------------------------------------------------------------------------
    # Batched rendering
    # -------------------------------------------------------------------------

    def render(self, results: Sequence[Asset]) -> int:
        """Start a render pass for ``results``; returns its generation."""
        self._generation += 1
        generation = self._generation
        results = list(results)
        self._view.clear()
        if not results:
            self._view.show_empty()
            self._completed_generation = generation
            return generation
        self._frames.request_frame(lambda: self._render_batch(generation, results, 0))
        return generation

    def _render_batch(self, generation: int, results: list[Asset], start: int) -> None:
        if generation != self._generation:
            logger.debug("Dropping stale render pass %d", generation)
            return
        batch = results[start:start + self._batch_size]
        tiles = [Tile(asset=asset, handle=asset.render_handle) for asset in batch]
        logger.debug("Render pass %d: tiles %d-%d", generation, start, start + len(tiles))
        self._view.append_tiles(tiles)
        for tile in tiles:
            if tile.is_placeholder:
                self._view.observe(tile.asset)

        next_start = start + len(batch)
        if next_start < len(results):
            self._frames.request_frame(lambda: self._render_batch(generation, results, next_start))
        else:
            self._completed_generation = generation

    # -------------------------------------------------------------------------
    # Lazy hydration
    # -------------------------------------------------------------------------

    async def on_visible(self, asset: Asset) -> Optional[str]:
        """
        A placeholder entered the lookahead margin.

        Returns the asset's handle, or None if its content could not be
        produced (the tile stays a placeholder).
        """
        if asset.render_handle is not None:
            return asset.render_handle
        pending = self._hydrating.get(asset.id)
        if pending is None:
            pending = asyncio.ensure_future(self._hydrate(asset, self._resets))
            self._hydrating[asset.id] = pending
            pending.add_done_callback(lambda f, i=asset.id: self._forget_hydration(i, f))
        return await asyncio.shield(pending)

    def _forget_hydration(self, asset_id: int, future: asyncio.Future) -> None:
        if self._hydrating.get(asset_id) is future:
            del self._hydrating[asset_id]

    async def _hydrate(self, asset: Asset, resets: int) -> Optional[str]:
        try:
            content = asset.content
            if content is None:
                content = await self._store.get_content(asset.name)
                asset.content = content
        except (NotFoundError, ParseError) as e:
            logger.warning("Cannot preview %s: %s", asset.name, e)
            return None
        if resets != self._resets:
            # The asset set was replaced while decompressing
            return None
        handle = self._handles.create(self._prepare(content))
        asset.render_handle = handle
        self._hydrated[handle] = asset
        self._view.hydrate(asset, handle)
        return handle

    def reset(self) -> None:
        """Abort in-flight passes and release every handle (asset set replaced)."""
        self._generation += 1
        self._resets += 1
        for handle, asset in self._hydrated.items():
            if asset.render_handle == handle:
                asset.render_handle = None
        self._hydrated.clear()
        released = self._handles.revoke_all()
        self._hydrating.clear()
        if released:
            logger.debug("Released %d image handles", released)
