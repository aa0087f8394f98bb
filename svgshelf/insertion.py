"""
Serialized insertion of images into the host document.

The host document API is not reentrant, so every insert goes through one
FIFO queue drained by a single worker task: exactly one mutation is in
flight at any time. Each request gets its own future; a failure is set on
that future (and reported) without stopping the queue.

Placement:

- with replace mode on and exactly one shape selected, the new image
  takes that shape's bounds;
- otherwise it cascades: a base offset plus one step per successive
  insert into the same context (slide, page...), wrapping after
  ``MAX_STEPS`` and starting over after ``IDLE_RESET_SECONDS`` of quiet.

A ``HostSelectionError`` is retried once, after forcing the selection
back onto the target context. Anything else is surfaced as-is.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

from .archive import AssetArchiveStore
from .errors import HostSelectionError
from .svg import DEFAULT_INSERT_SIZE, fit_size, normalize_svg
from .types import Asset, Bounds, InsertResult

logger = logging.getLogger(__name__)

BASE_OFFSET = 40.0
STEP = 16.0
MAX_STEPS = 8
IDLE_RESET_SECONDS = 5.0

# How long the active context id is trusted without asking the host again
CONTEXT_TTL_SECONDS = 1.5


class HostDocument(Protocol):
    """Host document primitives. Implementations raise ``HostError`` subclasses."""

    async def set_selected_svg(
        self, svg: str, *, left: float, top: float, width: float, height: float,
    ) -> None: ...

    async def get_selected_shapes(self) -> Sequence[Bounds]: ...

    async def get_active_context_id(self) -> str: ...

    async def select_context(self, context_id: str) -> None: ...


@dataclass
class InsertPositionState:
    offset_index: int = 0
    last_used_at: float = 0.0


class CascadePlacer:
    """Per-context cascading default positions."""

    def __init__(
        self,
        *,
        base_offset: float = BASE_OFFSET,
        step: float = STEP,
        max_steps: int = MAX_STEPS,
        idle_reset: float = IDLE_RESET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_steps < 1:
            raise ValueError(f"max_steps must be positive, got {max_steps}")
        self._base_offset = base_offset
        self._step = step
        self._max_steps = max_steps
        self._idle_reset = idle_reset
        self._clock = clock
        self._states: dict[str, InsertPositionState] = {}

    def next_position(self, context_id: str) -> tuple[float, float]:
        now = self._clock()
        state = self._states.get(context_id)
        if state is None or now - state.last_used_at > self._idle_reset:
            state = InsertPositionState()
            self._states[context_id] = state
        index = state.offset_index
        state.offset_index = (index + 1) % self._max_steps
        state.last_used_at = now
        offset = self._base_offset + index * self._step
        return offset, offset

    def reset(self) -> None:
        self._states.clear()


class InsertionCoordinator:
    """FIFO actor that owns every host mutation."""

    def __init__(
        self,
        store: AssetArchiveStore,
        host: HostDocument,
        *,
        replace_mode: bool = False,
        placer: Optional[CascadePlacer] = None,
        insert_size: float = DEFAULT_INSERT_SIZE,
        context_ttl: float = CONTEXT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        on_inserted: Optional[Callable[[Asset, InsertResult], None]] = None,
        on_error: Optional[Callable[[Asset, Exception], None]] = None,
    ):
        self._store = store
        self._host = host
        self.replace_mode = replace_mode
        self._placer = placer or CascadePlacer(clock=clock)
        self._insert_size = insert_size
        self._context_ttl = context_ttl
        self._clock = clock
        self._on_inserted = on_inserted
        self._on_error = on_error

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._prepared: dict[str, str] = {}
        self._context: Optional[tuple[str, float]] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def insert(self, asset: Asset) -> "asyncio.Future[InsertResult]":
        """Queue an insertion; the returned future settles when it has run."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.put_nowait((asset, future))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run(), name="svgshelf-insertion")
        return future

    async def drain(self) -> None:
        """Wait until everything queued so far has run."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            asset, future = await self._queue.get()
            try:
                if future.cancelled():
                    continue
                try:
                    result = await self._perform(asset)
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as e:  # belongs to this request only
                    self._context = None
                    logger.warning("Insertion of %s failed: %s", asset.name, e)
                    if not future.cancelled():
                        future.set_exception(e)
                    self._notify(self._on_error, asset, e)
                    continue
                if not future.cancelled():
                    future.set_result(result)
                self._notify(self._on_inserted, asset, result)
            finally:
                self._queue.task_done()

    @staticmethod
    def _notify(callback: Optional[Callable], asset: Asset, outcome: object) -> None:
        """Run a listener after the request's future has settled."""
        if callback is None:
            return
        try:
            callback(asset, outcome)
        except Exception as e:
            logger.warning("Insertion listener for %s failed: %s", asset.name, e)

    async def _perform(self, asset: Asset) -> InsertResult:
        svg = await self.prepared_svg(asset)
        context_id = await self._active_context()
        bounds, replaced = await self._placement(svg, context_id)

        attempts = 1
        try:
            await self._mutate(svg, bounds)
        except HostSelectionError as e:
            logger.info("Selection invalid while inserting %s (%s); reselecting %s",
                        asset.name, e, context_id)
            await self._host.select_context(context_id)
            attempts = 2
            await self._mutate(svg, bounds)

        logger.info("Inserted %s into %s", asset.name, context_id)
        return InsertResult(
            asset_name=asset.name,
            context_id=context_id,
            bounds=bounds,
            replaced_selection=replaced,
            attempts=attempts,
        )

    async def _mutate(self, svg: str, bounds: Bounds) -> None:
        await self._host.set_selected_svg(
            svg,
            left=bounds.left,
            top=bounds.top,
            width=bounds.width,
            height=bounds.height,
        )

    async def prepared_svg(self, asset: Asset) -> str:
        """Normalized SVG for an asset, computed once per archive generation."""
        svg = self._prepared.get(asset.name)
        if svg is None:
            raw = asset.content
            if raw is None:
                raw = await self._store.get_content(asset.name)
            svg = normalize_svg(raw)
            self._prepared[asset.name] = svg
        return svg

    async def _active_context(self) -> str:
        now = self._clock()
        if self._context is not None:
            context_id, fetched_at = self._context
            if now - fetched_at < self._context_ttl:
                return context_id
        context_id = await self._host.get_active_context_id()
        self._context = (context_id, now)
        return context_id

    async def _placement(self, svg: str, context_id: str) -> tuple[Bounds, bool]:
        if self.replace_mode:
            shapes = await self._host.get_selected_shapes()
            if len(shapes) == 1:
                return shapes[0], True
        width, height = fit_size(svg, self._insert_size)
        left, top = self._placer.next_position(context_id)
        return Bounds(left=left, top=top, width=width, height=height), False

    def reset(self) -> None:
        """Forget per-archive state (prepared SVG, positions, context)."""
        self._prepared.clear()
        self._placer.reset()
        self._context = None

    async def close(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            self._queue.task_done()
            future.cancel()
