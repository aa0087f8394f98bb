"""
Shared pytest fixtures for svgshelf tests.

Provides in-memory ZIP archives and fakes for the collaborators that live
outside the library: the host document, the view and the frame clock.
"""

import asyncio
import io
import zipfile
from collections import Counter
from typing import Iterable, Union

import pytest

from svgshelf.archive import InProcessArchiveSession
from svgshelf.config import LibraryConfig
from svgshelf.types import Bounds


def svg(label: str = "x", *, viewbox: str = "0 0 100 100") -> str:
    """A small SVG document with an XML prolog and no namespace."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<svg viewBox="{viewbox}"><title>{label}</title><rect width="10" height="10"/></svg>'
    )


def make_zip(entries: Union[dict, Iterable[tuple[str, Union[str, bytes]]]]) -> bytes:
    """Build a ZIP archive in memory. Order of entries is preserved."""
    items = entries.items() if isinstance(entries, dict) else entries
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in items:
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(name, data)
    return buf.getvalue()


class CountingSession(InProcessArchiveSession):
    """In-process session that counts decompressions and yields to the loop."""

    def __init__(self):
        super().__init__()
        self.content_calls: Counter = Counter()
        self.load_calls = 0

    async def load(self, buffer):
        self.load_calls += 1
        return await super().load(buffer)

    async def get_content(self, name):
        self.content_calls[name] += 1
        await asyncio.sleep(0)
        return await super().get_content(name)


class ManualFrames:
    """Frame scheduler driven by the test: nothing runs until asked."""

    def __init__(self):
        self.callbacks = []

    def request_frame(self, callback):
        self.callbacks.append(callback)

    def run_next(self) -> bool:
        if not self.callbacks:
            return False
        self.callbacks.pop(0)()
        return True

    def run_all(self, limit: int = 10_000) -> int:
        frames = 0
        while self.callbacks and frames < limit:
            self.run_next()
            frames += 1
        return frames


class RecordingView:
    """Result view that records everything the renderer does to it."""

    def __init__(self):
        self.tiles = []
        self.batches = []
        self.observed = []
        self.hydrated = []
        self.clears = 0
        self.empty_shown = 0

    def clear(self):
        self.clears += 1
        self.tiles = []

    def show_empty(self):
        self.empty_shown += 1

    def append_tiles(self, tiles):
        self.batches.append(len(tiles))
        self.tiles.extend(tiles)

    def observe(self, asset):
        self.observed.append(asset.name)

    def hydrate(self, asset, handle):
        self.hydrated.append((asset.name, handle))


class FakeHost:
    """Host document double with scripted failures and reentrancy tracking."""

    def __init__(self, context_id: str = "slide-1"):
        self.context_id = context_id
        self.inserted: list[tuple[str, Bounds]] = []
        self.selected_shapes: list[Bounds] = []
        self.failures: list[Exception] = []
        self.context_calls = 0
        self.select_calls: list[str] = []
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    async def set_selected_svg(self, svg, *, left, top, width, height):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.failures:
                raise self.failures.pop(0)
            self.inserted.append((svg, Bounds(left, top, width, height)))
        finally:
            self.in_flight -= 1

    async def get_selected_shapes(self):
        return list(self.selected_shapes)

    async def get_active_context_id(self):
        self.context_calls += 1
        return self.context_id

    async def select_context(self, context_id):
        self.select_calls.append(context_id)


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sample_archive() -> bytes:
    return make_zip([
        ("logos/Rocket.svg", svg("rocket")),
        ("logos/Cloud.svg", svg("cloud", viewbox="0 0 200 100")),
        ("logos/Blue Sky.svg", svg("sky")),
        ("logos/Berry.svg", svg("berry")),
        ("logos/readme.txt", "not an image"),
    ])


@pytest.fixture
def library_config(tmp_path) -> LibraryConfig:
    """In-process decompression, isolated home."""
    return LibraryConfig(path=tmp_path / "home", use_worker=False)


@pytest.fixture
def frames() -> ManualFrames:
    return ManualFrames()


@pytest.fixture
def view() -> RecordingView:
    return RecordingView()


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
