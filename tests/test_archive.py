"""
Tests for archive ingestion and lazy decompression.

Covers deduplication and ordering, the worker/in-process equivalence,
the one-time fallback when the worker fails, and request coalescing.
"""

import asyncio

import pytest

from svgshelf.archive import (
    ArchiveReader,
    AssetArchiveStore,
    InProcessArchiveSession,
    WorkerArchiveSession,
    extract_file_name,
)
from svgshelf.errors import NotFoundError, ParseError, WorkerUnavailable
from tests.conftest import CountingSession, make_zip, svg


def _names(result):
    return [item.name for item in result.items]


def _failing_factory():
    raise WorkerUnavailable("simulated spawn failure")


class FlakySession(InProcessArchiveSession):
    """Worker stand-in that dies on the first content request."""

    def __init__(self):
        super().__init__()
        self.closed = False

    async def get_content(self, name):
        raise WorkerUnavailable("worker crashed")

    def close(self):
        self.closed = True
        super().close()


class DyingSession(InProcessArchiveSession):
    """Worker stand-in that holds content requests, then fails them all."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()
        self.waiting = 0

    async def get_content(self, name):
        self.waiting += 1
        await self.release.wait()
        raise WorkerUnavailable("worker died")


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

class TestIngest:
    """Tests for archive ingestion and entry listing."""

    @pytest.mark.asyncio
    async def test_duplicate_base_names_keep_first(self):
        """Should keep the first entry when base names collide."""
        buffer = make_zip([
            ("Acme.svg", svg("first")),
            ("sub/Acme.svg", svg("second")),
            ("Beta.svg", svg("beta")),
        ])
        store = AssetArchiveStore(use_worker=False)
        result = await store.ingest(buffer)

        assert _names(result) == ["Acme.svg", "Beta.svg"]
        assert result.stats.total == 2
        assert result.stats.duplicates == 1
        assert "first" in await store.get_content("Acme.svg")

    @pytest.mark.asyncio
    async def test_filters_extension_and_skips_directories(self):
        """Should list only .svg files and skip directory entries."""
        buffer = make_zip([
            ("icons/", b""),
            ("icons/a.SVG", svg()),
            ("icons/notes.txt", "text"),
            ("icons/b.png", b"\x89PNG"),
        ])
        result = await AssetArchiveStore(use_worker=False).ingest(buffer)

        assert _names(result) == ["a.SVG"]
        assert result.stats.ignored == 2
        assert result.stats.duplicates == 0

    @pytest.mark.asyncio
    async def test_sorted_by_name_case_insensitively(self):
        """Should order entries by name ignoring case."""
        buffer = make_zip([("zeta.svg", svg()), ("Alpha.svg", svg()), ("beta.svg", svg())])
        result = await AssetArchiveStore(use_worker=False).ingest(buffer)
        assert _names(result) == ["Alpha.svg", "beta.svg", "zeta.svg"]

    @pytest.mark.asyncio
    async def test_malformed_container(self):
        """Should raise ParseError for a buffer that is not a zip."""
        store = AssetArchiveStore(use_worker=False)
        with pytest.raises(ParseError):
            await store.ingest(b"definitely not a zip file")
        assert not store.loaded

    @pytest.mark.asyncio
    async def test_empty_buffer(self):
        """Should raise ParseError for an empty buffer."""
        with pytest.raises(ParseError):
            await AssetArchiveStore(use_worker=False).ingest(b"")

    def test_extract_file_name(self):
        """Should take the base name from nested and flat paths."""
        assert extract_file_name("a/b/c.svg") == "c.svg"
        assert extract_file_name("a\\b\\c.svg") == "c.svg"
        assert extract_file_name("c.svg") == "c.svg"
        assert extract_file_name("") == ""


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

class TestGetContent:
    """Tests for lazy, memoized entry decompression."""

    @pytest.mark.asyncio
    async def test_unknown_name(self):
        """Should raise NotFoundError for a name the archive lacks."""
        store = AssetArchiveStore(use_worker=False)
        await store.ingest(make_zip({"a.svg": svg()}))
        with pytest.raises(NotFoundError):
            await store.get_content("missing.svg")

    @pytest.mark.asyncio
    async def test_nothing_loaded(self):
        """Should raise NotFoundError before any archive is loaded."""
        with pytest.raises(NotFoundError):
            await AssetArchiveStore(use_worker=False).get_content("a.svg")

    @pytest.mark.asyncio
    async def test_non_utf8_entry(self):
        """Should raise ParseError for an entry that is not UTF-8."""
        store = AssetArchiveStore(use_worker=False)
        await store.ingest(make_zip([("bad.svg", b"\xff\xfe\xfa<svg/>")]))
        with pytest.raises(ParseError):
            await store.get_content("bad.svg")

    @pytest.mark.asyncio
    async def test_memoized(self):
        """Should decompress each entry once across repeated requests."""
        session = CountingSession()
        store = AssetArchiveStore(worker_factory=lambda: session)
        await store.ingest(make_zip({"a.svg": svg("a")}))

        first = await store.get_content("a.svg")
        second = await store.get_content("a.svg")

        assert first == second
        assert session.content_calls["a.svg"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_decompression(self):
        """Should coalesce concurrent requests for one name."""
        session = CountingSession()
        store = AssetArchiveStore(worker_factory=lambda: session)
        await store.ingest(make_zip({"a.svg": svg("a"), "b.svg": svg("b")}))

        results = await asyncio.gather(
            store.get_content("a.svg"),
            store.get_content("a.svg"),
            store.get_content("a.svg"),
            store.get_content("b.svg"),
        )

        assert results[0] == results[1] == results[2]
        assert session.content_calls == {"a.svg": 1, "b.svg": 1}

    @pytest.mark.asyncio
    async def test_failure_not_memoized(self):
        """Should retry a failed entry on the next request."""
        store = AssetArchiveStore(use_worker=False)
        await store.ingest(make_zip({"a.svg": svg()}))
        for _ in range(2):
            with pytest.raises(NotFoundError):
                await store.get_content("nope.svg")

    @pytest.mark.asyncio
    async def test_reingest_replaces_contents(self):
        """Should serve the new archive's contents after a reload."""
        store = AssetArchiveStore(use_worker=False)
        await store.ingest(make_zip({"a.svg": svg("old")}))
        assert "old" in await store.get_content("a.svg")

        await store.ingest(make_zip({"a.svg": svg("new")}))
        assert "new" in await store.get_content("a.svg")

    @pytest.mark.asyncio
    async def test_reset_forgets_archive(self):
        """Should forget entries and contents on reset."""
        store = AssetArchiveStore(use_worker=False)
        await store.ingest(make_zip({"a.svg": svg()}))
        await store.reset()
        assert not store.loaded
        with pytest.raises(NotFoundError):
            await store.get_content("a.svg")


# ---------------------------------------------------------------------------
# Worker fallback
# ---------------------------------------------------------------------------

class TestWorkerFallback:
    """Tests for the one-time fallback to in-process decompression."""

    @pytest.mark.asyncio
    async def test_spawn_failure_matches_in_process_result(self):
        """Should ingest identically when the worker cannot start."""
        buffer = make_zip([
            ("x/Zed.svg", svg("z")),
            ("Acme.svg", svg("a")),
            ("y/Acme.svg", svg("dup")),
            ("notes.md", "#"),
        ])
        reference = await AssetArchiveStore(use_worker=False).ingest(buffer)

        store = AssetArchiveStore(worker_factory=_failing_factory)
        result = await store.ingest(buffer)

        assert store.fell_back
        assert result == reference
        assert "a" in await store.get_content("Acme.svg")

    @pytest.mark.asyncio
    async def test_call_failure_replays_archive_in_process(self):
        """Should reload the archive in process when a worker call fails."""
        flaky = FlakySession()
        store = AssetArchiveStore(worker_factory=lambda: flaky)
        await store.ingest(make_zip({"a.svg": svg("payload")}))
        assert store.using_worker

        content = await store.get_content("a.svg")

        assert "payload" in content
        assert store.fell_back
        assert not store.using_worker
        assert flaky.closed

    @pytest.mark.asyncio
    async def test_every_pending_call_recovers_when_worker_dies(self):
        """Should answer all in-flight requests in process after the worker dies."""
        dying = DyingSession()
        store = AssetArchiveStore(worker_factory=lambda: dying)
        await store.ingest(make_zip({"a.svg": svg("alpha"), "b.svg": svg("beta")}))

        first = asyncio.ensure_future(store.get_content("a.svg"))
        second = asyncio.ensure_future(store.get_content("b.svg"))
        for _ in range(10):
            await asyncio.sleep(0)
        assert dying.waiting == 2

        dying.release.set()
        a, b = await asyncio.wait_for(asyncio.gather(first, second), 1.0)

        assert "alpha" in a
        assert "beta" in b
        assert store.fell_back
        assert not store.using_worker

    @pytest.mark.asyncio
    async def test_fallback_is_permanent(self):
        """Should not try the worker again after falling back."""
        created = []

        def factory():
            created.append(1)
            raise WorkerUnavailable("nope")

        store = AssetArchiveStore(worker_factory=factory)
        await store.ingest(make_zip({"a.svg": svg()}))
        await store.ingest(make_zip({"b.svg": svg()}))
        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_parse_error_is_not_a_worker_failure(self):
        """Should surface ParseError without falling back."""
        session = CountingSession()
        store = AssetArchiveStore(worker_factory=lambda: session)
        with pytest.raises(ParseError):
            await store.ingest(b"garbage")
        assert not store.fell_back


class TestWorkerProcess:
    """Exercises a real spawned worker."""

    @pytest.mark.asyncio
    async def test_worker_matches_in_process(self):
        """Should return the same listing and contents as in-process."""
        buffer = make_zip([
            ("b/Beta.svg", svg("beta")),
            ("Acme.svg", svg("acme")),
            ("sub/Acme.svg", svg("dup")),
            ("skip.txt", "x"),
        ])
        reference = await AssetArchiveStore(use_worker=False).ingest(buffer)

        store = AssetArchiveStore(use_worker=True)
        try:
            result = await store.ingest(buffer)
            assert result == reference
            assert "acme" in await store.get_content("Acme.svg")
            with pytest.raises(NotFoundError):
                await store.get_content("Gamma.svg")
        finally:
            store.close()

    @pytest.mark.asyncio
    async def test_worker_reports_parse_errors(self):
        """Should carry ParseError back from the worker."""
        session = WorkerArchiveSession()
        try:
            with pytest.raises(ParseError):
                await session.load(b"not a zip")
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_closed_worker_is_unavailable(self):
        """Should raise WorkerUnavailable once the worker is closed."""
        session = WorkerArchiveSession()
        session.close()
        with pytest.raises(WorkerUnavailable):
            await session.get_content("a.svg")


class TestArchiveReader:
    """Tests for the zip reader used by both sessions."""

    def test_read_before_open(self):
        """Should refuse reads before a buffer is opened."""
        with pytest.raises(NotFoundError):
            ArchiveReader().read("a.svg")

    def test_backslash_paths(self):
        """Should treat backslashes as path separators."""
        reader = ArchiveReader()
        result = reader.open(make_zip([("dir\\Gamma.svg", svg("g"))]))
        assert [i.name for i in result.items] == ["Gamma.svg"]
        assert "g" in reader.read("Gamma.svg")
