"""
Archive ingestion and lazy entry decompression.

An archive is a ZIP container of SVG files. Ingesting it only reads the
central directory: the entry list is filtered to the supported extension,
flattened to base names, deduplicated (first occurrence wins) and sorted.
Entry bytes are decompressed one at a time, on demand, when something
actually needs the image.

Decompression runs behind an ``ArchiveSession``. Two variants exist:

- ``WorkerArchiveSession`` keeps the archive in a spawned worker process
  and talks to it with ``{id, type, payload}`` request messages answered by
  ``{id, ok, payload | error}`` responses, correlated by id.
- ``InProcessArchiveSession`` does the same work in the calling process.

``AssetArchiveStore`` starts with the worker when enabled. The first time
the worker cannot be created or fails a call, the store switches to the
in-process session for the rest of its life and repeats the call there.
Callers see identical results either way.
"""

import asyncio
import concurrent.futures
import io
import logging
import multiprocessing
import queue
import threading
import zipfile
import zlib
from typing import Any, Callable, Optional, Protocol

from .errors import NotFoundError, ParseError, SvgShelfError, WorkerUnavailable
from .types import SUPPORTED_EXTENSION, ArchiveEntry, IngestResult, IngestStats

logger = logging.getLogger(__name__)

# A worker call that takes longer than this is treated as a dead worker
WORKER_TIMEOUT_SECONDS = 30.0

# How often the response reader checks whether the worker is still alive
_POLL_INTERVAL = 0.2


def extract_file_name(path: str) -> str:
    """Base name of an archive path, accepting both separator styles."""
    if not path:
        return ""
    return path.replace("\\", "/").split("/")[-1]


def _is_supported(path: str) -> bool:
    return path.lower().endswith("." + SUPPORTED_EXTENSION)


def _sort_key(entry: ArchiveEntry) -> tuple[str, str]:
    return (entry.name.casefold(), entry.name)


class ArchiveReader:
    """
    Synchronous archive access shared by both session variants.

    Holds the open ``ZipFile`` and the base-name -> entry-path map for the
    currently loaded archive.
    """

    def __init__(self) -> None:
        self._zip: Optional[zipfile.ZipFile] = None
        self._entries: dict[str, str] = {}

    def open(self, buffer: bytes) -> IngestResult:
        """Load an archive buffer and enumerate its supported entries.

        Raises:
            ParseError: If the buffer is missing or not a valid ZIP container
        """
        self.reset()
        if not buffer:
            raise ParseError("Archive buffer is empty")
        try:
            archive = zipfile.ZipFile(io.BytesIO(bytes(buffer)))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, EOFError) as e:
            raise ParseError(f"Malformed archive: {e}") from e

        entries: dict[str, str] = {}
        items: list[ArchiveEntry] = []
        ignored = 0
        duplicates = 0

        for info in archive.infolist():
            if info.is_dir():
                continue
            if not _is_supported(info.filename):
                ignored += 1
                continue
            name = extract_file_name(info.filename)
            if not name:
                ignored += 1
                continue
            if name in entries:
                duplicates += 1
                continue
            entries[name] = info.filename
            items.append(ArchiveEntry(name=name, path=info.filename))

        items.sort(key=_sort_key)
        self._zip = archive
        self._entries = entries
        return IngestResult(
            items=items,
            stats=IngestStats(total=len(items), duplicates=duplicates, ignored=ignored),
        )

    def read(self, name: str) -> str:
        """Decompress one entry as text.

        Raises:
            NotFoundError: If no archive is loaded or the name is unknown
            ParseError: If the entry is corrupt or not UTF-8 text
        """
        if self._zip is None:
            raise NotFoundError("No archive loaded")
        if not name:
            raise NotFoundError("Missing file name")
        path = self._entries.get(name)
        if path is None:
            raise NotFoundError(f"{name} not found in archive")
        try:
            data = self._zip.read(path)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError) as e:
            raise ParseError(f"Corrupt archive entry {name}: {e}") from e
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"{name} is not UTF-8 text: {e}") from e

    def reset(self) -> None:
        if self._zip is not None:
            self._zip.close()
        self._zip = None
        self._entries = {}


class ArchiveSession(Protocol):
    """Where decompression happens. Selected at construction, swappable on failure."""

    async def load(self, buffer: bytes) -> IngestResult: ...

    async def get_content(self, name: str) -> str: ...

    async def reset(self) -> None: ...

    def close(self) -> None: ...


class InProcessArchiveSession:
    """Decompression in the calling process."""

    def __init__(self) -> None:
        self._reader = ArchiveReader()

    async def load(self, buffer: bytes) -> IngestResult:
        return self._reader.open(buffer)

    async def get_content(self, name: str) -> str:
        return self._reader.read(name)

    async def reset(self) -> None:
        self._reader.reset()

    def close(self) -> None:
        self._reader.reset()


# -----------------------------------------------------------------------------
# Worker process
# -----------------------------------------------------------------------------

def _serialize_error(error: BaseException) -> dict[str, str]:
    if isinstance(error, (ParseError, NotFoundError)):
        kind = type(error).__name__
    else:
        kind = "WorkerUnavailable"
    return {"type": kind, "message": str(error) or type(error).__name__}


def _deserialize_error(error: Any) -> SvgShelfError:
    if not isinstance(error, dict):
        return WorkerUnavailable("Unknown worker error")
    message = error.get("message", "Unknown worker error")
    kind = error.get("type")
    if kind == "ParseError":
        return ParseError(message)
    if kind == "NotFoundError":
        return NotFoundError(message)
    return WorkerUnavailable(message)


def worker_main(requests, responses) -> None:
    """Worker process loop: answer requests until a ``None`` sentinel arrives."""
    reader = ArchiveReader()
    while True:
        message = requests.get()
        if message is None:
            break
        request_id = message.get("id") if isinstance(message, dict) else None
        kind = message.get("type") if isinstance(message, dict) else None
        if request_id is None or kind is None:
            continue
        payload = message.get("payload") or {}
        try:
            if kind == "load":
                result: Any = reader.open(payload.get("buffer"))
            elif kind == "get_content":
                result = reader.read(payload.get("name"))
            elif kind == "reset":
                reader.reset()
                result = {"ok": True}
            else:
                raise ValueError(f"Unknown message type: {kind}")
            responses.put({"id": request_id, "ok": True, "payload": result})
        except Exception as e:  # reported to the caller, never kills the loop
            responses.put({"id": request_id, "ok": False, "error": _serialize_error(e)})
    reader.reset()


class WorkerArchiveSession:
    """
    Decompression offloaded to a spawned worker process.

    Requests carry an integer id; a background thread reads responses and
    resolves the matching future. Any transport problem, a dead process or
    a timeout surfaces as ``WorkerUnavailable``.
    """

    def __init__(self, *, timeout: float = WORKER_TIMEOUT_SECONDS):
        self._timeout = timeout
        self._lock = threading.Lock()
        self._pending: dict[int, concurrent.futures.Future] = {}
        self._next_id = 0
        self._closed = False

        try:
            ctx = multiprocessing.get_context("spawn")
            self._requests = ctx.Queue()
            self._responses = ctx.Queue()
            self._process = ctx.Process(
                target=worker_main,
                args=(self._requests, self._responses),
                name="svgshelf-archive-worker",
                daemon=True,
            )
            self._process.start()
        except (OSError, RuntimeError, ValueError) as e:
            raise WorkerUnavailable(f"Could not start archive worker: {e}") from e

        self._reader_thread = threading.Thread(
            target=self._read_responses,
            name="svgshelf-archive-responses",
            daemon=True,
        )
        self._reader_thread.start()
        logger.debug("Archive worker started (pid %s)", self._process.pid)

    def _read_responses(self) -> None:
        while not self._closed:
            try:
                message = self._responses.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if not self._process.is_alive():
                    self._fail_pending(WorkerUnavailable("Archive worker exited"))
                    return
                continue
            except (EOFError, OSError, ValueError) as e:
                self._fail_pending(WorkerUnavailable(f"Archive worker channel closed: {e}"))
                return

            with self._lock:
                future = self._pending.pop(message.get("id"), None)
            if future is None:
                continue
            # The caller may have timed out and cancelled in the meantime
            try:
                if message.get("ok"):
                    future.set_result(message.get("payload"))
                else:
                    future.set_exception(_deserialize_error(message.get("error")))
            except concurrent.futures.InvalidStateError:
                pass

    def _fail_pending(self, error: WorkerUnavailable) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            try:
                future.set_exception(error)
            except concurrent.futures.InvalidStateError:
                pass

    def _submit(self, kind: str, payload: dict) -> concurrent.futures.Future:
        if self._closed or not self._process.is_alive():
            raise WorkerUnavailable("Archive worker is not running")
        future: concurrent.futures.Future = concurrent.futures.Future()
        with self._lock:
            self._next_id += 1
            request_id = self._next_id
            self._pending[request_id] = future
        try:
            self._requests.put({"id": request_id, "type": kind, "payload": payload})
        except (OSError, ValueError) as e:
            with self._lock:
                self._pending.pop(request_id, None)
            raise WorkerUnavailable(f"Archive worker unreachable: {e}") from e
        return future

    async def _request(self, kind: str, payload: dict) -> Any:
        future = self._submit(kind, payload)
        try:
            return await asyncio.wait_for(asyncio.wrap_future(future), self._timeout)
        except asyncio.TimeoutError as e:
            raise WorkerUnavailable(f"Archive worker timed out on {kind}") from e

    async def load(self, buffer: bytes) -> IngestResult:
        return await self._request("load", {"buffer": bytes(buffer)})

    async def get_content(self, name: str) -> str:
        return await self._request("get_content", {"name": name})

    async def reset(self) -> None:
        await self._request("reset", {})

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._requests.put(None)
        except (OSError, ValueError):
            pass
        self._process.join(timeout=2)
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=2)
        self._fail_pending(WorkerUnavailable("Archive worker closed"))
        logger.debug("Archive worker stopped")


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------

class AssetArchiveStore:
    """
    Owns the loaded archive and hands out entry contents.

    Contents are memoized per name; concurrent requests for the same name
    share one in-flight decompression. Reloading starts a new generation:
    memo and in-flight maps are dropped and late results from the previous
    generation are not memoized.
    """

    def __init__(
        self,
        *,
        use_worker: bool = True,
        worker_factory: Optional[Callable[[], ArchiveSession]] = None,
    ):
        """
        Args:
            use_worker: Try to decompress in a separate process first
            worker_factory: Builds the offloaded session (defaults to
                ``WorkerArchiveSession``)
        """
        self._use_worker = use_worker
        self._worker_factory = worker_factory or WorkerArchiveSession
        self._session: Optional[ArchiveSession] = None
        self._fell_back = False
        # True while the session came from the worker factory
        self._offloaded = False
        # Reload of the current buffer into the fallback session
        self._replay: Optional[asyncio.Future] = None

        self._buffer: Optional[bytes] = None
        self._names: frozenset[str] = frozenset()
        self._generation = 0
        self._contents: dict[str, str] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    @property
    def loaded(self) -> bool:
        return self._buffer is not None

    @property
    def using_worker(self) -> bool:
        return self._session is not None and self._offloaded

    @property
    def fell_back(self) -> bool:
        return self._fell_back

    def has(self, name: str) -> bool:
        return name in self._names

    def _current_session(self) -> ArchiveSession:
        if self._session is None:
            if self._use_worker and not self._fell_back:
                try:
                    self._session = self._worker_factory()
                    self._offloaded = True
                except (WorkerUnavailable, OSError, RuntimeError) as e:
                    self._switch_to_in_process(e)
            else:
                self._session = InProcessArchiveSession()
        return self._session

    def _switch_to_in_process(self, reason: Exception) -> None:
        logger.info("Archive worker unavailable (%s); decompressing in process", reason)
        old = self._session
        self._fell_back = True
        self._offloaded = False
        self._session = InProcessArchiveSession()
        if old is not None:
            try:
                old.close()
            except (WorkerUnavailable, OSError, ValueError) as e:
                logger.debug("Ignoring error while closing archive worker: %s", e)

    async def _call(self, op: str, *args: Any) -> Any:
        session = self._current_session()
        try:
            return await getattr(session, op)(*args)
        except WorkerUnavailable as e:
            if session is self._session:
                if not self._offloaded:
                    raise
                self._switch_to_in_process(e)
                if op != "load" and self._buffer is not None:
                    self._replay = asyncio.ensure_future(self._session.load(self._buffer))
            # Calls that were in flight on the dead worker wait for the
            # replay started by whichever of them switched first
            if self._replay is not None and op != "load":
                await asyncio.shield(self._replay)
            return await getattr(self._current_session(), op)(*args)

    async def ingest(self, buffer: bytes) -> IngestResult:
        """
        Load an archive and list its supported entries.

        Raises:
            ParseError: On a missing or malformed container. The store is
                left empty.
        """
        self._start_generation()
        self._buffer = None
        self._names = frozenset()
        if not buffer:
            raise ParseError("Archive buffer is empty")
        data = bytes(buffer)
        result = await self._call("load", data)
        self._buffer = data
        self._names = frozenset(item.name for item in result.items)
        logger.info(
            "Ingested archive: %d assets, %d duplicates, %d ignored",
            result.stats.total, result.stats.duplicates, result.stats.ignored,
        )
        return result

    async def get_content(self, name: str) -> str:
        """
        Text of one entry, decompressed on first use.

        Raises:
            NotFoundError: If no archive is loaded or the name is unknown
            ParseError: If the entry cannot be decoded
        """
        cached = self._contents.get(name)
        if cached is not None:
            return cached
        pending = self._inflight.get(name)
        if pending is None:
            pending = asyncio.ensure_future(self._decompress(name, self._generation))
            self._inflight[name] = pending
            pending.add_done_callback(lambda f, n=name: self._forget_inflight(n, f))
        # One caller's cancellation must not cancel the shared operation
        return await asyncio.shield(pending)

    def _forget_inflight(self, name: str, future: asyncio.Future) -> None:
        if self._inflight.get(name) is future:
            del self._inflight[name]
        if not future.cancelled():
            # Mark retrieved so unawaited failures are not reported as lost
            future.exception()

    async def _decompress(self, name: str, generation: int) -> str:
        if self._buffer is None:
            raise NotFoundError("No archive loaded")
        if name not in self._names:
            raise NotFoundError(f"{name} not found in archive")
        text = await self._call("get_content", name)
        if generation == self._generation:
            self._contents[name] = text
            logger.debug("Decompressed %s (%d chars)", name, len(text))
        return text

    def _start_generation(self) -> None:
        self._generation += 1
        self._contents = {}
        self._inflight = {}

    async def reset(self) -> None:
        """Forget the loaded archive."""
        self._start_generation()
        self._buffer = None
        self._names = frozenset()
        if self._session is not None:
            await self._call("reset")

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
