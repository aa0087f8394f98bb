"""
svgshelf: browse, search and insert SVG images from a local archive.
"""

__version__ = "0.3.0"

from .archive import AssetArchiveStore, InProcessArchiveSession, WorkerArchiveSession
from .config import LibraryConfig, load_config, load_or_create_config
from .errors import (
    HostFatalError,
    HostSelectionError,
    NotFoundError,
    ParseError,
    StorageUnavailable,
    SvgShelfError,
    WorkerUnavailable,
)
from .insertion import InsertionCoordinator
from .library import Library
from .render import HandleRegistry, RenderScheduler
from .search import SearchIndex
from .thesaurus import Thesaurus
from .types import Asset, Bounds, IngestResult, IngestStats, InsertResult

__all__ = [
    "Asset",
    "AssetArchiveStore",
    "Bounds",
    "HandleRegistry",
    "HostFatalError",
    "HostSelectionError",
    "IngestResult",
    "IngestStats",
    "InProcessArchiveSession",
    "InsertResult",
    "InsertionCoordinator",
    "Library",
    "LibraryConfig",
    "NotFoundError",
    "ParseError",
    "RenderScheduler",
    "SearchIndex",
    "StorageUnavailable",
    "SvgShelfError",
    "Thesaurus",
    "WorkerArchiveSession",
    "WorkerUnavailable",
    "load_config",
    "load_or_create_config",
]
