"""
Configuration management for svgshelf libraries.

The configuration is stored as a TOML file in the library home directory.
It selects the decompression strategy, insertion behaviour, default query
modes and the locations of the offline metadata artifacts.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# tomli_w for writing TOML (tomllib is read-only)
try:
    import tomli_w
except ImportError:
    tomli_w = None  # type: ignore

from .types import FILTER_ALL, SORT_ALPHA, validate_filter_mode, validate_sort_mode


CONFIG_FILENAME = "svgshelf.toml"
CONFIG_VERSION = 1
DEFAULT_BATCH_SIZE = 48


def get_default_home() -> Path:
    """Library home: $SVGSHELF_HOME, else ~/.svgshelf."""
    env = os.environ.get("SVGSHELF_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".svgshelf"


@dataclass
class LibraryConfig:
    """Complete library configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Decompress archive entries in a separate process
    use_worker: bool = True
    # Reuse the bounds of a single selected shape when inserting
    replace_mode: bool = False

    default_sort: str = SORT_ALPHA
    default_filter: str = FILTER_ALL
    batch_size: int = DEFAULT_BATCH_SIZE

    # Offline artifacts; relative paths resolve against the library home
    synonyms_path: Optional[Path] = None
    keywords_path: Optional[Path] = None

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def cache_path(self) -> Path:
        """SQLite database holding the archive slot and preferences."""
        return self.path / "cache.db"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def resolve(self, p: Optional[Path]) -> Optional[Path]:
        if p is None:
            return None
        p = Path(p).expanduser()
        return p if p.is_absolute() else self.path / p


def load_config(home: Path) -> LibraryConfig:
    """
    Load configuration from a library home directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = home / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    library = data.get("library", {})
    version = library.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    search = data.get("search", {})
    insert = data.get("insert", {})
    metadata = data.get("metadata", {})

    def optional_path(value: Any) -> Optional[Path]:
        return Path(value) if value else None

    batch_size = int(search.get("batch_size", DEFAULT_BATCH_SIZE))
    if batch_size < 1:
        raise ValueError(f"search.batch_size must be positive, got {batch_size}")

    return LibraryConfig(
        path=home,
        version=version,
        created=library.get("created", ""),
        use_worker=bool(library.get("use_worker", True)),
        replace_mode=bool(insert.get("replace_mode", False)),
        default_sort=validate_sort_mode(search.get("sort", SORT_ALPHA)),
        default_filter=validate_filter_mode(search.get("filter", FILTER_ALL)),
        batch_size=batch_size,
        synonyms_path=optional_path(metadata.get("synonyms")),
        keywords_path=optional_path(metadata.get("keywords")),
    )


def save_config(config: LibraryConfig) -> None:
    """
    Save configuration to the library home.

    Creates the directory if it doesn't exist.
    """
    if tomli_w is None:
        raise RuntimeError("tomli_w is required to save config. Install with: pip install tomli-w")

    config.path.mkdir(parents=True, exist_ok=True)

    metadata: dict[str, str] = {}
    if config.synonyms_path is not None:
        metadata["synonyms"] = str(config.synonyms_path)
    if config.keywords_path is not None:
        metadata["keywords"] = str(config.keywords_path)

    data: dict[str, Any] = {
        "library": {
            "version": config.version,
            "created": config.created,
            "use_worker": config.use_worker,
        },
        "search": {
            "sort": config.default_sort,
            "filter": config.default_filter,
            "batch_size": config.batch_size,
        },
        "insert": {
            "replace_mode": config.replace_mode,
        },
    }
    if metadata:
        data["metadata"] = metadata

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(home: Path) -> LibraryConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = home / CONFIG_FILENAME

    if config_path.exists():
        return load_config(home)
    config = LibraryConfig(path=home)
    save_config(config)
    return config
