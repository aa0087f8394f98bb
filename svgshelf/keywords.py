"""
Per-file keyword metadata.

Keywords are produced offline by an annotation process and shipped as
JSON. Two layouts are accepted:

    {"items": [{"file": "Acme.svg", "keywords": ["rocket", "space"]}, ...]}
    {"Acme.svg": ["rocket", "space"], ...}

A file without an entry simply has no keywords.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from .errors import ParseError

logger = logging.getLogger(__name__)


def parse_keywords(text: str) -> list[str]:
    """Split a raw ``;``-separated annotation into unique keywords.

    Comparison is case-insensitive; the first spelling is kept.
    """
    seen: set[str] = set()
    unique: list[str] = []
    for item in (text or "").split(";"):
        keyword = item.strip()
        if not keyword:
            continue
        key = keyword.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(keyword)
    return unique


def _clean(values: Any) -> list[str]:
    if not isinstance(values, list):
        raise ParseError("Keywords must be a list of strings")
    return parse_keywords(";".join(str(v) for v in values if v is not None))


def keywords_from_json(data: Any) -> dict[str, list[str]]:
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        table: dict[str, list[str]] = {}
        for entry in data["items"]:
            if not isinstance(entry, dict) or not entry.get("file"):
                raise ParseError("Keyword entries need a 'file' field")
            table[str(entry["file"])] = _clean(entry.get("keywords") or [])
        return table
    if isinstance(data, dict):
        return {str(name): _clean(values) for name, values in data.items()}
    raise ParseError("Keyword data must be a JSON object")


def load_keywords(path: Optional[Path]) -> dict[str, list[str]]:
    """
    Load keyword metadata from disk.

    A missing file yields an empty table.

    Raises:
        ParseError: If the file is not valid keyword JSON
    """
    if path is None:
        return {}
    if not path.exists():
        logger.info("No keyword data at %s", path)
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid keyword JSON in {path}: {e}") from e
    table = keywords_from_json(data)
    logger.debug("Loaded keywords for %d files from %s", len(table), path)
    return table
