"""
Synonym thesaurus used for query expansion.

The thesaurus is built offline (see ``build_wordnet_thesaurus``) and loaded
once as immutable data: normalized term -> ordered related terms.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from .errors import ParseError
from .text import depluralize, normalize

logger = logging.getLogger(__name__)

# Related terms considered per query token
SYNONYM_CAP = 6

WORDNET_DATA_FILES = ("data.noun", "data.verb", "data.adj", "data.adv")


class Thesaurus:
    """Immutable term -> related-terms table."""

    def __init__(self, items: Optional[Mapping[str, Iterable[str]]] = None):
        table: dict[str, tuple[str, ...]] = {}
        for term, related in (items or {}).items():
            key = normalize(term)
            if not key:
                continue
            values = [normalize(r) for r in related or ()]
            unique = tuple(v for v in dict.fromkeys(values) if v and v != key)
            if not unique:
                continue
            if key in table:
                unique = tuple(dict.fromkeys(table[key] + unique))
            table[key] = unique
        self._items = MappingProxyType(table)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, term: object) -> bool:
        return term in self._items

    def lookup(self, term: str) -> tuple[str, ...]:
        """Direct entry only, no plural handling."""
        return self._items.get(term, ())

    def related(self, token: str, cap: int = SYNONYM_CAP) -> tuple[str, ...]:
        """
        Related terms for a normalized query token.

        Falls back to singular forms (``ies`` -> ``y``, ``es`` -> ``""``,
        ``s`` -> ``""``) when the token has no entry of its own.
        """
        if not token or cap <= 0:
            return ()
        terms = self._items.get(token)
        if terms is None:
            for singular in depluralize(token):
                terms = self._items.get(singular)
                if terms is not None:
                    break
        if not terms:
            return ()
        return tuple(t for t in terms if t != token)[:cap]

    @classmethod
    def from_json(cls, data: Any) -> "Thesaurus":
        """Accept ``{"items": {...}}`` or a bare ``{term: [...]}`` mapping."""
        if isinstance(data, dict) and isinstance(data.get("items"), dict):
            data = data["items"]
        if not isinstance(data, dict):
            raise ParseError("Synonym data must be a JSON object")
        for term, related in data.items():
            if not isinstance(related, list):
                raise ParseError(f"Synonyms for {term!r} must be a list")
        return cls(data)


def load_thesaurus(path: Optional[Path]) -> Thesaurus:
    """
    Load a synonym artifact from disk.

    A missing file yields an empty thesaurus.

    Raises:
        ParseError: If the file is not valid synonym JSON
    """
    if path is None:
        return Thesaurus()
    if not path.exists():
        logger.info("No synonym data at %s", path)
        return Thesaurus()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid synonym JSON in {path}: {e}") from e
    thesaurus = Thesaurus.from_json(data)
    logger.debug("Loaded %d synonym entries from %s", len(thesaurus), path)
    return thesaurus


# -----------------------------------------------------------------------------
# Offline builder
# -----------------------------------------------------------------------------

def _wordnet_lemma(raw: str) -> str:
    return normalize(raw.replace("_", " "))


def parse_wordnet_line(line: str) -> list[str]:
    """Distinct normalized lemmas of one WordNet data line (empty for headers)."""
    if not line or line.startswith("  "):
        return []
    data = line.split(" | ", 1)[0]
    fields = data.split()
    if len(fields) < 5:
        return []
    try:
        word_count = int(fields[3], 16)
    except ValueError:
        return []
    words: list[str] = []
    index = 4
    for _ in range(word_count):
        if index >= len(fields):
            break
        lemma = _wordnet_lemma(fields[index])
        if lemma:
            words.append(lemma)
        index += 2  # skip lex_id
    return list(dict.fromkeys(words))


def build_wordnet_thesaurus(dict_dir: Path) -> dict[str, list[str]]:
    """
    Build a synonym table from WordNet data files.

    Every lemma of a synset becomes related to every other lemma of that
    synset. Lists are sorted.

    Raises:
        FileNotFoundError: If a WordNet data file is missing
    """
    synonyms: dict[str, set[str]] = {}
    for file_name in WORDNET_DATA_FILES:
        file_path = dict_dir / file_name
        if not file_path.exists():
            raise FileNotFoundError(f"Missing WordNet file: {file_path}")
        with open(file_path, encoding="utf-8", errors="replace") as f:
            for line in f:
                words = parse_wordnet_line(line.rstrip("\r\n"))
                if len(words) < 2:
                    continue
                for word in words:
                    related = synonyms.setdefault(word, set())
                    related.update(w for w in words if w != word)
    return {term: sorted(related) for term, related in synonyms.items() if related}


def write_thesaurus(items: dict[str, list[str]], path: Path, *, source: str = "WordNet") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "source": source,
        "items": items,
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False)
