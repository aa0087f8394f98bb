"""
Text normalization shared by indexing, querying and metadata loading.

The same ``normalize`` is applied at index-build time and at query time so
that tokens always compare equal.
"""

import re
import unicodedata

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize(text: str) -> str:
    """Lowercase, strip diacritics, collapse non-alphanumeric runs, trim.

    >>> normalize("  Café_Logo--2024.SVG ")
    'cafe logo 2024 svg'
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(text))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM_RE.sub(" ", stripped.lower()).strip()


def tokenize(text: str) -> list[str]:
    """Split normalized text into non-empty tokens."""
    return normalize(text).split()


def depluralize(token: str) -> list[str]:
    """Candidate singular forms of a token, most specific rule first.

    ``berries`` -> ``berry``; ``boxes`` -> ``box``; ``cars`` -> ``car``.
    A token ending in ``es`` also yields the ``s`` rule (``shoes`` -> ``shoe``).
    """
    candidates: list[str] = []
    if token.endswith("ies") and len(token) > 3:
        candidates.append(token[:-3] + "y")
    if token.endswith("es") and len(token) > 2:
        candidates.append(token[:-2])
    if token.endswith("s") and len(token) > 1:
        candidates.append(token[:-1])
    return [c for c in dict.fromkeys(candidates) if c]
