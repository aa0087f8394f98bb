"""
SVG text preparation for insertion and preview.
"""

import re
from typing import Optional

SVG_NAMESPACE = "http://www.w3.org/2000/svg"

# Longest side of an inserted image when no selection is reused, in points
DEFAULT_INSERT_SIZE = 120.0

_BOM = "\ufeff"
_PROLOG_RE = re.compile(r"<\?xml[^>]*>\s*", re.IGNORECASE)
_DOCTYPE_RE = re.compile(r"<!DOCTYPE[^>]*>\s*", re.IGNORECASE)
_SVG_OPEN_RE = re.compile(r"<svg(\s|>)", re.IGNORECASE)
_SVG_TAG_RE = re.compile(r"<svg\b[^>]*>", re.IGNORECASE)
_VIEWBOX_RE = re.compile(r"""\bviewBox\s*=\s*["']([^"']*)["']""", re.IGNORECASE)
_LENGTH_RE = r"""\b{attr}\s*=\s*["']\s*([0-9]*\.?[0-9]+)\s*(px|pt)?\s*["']"""


def normalize_svg(text: str) -> str:
    """Strip BOM, XML prolog and DOCTYPE; make sure the root declares the SVG namespace."""
    svg = text.lstrip(_BOM).strip()
    svg = _PROLOG_RE.sub("", svg, count=1)
    svg = _DOCTYPE_RE.sub("", svg, count=1)
    if "xmlns=" not in svg:
        svg = _SVG_OPEN_RE.sub(lambda m: f'<svg xmlns="{SVG_NAMESPACE}"{m.group(1)}', svg, count=1)
    return svg


def _root_tag(svg: str) -> Optional[str]:
    match = _SVG_TAG_RE.search(svg)
    return match.group(0) if match else None


def _length(tag: str, attr: str) -> Optional[float]:
    match = re.search(_LENGTH_RE.format(attr=attr), tag, re.IGNORECASE)
    if not match:
        return None
    value = float(match.group(1))
    return value if value > 0 else None


def intrinsic_size(svg: str) -> Optional[tuple[float, float]]:
    """Width and height from the viewBox, else from width/height attributes."""
    tag = _root_tag(svg)
    if tag is None:
        return None
    viewbox = _VIEWBOX_RE.search(tag)
    if viewbox:
        parts = re.split(r"[\s,]+", viewbox.group(1).strip())
        if len(parts) == 4:
            try:
                width, height = float(parts[2]), float(parts[3])
            except ValueError:
                width = height = 0.0
            if width > 0 and height > 0:
                return width, height
    width = _length(tag, "width")
    height = _length(tag, "height")
    if width and height:
        return width, height
    return None


def fit_size(svg: str, box: float = DEFAULT_INSERT_SIZE) -> tuple[float, float]:
    """Scale the image's aspect ratio into a ``box`` x ``box`` square."""
    size = intrinsic_size(svg)
    if size is None:
        return box, box
    width, height = size
    if width >= height:
        return box, round(box * height / width, 2)
    return round(box * width / height, 2), box
