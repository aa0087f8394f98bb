"""
Download of an archive for the initial load.

After this one fetch the library works offline from its local cache.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from .errors import SvgShelfError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class ArchiveFetchError(SvgShelfError):
    """The archive could not be downloaded."""


def archive_name_from_url(url: str) -> str:
    path = urlparse(url).path
    name = path.rstrip("/").split("/")[-1]
    return name or "archive.zip"


def fetch_archive(
    url: str,
    *,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> bytes:
    """
    GET an archive and return its bytes.

    Plain HTTP is only accepted for local development hosts.

    Raises:
        ValueError: For a non-HTTPS URL on a remote host
        ArchiveFetchError: On transport errors or a non-2xx response
    """
    parsed = urlparse(url)
    if parsed.scheme != "https":
        if parsed.scheme != "http" or (parsed.hostname or "") not in _LOCAL_HOSTS:
            raise ValueError(
                f"Archive URL must use HTTPS (got {url}). "
                "Plain HTTP is only allowed for localhost."
            )

    own_client = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        resp = http.get(url)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ArchiveFetchError(f"Download failed: HTTP {e.response.status_code} for {url}") from e
    except httpx.HTTPError as e:
        raise ArchiveFetchError(f"Download failed: {e}") from e
    finally:
        if own_client:
            http.close()

    logger.info("Downloaded %d bytes from %s", len(resp.content), url)
    return resp.content
