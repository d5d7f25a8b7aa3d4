"""Banner image inspection over HTTP HEAD."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import httpx

from bidme.logic.validator import normalize_format, url_extension

logger = logging.getLogger(__name__)

CONTENT_TYPE_FORMATS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}


@dataclass(slots=True)
class BannerInfo:
    format: str | None = None
    size_kb: int | None = None


async def inspect_banner(url: str, *, session: httpx.AsyncClient | None = None) -> BannerInfo:
    """Report the banner's format and size; an empty result when the HEAD fails."""
    client = session or httpx.AsyncClient(timeout=30.0, follow_redirects=True)
    try:
        response = await client.head(url)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Banner inspection failed for %s: %s", url, exc)
        return BannerInfo(format=normalize_format(url_extension(url)))
    finally:
        if session is None:
            await client.aclose()

    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    banner_format = CONTENT_TYPE_FORMATS.get(content_type) or normalize_format(url_extension(url))
    size_kb = None
    length = response.headers.get("content-length")
    if length and length.isdigit():
        size_kb = math.ceil(int(length) / 1024)
    return BannerInfo(format=banner_format, size_kb=size_kb)
