"""Image provider adapters.

Each adapter wraps one HTTP call with a short timeout and answers with a URL
or ``None``. Errors are logged and swallowed here: imagery is decorative.
"""
import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

UNSPLASH_URL = "https://api.unsplash.com/search/photos"
PEXELS_URL = "https://api.pexels.com/v1/search"
WIKIPEDIA_SUMMARY_URL = "https://en.wikipedia.org/api/rest_v1/page/summary/"
UA = "planner-api/0.1 (itinerary image enrichment)"
DEFAULT_TIMEOUT = 2.5


class ImageProvider:
    name = "provider"
    requires_key = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (api_key or "").strip() or None
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) or not self.requires_key

    def _request(self, query: str) -> Dict[str, Any]:
        raise NotImplementedError

    def _extract(self, data: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    async def search(self, query: str) -> Optional[str]:
        query = " ".join((query or "").split())
        if not self.enabled or not query:
            return None
        request = self._request(query)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport, headers={"User-Agent": UA}
            ) as client:
                # the client timeout is per phase; this bounds the whole call
                response = await asyncio.wait_for(
                    client.get(request["url"], params=request.get("params"), headers=request.get("headers")),
                    timeout=self.timeout,
                )
            response.raise_for_status()
            data = response.json()
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.info("%s timed out for %r", self.name, query)
            return None
        except httpx.HTTPStatusError as exc:
            logger.warning("%s returned %s for %r", self.name, exc.response.status_code, query)
            return None
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("%s request failed for %r: %s", self.name, query, exc)
            return None
        if not isinstance(data, dict):
            return None
        try:
            url = self._extract(data)
        except (AttributeError, KeyError, IndexError, TypeError):
            url = None
        if not url:
            logger.info("%s had no image for %r", self.name, query)
        return url or None


class UnsplashSearch(ImageProvider):
    name = "unsplash"

    def _request(self, query: str) -> Dict[str, Any]:
        return {
            "url": UNSPLASH_URL,
            "params": {"query": query, "orientation": "landscape", "per_page": 1},
            "headers": {"Authorization": f"Client-ID {self.api_key}", "Accept-Version": "v1"},
        }

    def _extract(self, data: Dict[str, Any]) -> Optional[str]:
        results = data.get("results") or []
        if not results:
            return None
        urls = results[0].get("urls") or {}
        return urls.get("regular") or urls.get("full")


class PexelsSearch(ImageProvider):
    name = "pexels"

    def _request(self, query: str) -> Dict[str, Any]:
        return {
            "url": PEXELS_URL,
            "params": {"query": query, "orientation": "landscape", "per_page": 1},
            "headers": {"Authorization": self.api_key},
        }

    def _extract(self, data: Dict[str, Any]) -> Optional[str]:
        photos = data.get("photos") or []
        if not photos:
            return None
        src = photos[0].get("src") or {}
        return src.get("landscape") or src.get("large2x") or src.get("original")


class WikipediaSummary(ImageProvider):
    """Page-summary lookup; only meaningful for place names."""

    name = "wikipedia"
    requires_key = False

    def _request(self, query: str) -> Dict[str, Any]:
        return {"url": WIKIPEDIA_SUMMARY_URL + quote(query.replace(" ", "_"), safe="")}

    def _extract(self, data: Dict[str, Any]) -> Optional[str]:
        original = data.get("originalimage") or {}
        if original.get("source"):
            return original["source"]
        thumbnail = data.get("thumbnail") or {}
        return thumbnail.get("source")
