import asyncio
import logging
import re
from typing import List, Optional, Sequence, Tuple

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .schema import DayPlan
from .search_client import ImageProvider

logger = logging.getLogger(__name__)

router = APIRouter()

API_PREFIX = "/api/v1"

VIBE_IMAGES = {
    "Nature": "https://images.unsplash.com/photo-1501785888041-af3ef285b470?q=80&w=2070&auto=format&fit=crop",
    "Urban": "https://images.unsplash.com/photo-1477959858617-67f85cf4f1df?q=80&w=2144&auto=format&fit=crop",
    "Relax": "https://images.unsplash.com/photo-1507525428034-b723cf961d3e?q=80&w=2073&auto=format&fit=crop",
    "Food": "https://images.unsplash.com/photo-1504674900247-0877df9cc836?q=80&w=2070&auto=format&fit=crop",
    "Default": "https://images.unsplash.com/photo-1469474968028-56623f02e42e?q=80&w=2074&auto=format&fit=crop",
}

_NON_ALNUM = re.compile(r"[\W_]+", flags=re.UNICODE)


def vibe_fallback(vibe: Optional[str]) -> str:
    return VIBE_IMAGES.get(vibe or "", VIBE_IMAGES["Default"])


def split_destination(destination: str) -> Tuple[str, str]:
    """First and last comma-separated tokens, e.g. 'Kyoto, Japan' -> ('Kyoto', 'Japan')."""
    parts = [part.strip() for part in (destination or "").split(",") if part.strip()]
    if not parts:
        return "", ""
    return parts[0], parts[-1]


def clean_title(title: str) -> str:
    return " ".join(_NON_ALNUM.sub(" ", title or "").split())


def _dedupe(queries: Sequence[str]) -> List[str]:
    seen = set()
    out = []
    for query in queries:
        query = " ".join(query.split())
        if query and query.lower() not in seen:
            out.append(query)
            seen.add(query.lower())
    return out


def hero_queries(destination: str) -> List[str]:
    city, country = split_destination(destination)
    return _dedupe([destination, f"{city} landmark skyline", f"{country} travel scenery"])


def day_queries(destination: str, day: DayPlan) -> List[str]:
    queries = [f"{destination} {clean_title(day.title)}"]
    if day.activities:
        queries.append(f"{destination} {day.activities[0].title}")
    return _dedupe(queries)


class ImageResolver:
    """Priority chain over the image providers.

    Search providers are tried in order for each query; the summary provider
    is only consulted for destination-level (hero) lookups. Every public
    method returns a URL: the vibe default when nothing else answered.
    """

    def __init__(
        self,
        search_providers: Sequence[ImageProvider],
        summary_provider: Optional[ImageProvider] = None,
        task_timeout: float = 8.0,
    ):
        self.search_providers = list(search_providers)
        self.summary_provider = summary_provider
        self.task_timeout = task_timeout

    async def first_available(self, queries: Sequence[str]) -> Optional[str]:
        for query in queries:
            for provider in self.search_providers:
                if not provider.enabled:
                    continue
                url = await provider.search(query)
                if url:
                    return url
        return None

    async def _bounded(self, lookup, vibe: Optional[str], label: str) -> str:
        try:
            url = await asyncio.wait_for(lookup, timeout=self.task_timeout)
        except asyncio.TimeoutError:
            logger.info("Image lookup for %s exceeded %.1fs", label, self.task_timeout)
            url = None
        return url or vibe_fallback(vibe)

    async def _hero_lookup(self, destination: str) -> Optional[str]:
        url = await self.first_available(hero_queries(destination))
        if url:
            return url
        if self.summary_provider is not None and self.summary_provider.enabled:
            return await self.summary_provider.search(destination)
        return None

    async def resolve_hero(self, destination: str, vibe: Optional[str]) -> str:
        return await self._bounded(self._hero_lookup(destination), vibe, f"hero of {destination!r}")

    async def resolve_day(self, destination: str, day: DayPlan, vibe: Optional[str]) -> str:
        return await self._bounded(
            self.first_available(day_queries(destination, day)), vibe, f"day {day.day} of {destination!r}"
        )

    async def resolve_days(self, destination: str, days: Sequence[DayPlan], vibe: Optional[str]) -> List[str]:
        # gather keeps results in day order whatever order the lookups finish in
        return list(await asyncio.gather(*(self.resolve_day(destination, day, vibe) for day in days)))


def _resolver(request: Request) -> ImageResolver:
    return request.app.state.image_resolver


@router.get(f"{API_PREFIX}/image-search")
async def image_search(request: Request, query: str = Query(..., min_length=1, description="Search query")):
    url = await _resolver(request).first_available([query])
    if not url:
        raise HTTPException(status_code=404, detail="No images found for the requested query.")
    return JSONResponse({"query": query, "image_url": url})


@router.get(f"{API_PREFIX}/city-hero")
async def city_hero(
    request: Request,
    city: str = Query(..., min_length=1, description="Destination city"),
    vibe: Optional[str] = Query(None, description="Trip vibe used for the fallback image"),
):
    """Hero image for a destination; always answers, falling back to the vibe default."""
    image_url = await _resolver(request).resolve_hero(city, vibe)
    return JSONResponse(
        {"city": city, "image_url": image_url, "fallback": image_url == vibe_fallback(vibe)}
    )
