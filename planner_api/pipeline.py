"""Itinerary acquisition and modification.

Both flows share the parse -> validate -> enrich stages; they differ in the
prompt and in which images get resolved.
"""
import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Dict, Optional
from uuid import uuid4

from .errors import ErrorKind, GenerationError
from .gemini_client import extract_json_object, strip_code_fences
from .image_search import ImageResolver
from .schema import RESPONSE_SCHEMA, Itinerary, TripRequest, validate_itinerary

logger = logging.getLogger(__name__)

BUDGET_LABELS = {"$": "Economy", "$$": "Moderate", "$$$": "Luxury"}

# Fields owned by the pipeline rather than the generator.
PIPELINE_FIELDS = {"id", "heroImage", "vibe", "destination"}


def build_generation_prompt(request: TripRequest) -> str:
    return (
        f"Curate a bespoke {request.duration}-day travel itinerary for {request.destination}.\n"
        f"Budget: {request.budget} ({BUDGET_LABELS[request.budget]}; scale $ Economy to $$$ Luxury). "
        f"Vibe: {request.vibe}.\n"
        "Tone: elegant and concise. Descriptions are 1-2 refined sentences.\n"
        f"Return exactly {request.duration} days numbered from 1. Each day has exactly three activities "
        "labelled 'Morning', 'Afternoon' and 'Evening', in that order.\n"
        "Icons are Material Symbols Outlined names in snake_case.\n"
        "Every activity needs real GPS coordinates (lat, lng).\n"
        f"Set destination to {json.dumps(request.destination)}. Assume the trip starts tomorrow.\n"
        "Output strict JSON matching the schema. No markdown."
    )


def build_modification_prompt(existing: Itinerary, edit_request: str) -> str:
    document = existing.model_dump(
        mode="json", exclude={"id": True, "heroImage": True, "days": {"__all__": {"imageUrl"}}}
    )
    return (
        "Modify this itinerary JSON according to the request.\n"
        f"Itinerary: {json.dumps(document, ensure_ascii=False)}\n"
        f"Request: {json.dumps(edit_request, ensure_ascii=False)}\n"
        "Return the complete revised itinerary. Change only what the request asks for and copy every "
        "other field, day and activity through unchanged. Keep exactly three activities per day "
        "('Morning', 'Afternoon', 'Evening') with real coordinates.\n"
        "Output strict JSON matching the schema. No markdown."
    )


def parse_payload(raw_text: str) -> Dict[str, Any]:
    text = strip_code_fences(raw_text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(extract_json_object(text))
        except ValueError as exc:
            logger.warning("Unparseable generator output: %s", exc)
            raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "The itinerary could not be read.") from exc
    if not isinstance(data, dict):
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "The itinerary was not a JSON object.")
    return data


def restore_omitted_fields(revised: Dict[str, Any], existing: Itinerary) -> Dict[str, Any]:
    """Fill in top-level fields the generator dropped from its revision."""
    previous = existing.model_dump(mode="json")
    merged = dict(revised)
    for field, value in previous.items():
        if field in PIPELINE_FIELDS:
            continue
        if field not in merged or merged[field] is None:
            merged[field] = value
    return merged


class ItineraryPipeline:
    def __init__(self, generator, resolver: ImageResolver, generation_timeout: float = 30.0):
        self.generator = generator
        self.resolver = resolver
        self.generation_timeout = generation_timeout

    async def _generate(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(
                self.generator.generate(prompt, RESPONSE_SCHEMA), timeout=self.generation_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error("Generation exceeded %.0fs", self.generation_timeout)
            raise GenerationError(
                ErrorKind.TIMEOUT, f"Generation took longer than {self.generation_timeout:.0f} seconds."
            ) from exc

    def _validate(self, data: Dict[str, Any], expected_days: Optional[int]) -> Itinerary:
        result = validate_itinerary(data, expected_days=expected_days)
        if not result.ok:
            logger.warning("Generator output rejected: %s", result.reason)
            raise GenerationError(ErrorKind.SCHEMA_VIOLATION, f"The itinerary was incomplete: {result.reason}.")
        return result.itinerary

    async def _attach_day_images(self, itinerary: Itinerary) -> Itinerary:
        images = await self.resolver.resolve_days(itinerary.destination or "", itinerary.days, itinerary.vibe)
        days = [day.model_copy(update={"imageUrl": url}) for day, url in zip(itinerary.days, images)]
        return itinerary.model_copy(update={"days": days})

    async def acquire(self, request: TripRequest) -> Itinerary:
        hero_task = asyncio.create_task(self.resolver.resolve_hero(request.destination, request.vibe))
        try:
            raw_text = await self._generate(build_generation_prompt(request))
            itinerary = self._validate(parse_payload(raw_text), expected_days=request.duration)
            itinerary = itinerary.model_copy(
                update={"id": str(uuid4()), "vibe": request.vibe, "destination": request.destination}
            )
            hero_image = await hero_task
        finally:
            if not hero_task.done():
                hero_task.cancel()
                with suppress(asyncio.CancelledError):
                    await hero_task

        itinerary = itinerary.model_copy(update={"heroImage": hero_image})
        itinerary = await self._attach_day_images(itinerary)
        logger.info("Acquired %d-day itinerary %s for %s", len(itinerary.days), itinerary.id, request.destination)
        return itinerary

    async def modify(self, existing: Itinerary, edit_request: str) -> Itinerary:
        edit_request = " ".join((edit_request or "").split())
        if not edit_request:
            raise GenerationError(ErrorKind.VALIDATION, "Describe the change you want to make.")

        raw_text = await self._generate(build_modification_prompt(existing, edit_request))
        revised = restore_omitted_fields(parse_payload(raw_text), existing)
        itinerary = self._validate(revised, expected_days=None)
        itinerary = itinerary.model_copy(
            update={
                "id": existing.id or str(uuid4()),
                "heroImage": existing.heroImage,
                "vibe": existing.vibe,
                "destination": itinerary.destination or existing.destination,
            }
        )
        itinerary = await self._attach_day_images(itinerary)
        logger.info("Modified itinerary %s (%d days)", itinerary.id, len(itinerary.days))
        return itinerary
