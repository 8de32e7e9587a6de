import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from pydantic import ValidationError

from .config import Settings
from .errors import ErrorKind, GenerationError
from .gemini_client import GeminiGenerator
from .image_search import ImageResolver
from .image_search import router as image_search_router
from .pipeline import ItineraryPipeline
from .schema import Itinerary, TripRequest
from .search_client import PexelsSearch, UnsplashSearch, WikipediaSummary
from .storage import TripStore, favorite_vibe

API_PREFIX = "/api/v1"
DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_resolver(settings: Settings) -> ImageResolver:
    return ImageResolver(
        search_providers=[
            UnsplashSearch(settings.unsplash_access_key, timeout=settings.image_timeout),
            PexelsSearch(settings.pexels_api_key, timeout=settings.image_timeout),
        ],
        summary_provider=WikipediaSummary(timeout=settings.image_timeout),
        task_timeout=settings.image_task_timeout,
    )


def build_pipeline(settings: Settings, resolver: ImageResolver) -> ItineraryPipeline:
    generator = GeminiGenerator(settings.gemini_api_key, model=settings.gemini_model)
    return ItineraryPipeline(generator, resolver, generation_timeout=settings.generation_timeout)


def _pipeline(request: Request) -> ItineraryPipeline:
    state = request.app.state
    if state.pipeline is None:
        # raises ConfigurationError until the Gemini key is set
        state.pipeline = build_pipeline(state.settings, state.image_resolver)
    return state.pipeline


def _invalid(message: str) -> GenerationError:
    return GenerationError(ErrorKind.VALIDATION, message)


def _first_error(exc) -> str:
    errors = exc.errors()
    if not errors:
        return "request body is invalid"
    error = errors[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


async def _until_disconnected(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def run_cancellable(request: Request, coro) -> Optional[Itinerary]:
    """Run ``coro`` until it finishes or the client goes away.

    Returns None when the client disconnected; the work is cancelled and
    awaited so nothing is left running.
    """
    work = asyncio.ensure_future(coro)
    watcher = asyncio.ensure_future(_until_disconnected(request))
    try:
        await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work, watcher):
            if not task.done():
                task.cancel()
        await asyncio.gather(work, watcher, return_exceptions=True)
    if work.cancelled():
        logger.info("Client disconnected, generation abandoned")
        return None
    return work.result()


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[ItineraryPipeline] = None,
    store: Optional[TripStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    app = FastAPI(title="Trip Itinerary API", version="0.1.0")
    app.state.settings = settings
    app.state.image_resolver = pipeline.resolver if pipeline else build_resolver(settings)
    app.state.pipeline = pipeline
    app.state.store = store or TripStore(settings.trip_store_path)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GenerationError)
    async def generation_error_handler(_request: Request, exc: GenerationError):
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError):
        error = _invalid(_first_error(exc))
        return JSONResponse(error.to_payload(), status_code=error.status_code)

    @app.get(f"{API_PREFIX}/health")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post(f"{API_PREFIX}/itinerary")
    async def itinerary(request: Request, payload: Dict[str, Any] = Body(...)):
        action = payload.get("action")
        if action == "generate":
            try:
                trip_request = TripRequest.model_validate(payload.get("preferences") or payload.get("prefs") or {})
            except ValidationError as exc:
                raise _invalid(_first_error(exc)) from exc
            result = await run_cancellable(request, _pipeline(request).acquire(trip_request))
            if result is not None:
                await run_in_threadpool(request.app.state.store.add_history, result)
        elif action == "modify":
            try:
                existing = Itinerary.model_validate(payload.get("currentItinerary") or {})
            except ValidationError as exc:
                raise _invalid(f"currentItinerary is not a valid itinerary ({_first_error(exc)})") from exc
            edit_request = payload.get("editRequest") or payload.get("request")
            if not isinstance(edit_request, str):
                raise _invalid("editRequest is required")
            result = await run_cancellable(request, _pipeline(request).modify(existing, edit_request))
        else:
            raise _invalid("action must be 'generate' or 'modify'")

        if result is None:
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        return JSONResponse(result.model_dump(mode="json"))

    @app.get(f"{API_PREFIX}/trips/saved")
    def saved_trips(request: Request):
        return JSONResponse([trip.model_dump(mode="json") for trip in request.app.state.store.saved()])

    @app.post(f"{API_PREFIX}/trips/saved/toggle")
    def toggle_saved(request: Request, payload: Dict[str, Any] = Body(...)):
        try:
            trip = Itinerary.model_validate(payload)
        except ValidationError as exc:
            raise _invalid(f"not a valid itinerary ({_first_error(exc)})") from exc
        if not trip.id:
            raise _invalid("itinerary id is required")
        return {"id": trip.id, "saved": request.app.state.store.toggle_saved(trip)}

    @app.get(f"{API_PREFIX}/trips/history")
    def trip_history(request: Request):
        return JSONResponse([trip.model_dump(mode="json") for trip in request.app.state.store.history()])

    @app.delete(f"{API_PREFIX}/trips/history")
    def clear_history(request: Request):
        request.app.state.store.clear_history()
        return {"status": "cleared"}

    @app.get(f"{API_PREFIX}/profile")
    def profile(request: Request):
        store = request.app.state.store
        history = store.history()
        return {
            "tripsPlanned": len(history),
            "savedTrips": len(store.saved()),
            "favoriteVibe": favorite_vibe(history),
        }

    app.include_router(image_search_router)
    return app


app = create_app()
