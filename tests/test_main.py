import asyncio

import pytest
from fastapi.testclient import TestClient

from planner_api.config import Settings
from planner_api.errors import ErrorKind, GenerationError
from planner_api.image_search import VIBE_IMAGES, ImageResolver
from planner_api import main
from planner_api.main import create_app, run_cancellable
from planner_api.pipeline import ItineraryPipeline
from planner_api.storage import TripStore

from conftest import FakeGenerator, FakeProvider, build_payload

PREFS = {"destination": "Lisbon", "duration": 3, "budget": "$$", "vibe": "Food"}


@pytest.fixture
def settings(tmp_path):
    return Settings(trip_store_path=str(tmp_path / "trips.json"))


@pytest.fixture
def primary():
    return FakeProvider("primary", {"Lisbon": "https://primary/lisbon.jpg"})


@pytest.fixture
def make_client(settings, primary):
    def _make(*responses):
        resolver = ImageResolver([primary], task_timeout=1.0)
        pipeline = ItineraryPipeline(FakeGenerator(list(responses)), resolver)
        app = create_app(settings=settings, pipeline=pipeline, store=TripStore(settings.trip_store_path))
        return TestClient(app)

    return _make


def test_health(make_client):
    assert make_client().get("/api/v1/health").json() == {"status": "ok"}


def test_generate_returns_itinerary_and_records_history(make_client):
    client = make_client(build_payload(days=3))
    response = client.post("/api/v1/itinerary", json={"action": "generate", "preferences": PREFS})
    assert response.status_code == 200
    body = response.json()
    assert len(body["days"]) == 3
    assert body["heroImage"] == "https://primary/lisbon.jpg"
    assert body["vibe"] == "Food"

    history = client.get("/api/v1/trips/history").json()
    assert [trip["id"] for trip in history] == [body["id"]]


def test_invalid_preferences_are_400(make_client):
    client = make_client()
    response = client.post(
        "/api/v1/itinerary", json={"action": "generate", "preferences": {**PREFS, "duration": 30}}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


def test_missing_destination_is_400(make_client):
    prefs = {key: value for key, value in PREFS.items() if key != "destination"}
    response = make_client().post("/api/v1/itinerary", json={"action": "generate", "preferences": prefs})
    assert response.status_code == 400


def test_unknown_action_is_400(make_client):
    response = make_client().post("/api/v1/itinerary", json={"action": "translate"})
    assert response.status_code == 400


@pytest.mark.parametrize(
    "outcome, status, kind",
    [
        ("{ nope", 500, "MalformedResponse"),
        (GenerationError(ErrorKind.SERVICE_UNAVAILABLE, "Generation service error (503)."), 503, "ServiceUnavailable"),
        (GenerationError(ErrorKind.CONTENT_BLOCKED, "Request was blocked (safety)."), 422, "ContentBlocked"),
    ],
)
def test_generation_errors_map_to_status(make_client, outcome, status, kind):
    client = make_client(outcome)
    response = client.post("/api/v1/itinerary", json={"action": "generate", "preferences": PREFS})
    assert response.status_code == status
    assert response.json()["error"] == kind
    assert "Traceback" not in response.text
    assert client.get("/api/v1/trips/history").json() == []


def test_missing_gemini_key_is_configuration_error(settings):
    client = TestClient(create_app(settings=settings.model_copy(update={"gemini_api_key": None})))
    response = client.post("/api/v1/itinerary", json={"action": "generate", "preferences": PREFS})
    assert response.status_code == 500
    assert response.json()["error"] == "ConfigurationError"
    assert response.json()["retryable"] is False


def test_modify_round_trip(make_client):
    first = build_payload(days=3)
    revised = build_payload(days=3)
    revised["days"][1]["activities"][2]["title"] = "Fado in Alfama"
    client = make_client(first, revised)
    original = client.post("/api/v1/itinerary", json={"action": "generate", "preferences": PREFS}).json()

    response = client.post(
        "/api/v1/itinerary",
        json={"action": "modify", "currentItinerary": original, "editRequest": "Fado on day 2 evening"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == original["id"]
    assert body["heroImage"] == original["heroImage"]
    assert body["days"][1]["activities"][2]["title"] == "Fado in Alfama"


def test_modify_requires_current_itinerary(make_client):
    response = make_client().post(
        "/api/v1/itinerary", json={"action": "modify", "currentItinerary": {"tripTitle": "x"}, "editRequest": "y"}
    )
    assert response.status_code == 400


def test_saved_toggle_and_profile(make_client):
    client = make_client(build_payload(days=3))
    trip = client.post("/api/v1/itinerary", json={"action": "generate", "preferences": PREFS}).json()

    assert client.post("/api/v1/trips/saved/toggle", json=trip).json() == {"id": trip["id"], "saved": True}
    assert [t["id"] for t in client.get("/api/v1/trips/saved").json()] == [trip["id"]]
    assert client.get("/api/v1/profile").json() == {"tripsPlanned": 1, "savedTrips": 1, "favoriteVibe": "Food"}

    assert client.post("/api/v1/trips/saved/toggle", json=trip).json()["saved"] is False
    assert client.delete("/api/v1/trips/history").json() == {"status": "cleared"}
    assert client.get("/api/v1/profile").json()["favoriteVibe"] == "Undecided"


def test_toggle_requires_id(make_client):
    payload = build_payload(days=1)
    response = make_client().post("/api/v1/trips/saved/toggle", json=payload)
    assert response.status_code == 400


def test_city_hero_and_image_search(make_client):
    client = make_client()
    hero = client.get("/api/v1/city-hero", params={"city": "Lisbon", "vibe": "Food"}).json()
    assert hero == {"city": "Lisbon", "image_url": "https://primary/lisbon.jpg", "fallback": False}

    fallback = client.get("/api/v1/city-hero", params={"city": "Atlantis", "vibe": "Relax"}).json()
    assert fallback["image_url"] == VIBE_IMAGES["Relax"]
    assert fallback["fallback"] is True

    assert client.get("/api/v1/image-search", params={"query": "Lisbon"}).json()["image_url"] == "https://primary/lisbon.jpg"
    assert client.get("/api/v1/image-search", params={"query": "Atlantis"}).status_code == 404


@pytest.mark.parametrize("path", ["/api/v1/itinerary", "/api/v1/trips/saved/toggle"])
def test_non_object_body_is_400(make_client, path):
    response = make_client().post(path, json=[1])
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    assert response.json()["retryable"] is False


def test_invalid_json_body_is_400(make_client):
    response = make_client().post(
        "/api/v1/itinerary", content="{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert set(response.json()) == {"error", "message", "retryable"}


def test_client_disconnect_abandons_generation(settings, primary, monkeypatch):
    async def _gone(_request):
        return None

    monkeypatch.setattr(main, "_until_disconnected", _gone)
    pipeline = ItineraryPipeline(
        FakeGenerator([build_payload(days=3)], delay=5.0), ImageResolver([primary], task_timeout=1.0)
    )
    store = TripStore(settings.trip_store_path)
    client = TestClient(create_app(settings=settings, pipeline=pipeline, store=store))

    response = client.post("/api/v1/itinerary", json={"action": "generate", "preferences": PREFS})
    assert response.status_code == 499
    assert store.history() == []


class _GoneRequest:
    async def is_disconnected(self):
        return True


def test_run_cancellable_leaves_nothing_running():
    finished = []

    async def work():
        await asyncio.sleep(5)
        finished.append(True)

    async def scenario():
        result = await run_cancellable(_GoneRequest(), work())
        return result, [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]

    result, pending = asyncio.run(scenario())
    assert result is None
    assert pending == []
    assert finished == []
