import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from planner_api.image_search import ImageResolver
from planner_api.pipeline import ItineraryPipeline

SLOTS = ["Morning", "Afternoon", "Evening"]


def build_payload(days: int = 3, destination: str = "Lisbon") -> Dict[str, Any]:
    return {
        "tripTitle": f"Trip to {destination}",
        "dateRange": "Oct 12 - Oct 14",
        "totalBudget": "~$900",
        "weather": "22C, Sunny",
        "currencyRate": "1 USD = 0.92 EUR",
        "whyDestination": "Tiled facades, river light and serious seafood.",
        "localTips": ["Buy a Viva Viagem card", "Trams get crowded by 10am"],
        "packingList": ["Walking shoes", "Light jacket", "Sunscreen"],
        "budgetAssumption": "Mid-range hotel, two sit-down meals a day.",
        "localContext": {
            "foodAndDrinks": ["Pastel de nata", "Bifana"],
            "customs": "Lunch is late and long.",
            "etiquetteTips": ["Greet shopkeepers"],
        },
        "destination": destination,
        "days": [
            {
                "day": index,
                "date": f"Oct {11 + index}",
                "title": f"Day {index}: Old Town & Views",
                "costEstimate": "~$150",
                "activities": [
                    {
                        "time": slot,
                        "title": f"{slot} stop {index}",
                        "desc": f"{slot} on day {index}.",
                        "icon": "explore",
                        "coordinates": {"lat": 38.71 + index / 100, "lng": -9.14},
                    }
                    for slot in SLOTS
                ],
            }
            for index in range(1, days + 1)
        ],
    }


class FakeGenerator:
    def __init__(self, responses: Optional[List[Any]] = None, delay: float = 0.0):
        self.responses = list(responses or [])
        self.delay = delay
        self.prompts: List[str] = []

    async def generate(self, prompt: str, schema: Dict[str, Any]) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


class FakeProvider:
    def __init__(self, name: str, answers: Optional[Dict[str, str]] = None, enabled: bool = True, delay: float = 0.0):
        self.name = name
        self.answers = answers or {}
        self.enabled = enabled
        self.delay = delay
        self.queries: List[str] = []

    async def search(self, query: str) -> Optional[str]:
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.answers.get(query)


@pytest.fixture
def payload_factory():
    return build_payload


@pytest.fixture
def providers():
    return FakeProvider("primary"), FakeProvider("secondary"), FakeProvider("summary")


@pytest.fixture
def resolver(providers):
    primary, secondary, summary = providers
    return ImageResolver([primary, secondary], summary_provider=summary, task_timeout=1.0)


@pytest.fixture
def make_pipeline(resolver):
    def _make(*responses, delay: float = 0.0, timeout: float = 5.0):
        generator = FakeGenerator(list(responses), delay=delay)
        return ItineraryPipeline(generator, resolver, generation_timeout=timeout), generator

    return _make
