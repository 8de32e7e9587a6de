"""Itinerary document contract.

The same shape is sent to the generator as its response schema and used to
check (and lightly repair) whatever comes back.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

TIME_SLOTS = ("Morning", "Afternoon", "Evening")
VIBES = ("Nature", "Urban", "Relax", "Food")
DEFAULT_ICON = "place"

Budget = Literal["$", "$$", "$$$"]
Vibe = Literal["Nature", "Urban", "Relax", "Food"]


class TripRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    destination: str
    duration: int = Field(ge=1, le=14)
    budget: Budget
    vibe: Vibe

    @field_validator("destination")
    @classmethod
    def ensure_destination(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("Destination is required")
        return value


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Activity(BaseModel):
    time: Literal["Morning", "Afternoon", "Evening"]
    title: str
    desc: str
    icon: str = DEFAULT_ICON
    coordinates: Optional[Coordinates] = None


class DayPlan(BaseModel):
    day: int = Field(ge=1)
    date: str = ""
    title: str
    costEstimate: str = ""
    imageUrl: Optional[str] = None
    activities: List[Activity] = Field(min_length=3, max_length=3)


class LocalContext(BaseModel):
    foodAndDrinks: List[str] = []
    customs: str = ""
    etiquetteTips: List[str] = []


class Itinerary(BaseModel):
    id: str = ""
    tripTitle: str
    dateRange: str
    totalBudget: str
    weather: str
    currencyRate: str = ""
    whyDestination: str
    localTips: List[str]
    packingList: List[str]
    budgetAssumption: str
    localContext: LocalContext
    days: List[DayPlan] = Field(min_length=1)
    heroImage: Optional[str] = None
    vibe: Optional[str] = None
    destination: Optional[str] = None


_STRING_LIST = {"type": "ARRAY", "items": {"type": "STRING"}}

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "tripTitle": {"type": "STRING", "description": "Title of the trip, e.g. 'Trip to Bali'"},
        "dateRange": {"type": "STRING", "description": "Date range, e.g. 'Oct 12 - Oct 15'"},
        "totalBudget": {"type": "STRING", "description": "Estimated total cost"},
        "weather": {"type": "STRING", "description": "Expected weather, e.g. '28C, Sunny'"},
        "currencyRate": {"type": "STRING", "description": "e.g. '1 USD = 0.92 EUR'"},
        "whyDestination": {"type": "STRING"},
        "localTips": {**_STRING_LIST, "description": "2-3 short, essential local tips"},
        "packingList": {**_STRING_LIST, "description": "3-4 essential packing items"},
        "budgetAssumption": {"type": "STRING"},
        "destination": {"type": "STRING", "nullable": True},
        "localContext": {
            "type": "OBJECT",
            "properties": {
                "foodAndDrinks": _STRING_LIST,
                "customs": {"type": "STRING"},
                "etiquetteTips": _STRING_LIST,
            },
            "required": ["foodAndDrinks", "customs", "etiquetteTips"],
        },
        "days": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "day": {"type": "INTEGER"},
                    "date": {"type": "STRING"},
                    "title": {"type": "STRING", "description": "Main theme of the day"},
                    "costEstimate": {"type": "STRING", "description": "Cost for this day"},
                    "activities": {
                        "type": "ARRAY",
                        "items": {
                            "type": "OBJECT",
                            "properties": {
                                "time": {
                                    "type": "STRING",
                                    "enum": list(TIME_SLOTS),
                                    "description": "Strictly 'Morning', 'Afternoon', or 'Evening'",
                                },
                                "title": {"type": "STRING"},
                                "desc": {"type": "STRING", "description": "1-2 refined sentences"},
                                "icon": {"type": "STRING", "description": "Material symbol name, e.g. restaurant"},
                                "coordinates": {
                                    "type": "OBJECT",
                                    "properties": {
                                        "lat": {"type": "NUMBER"},
                                        "lng": {"type": "NUMBER"},
                                    },
                                    "required": ["lat", "lng"],
                                },
                            },
                            "required": ["time", "title", "desc", "icon", "coordinates"],
                        },
                    },
                },
                "required": ["day", "date", "title", "costEstimate", "activities"],
            },
        },
    },
    "required": [
        "tripTitle",
        "dateRange",
        "totalBudget",
        "weather",
        "days",
        "localTips",
        "packingList",
        "budgetAssumption",
        "localContext",
        "whyDestination",
    ],
}

REQUIRED_STRINGS = ("tripTitle", "dateRange", "totalBudget", "weather", "whyDestination", "budgetAssumption")
REQUIRED_LISTS = ("localTips", "packingList", "days")
REQUIRED_OBJECTS = ("localContext",)


class ValidationResult(NamedTuple):
    ok: bool
    itinerary: Optional[Itinerary] = None
    reason: Optional[str] = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _text(value: Any, fallback: str = "") -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def repair_coordinates(value: Any) -> Optional[Dict[str, float]]:
    """Return usable coordinates or None; bad values never reject a plan."""
    if not isinstance(value, dict):
        return None
    lat, lng = value.get("lat"), value.get("lng")
    if not (_is_number(lat) and _is_number(lng)):
        return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return {"lat": float(lat), "lng": float(lng)}


def _repair_day(position: int, day: Any) -> Dict[str, Any]:
    if not isinstance(day, dict):
        raise ValueError(f"day {position} is not an object")
    activities = day.get("activities")
    if not isinstance(activities, list) or len(activities) != len(TIME_SLOTS):
        count = len(activities) if isinstance(activities, list) else 0
        raise ValueError(f"day {position} has {count} activities, expected {len(TIME_SLOTS)}")

    repaired_activities = []
    for slot, activity in zip(TIME_SLOTS, activities):
        if not isinstance(activity, dict):
            raise ValueError(f"day {position} {slot.lower()} activity is not an object")
        repaired_activities.append(
            {
                "time": slot,
                "title": _text(activity.get("title"), f"{slot} in town"),
                "desc": _text(activity.get("desc")),
                "icon": _text(activity.get("icon"), DEFAULT_ICON),
                "coordinates": repair_coordinates(activity.get("coordinates")),
            }
        )
    image_url = day.get("imageUrl")
    return {
        "day": position,
        "date": _text(day.get("date")),
        "title": _text(day.get("title"), f"Day {position}"),
        "costEstimate": _text(day.get("costEstimate")),
        "imageUrl": image_url if isinstance(image_url, str) and image_url else None,
        "activities": repaired_activities,
    }


def validate_itinerary(raw: Any, expected_days: Optional[int] = None) -> ValidationResult:
    if not isinstance(raw, dict):
        return ValidationResult(False, reason="document is not an object")

    for field in REQUIRED_STRINGS:
        if not isinstance(raw.get(field), str):
            return ValidationResult(False, reason=f"missing required field: {field}")
    for field in REQUIRED_LISTS:
        if not isinstance(raw.get(field), list):
            return ValidationResult(False, reason=f"missing required field: {field}")
    for field in REQUIRED_OBJECTS:
        if not isinstance(raw.get(field), dict):
            return ValidationResult(False, reason=f"missing required field: {field}")

    days = raw["days"]
    if not days:
        return ValidationResult(False, reason="days is empty")
    if expected_days is not None and len(days) != expected_days:
        return ValidationResult(False, reason=f"expected {expected_days} days, got {len(days)}")

    try:
        repaired_days = [_repair_day(index, day) for index, day in enumerate(days, start=1)]
    except ValueError as exc:
        return ValidationResult(False, reason=str(exc))

    context = raw["localContext"]
    document = {
        **{field: raw[field].strip() for field in REQUIRED_STRINGS},
        "currencyRate": _text(raw.get("currencyRate")),
        "localTips": _strings(raw["localTips"]),
        "packingList": _strings(raw["packingList"]),
        "localContext": {
            "foodAndDrinks": _strings(context.get("foodAndDrinks")),
            "customs": _text(context.get("customs")),
            "etiquetteTips": _strings(context.get("etiquetteTips")),
        },
        "days": repaired_days,
    }
    for optional in ("id", "heroImage", "vibe", "destination"):
        value = raw.get(optional)
        if isinstance(value, str) and value.strip():
            document[optional] = value.strip()

    try:
        itinerary = Itinerary.model_validate(document)
    except ValidationError as exc:
        return ValidationResult(False, reason=f"invalid document: {exc.error_count()} error(s)")
    return ValidationResult(True, itinerary=itinerary)
