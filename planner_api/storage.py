import json
import logging
import os
import tempfile
import threading
from collections import Counter
from contextlib import suppress
from pathlib import Path
from typing import Any, Dict, List

from pydantic import ValidationError

from .schema import Itinerary

logger = logging.getLogger(__name__)

SAVED_KEY = "saved"
HISTORY_KEY = "history"


class TripStore:
    """Saved and history collections kept in one JSON file, newest first."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, List[Dict[str, Any]]]:
        if not self.path.exists():
            return {SAVED_KEY: [], HISTORY_KEY: []}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Trip store %s unreadable, starting empty: %s", self.path, exc)
            return {SAVED_KEY: [], HISTORY_KEY: []}
        if not isinstance(data, dict):
            data = {}
        return {key: [item for item in data.get(key) or [] if isinstance(item, dict)] for key in (SAVED_KEY, HISTORY_KEY)}

    def _write(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            with suppress(OSError):
                os.unlink(tmp_path)
            raise

    def _load(self, key: str) -> List[Itinerary]:
        out = []
        for item in self._read()[key]:
            try:
                out.append(Itinerary.model_validate(item))
            except ValidationError:
                logger.warning("Skipping unreadable %s entry %s", key, item.get("id"))
        return out

    def saved(self) -> List[Itinerary]:
        return self._load(SAVED_KEY)

    def history(self) -> List[Itinerary]:
        return self._load(HISTORY_KEY)

    def add_history(self, itinerary: Itinerary) -> None:
        with self._lock:
            data = self._read()
            data[HISTORY_KEY].insert(0, itinerary.model_dump(mode="json"))
            self._write(data)

    def clear_history(self) -> None:
        with self._lock:
            data = self._read()
            data[HISTORY_KEY] = []
            self._write(data)

    def is_saved(self, itinerary_id: str) -> bool:
        return any(item.get("id") == itinerary_id for item in self._read()[SAVED_KEY])

    def toggle_saved(self, itinerary: Itinerary) -> bool:
        """Save or unsave by id. Returns True when the itinerary is now saved."""
        with self._lock:
            data = self._read()
            saved = data[SAVED_KEY]
            remaining = [item for item in saved if item.get("id") != itinerary.id]
            now_saved = len(remaining) == len(saved)
            if now_saved:
                remaining.insert(0, itinerary.model_dump(mode="json"))
            data[SAVED_KEY] = remaining
            self._write(data)
        return now_saved


def favorite_vibe(history: List[Itinerary]) -> str:
    vibes = [trip.vibe for trip in history if trip.vibe]
    if not vibes:
        return "Undecided"
    # most_common keeps first-seen order on ties
    return Counter(vibes).most_common(1)[0][0]
