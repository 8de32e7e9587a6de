import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _env_key(*names: str) -> Optional[str]:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


class Settings(BaseModel):
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_MODEL
    unsplash_access_key: Optional[str] = None
    pexels_api_key: Optional[str] = None
    image_timeout: float = Field(default=2.5, gt=0)
    image_task_timeout: float = Field(default=8.0, gt=0)
    generation_timeout: float = Field(default=30.0, gt=0)
    trip_store_path: str = "data/trips.json"
    cors_allow_origins: List[str] = ["http://localhost:5173"]

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(",")
        return cls(
            gemini_api_key=_env_key("GEMINI_API_KEY", "API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL),
            unsplash_access_key=_env_key("UNSPLASH_ACCESS_KEY", "UNSPLASH_API_KEY"),
            pexels_api_key=_env_key("PEXELS_API_KEY"),
            image_timeout=_env_float("IMAGE_TIMEOUT", 2.5),
            image_task_timeout=_env_float("IMAGE_TASK_TIMEOUT", 8.0),
            generation_timeout=_env_float("GENERATION_TIMEOUT", 30.0),
            trip_store_path=os.getenv("TRIP_STORE_PATH", "data/trips.json"),
            cors_allow_origins=[origin.strip() for origin in origins if origin.strip()],
        )
