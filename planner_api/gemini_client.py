import logging
import re
from typing import Any, Dict, Optional

import google.genai as genai
import httpx
from google.genai import errors as genai_errors
from google.genai import types

from .errors import ErrorKind, GenerationError

logger = logging.getLogger(__name__)

BLOCK_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "IMAGE_SAFETY", "OTHER"}
BLOCKED_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "RECITATION"}

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", flags=re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


def strip_code_fences(raw_text: str) -> str:
    text = (raw_text or "").strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text)
        text = _FENCE_CLOSE.sub("", text)
    return text.strip()


def extract_json_object(raw_text: str) -> str:
    """Return the first balanced ``{...}`` block in ``raw_text``.

    Used when the model wraps its JSON in prose despite the mime type.
    """
    text = strip_code_fences(raw_text)
    if not text:
        raise ValueError("Empty response from model")
    start = text.find("{")
    if start == -1:
        raise ValueError("No JSON object found in response")
    depth = 0
    in_string = False
    escape = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    raise ValueError("Incomplete JSON object in response")


def _enum_name(value: Any) -> str:
    return str(getattr(value, "name", value) or "").upper()


def _blocked_reason(response: Any) -> Optional[str]:
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = _enum_name(getattr(feedback, "block_reason", None))
    if block_reason in BLOCK_REASONS:
        return block_reason
    for candidate in getattr(response, "candidates", None) or []:
        finish_reason = _enum_name(getattr(candidate, "finish_reason", None))
        if finish_reason in BLOCKED_FINISH_REASONS:
            return finish_reason
    return None


def _response_text(response: Any) -> str:
    raw_text = getattr(response, "text", None)
    if raw_text:
        return raw_text
    raw_chunks = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            if getattr(part, "text", None):
                raw_chunks.append(part.text)
    return "".join(raw_chunks)


class GeminiGenerator:
    """Structured-output generator backed by the Gemini API.

    Every failure leaves this class as a ``GenerationError``; callers never
    see SDK or transport exceptions.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.5-flash",
        temperature: float = 0.6,
        client: Any = None,
    ):
        if client is None:
            if not api_key:
                raise GenerationError(ErrorKind.CONFIGURATION, "Gemini API key is not configured.")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model = model
        self.temperature = temperature

    async def generate(self, prompt: str, schema: Dict[str, Any]) -> str:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[types.Content(role="user", parts=[types.Part.from_text(text=prompt)])],
                config=types.GenerateContentConfig(
                    automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
                    temperature=self.temperature,
                    response_mime_type="application/json",
                    response_schema=schema,
                ),
            )
        except genai_errors.APIError as exc:
            logger.error("Gemini request failed (%s): %s", exc.code, exc.message)
            raise GenerationError(ErrorKind.SERVICE_UNAVAILABLE, f"Generation service error ({exc.code}).") from exc
        except httpx.HTTPError as exc:
            logger.error("Gemini transport failure: %s", exc)
            raise GenerationError(ErrorKind.SERVICE_UNAVAILABLE, "Generation service is unreachable.") from exc
        except Exception as exc:
            logger.error("Gemini call failed: %s", exc, exc_info=True)
            raise GenerationError(ErrorKind.SERVICE_UNAVAILABLE, "Generation service failed.") from exc

        raw_text = _response_text(response)
        if raw_text.strip():
            return raw_text

        blocked = _blocked_reason(response)
        if blocked:
            logger.warning("Gemini declined to answer: %s", blocked)
            raise GenerationError(ErrorKind.CONTENT_BLOCKED, f"Request was blocked ({blocked.lower()}).")
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "Generation service returned an empty response.")
