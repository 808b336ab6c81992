"""Generation backend contract and the Gemini REST adapter."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import httpx
import pydantic

from .config import (
    DEFAULT_MODEL,
    GEMINI_BASE_URL,
    MAX_OUTPUT_TOKENS,
    REQUEST_TIMEOUT,
    TEMPERATURE,
    TOP_K,
    TOP_P,
)
from .exceptions import (
    AuthError,
    BackendError,
    ContentPolicyError,
    MalformedResponseError,
    NetworkError,
)
from .models import Message, Part

logger = logging.getLogger(__name__)

# finishReason values that mean the reply was withheld
BLOCKED_FINISH_REASONS = {
    "SAFETY",
    "IMAGE_SAFETY",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
    "RECITATION",
}


@dataclass
class GenerationOptions:
    model: str = DEFAULT_MODEL
    temperature: float = TEMPERATURE
    top_p: float = TOP_P
    top_k: int = TOP_K
    max_output_tokens: int = MAX_OUTPUT_TOKENS
    response_modalities: tuple[str, ...] = ("Text", "Image")

    def to_generation_config(self) -> dict:
        return {
            "temperature": self.temperature,
            "topP": self.top_p,
            "topK": self.top_k,
            "maxOutputTokens": self.max_output_tokens,
            "responseModalities": list(self.response_modalities),
        }


class GenerationBackend(Protocol):
    async def generate(
        self, history: Sequence[Message], options: GenerationOptions
    ) -> list[Part]:
        """Return the parts of the model's reply to ``history``.

        Raises a :class:`BackendError` subclass on failure.
        """
        ...


class GeminiBackend:
    """Async client for the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = GEMINI_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def generate(
        self, history: Sequence[Message], options: GenerationOptions | None = None
    ) -> list[Part]:
        if not self.api_key:
            raise AuthError("No Gemini API key configured. Set GEMINI_API_KEY.")
        options = options or GenerationOptions()
        body = {
            "contents": [m.to_wire() for m in history],
            "generationConfig": options.to_generation_config(),
        }
        url = f"{self.base_url}/models/{options.model}:generateContent"

        logger.debug("Requesting %s with %d messages", options.model, len(history))
        try:
            response = await self._get_client().post(
                url, json=body, headers={"x-goog-api-key": self.api_key}
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Request to {options.model} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Could not reach the generation backend: {exc}") from exc

        _raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Backend returned a non-JSON body") from exc
        return parse_reply(payload)


def _raise_for_status(response: httpx.Response):
    status = response.status_code
    if status < 400:
        return
    detail = response.text[:300]
    if status in (401, 403) or "API_KEY_INVALID" in detail:
        raise AuthError(f"Backend rejected the API key ({status})")
    if status == 429 or status >= 500:
        raise NetworkError(f"Backend unavailable ({status}): {detail}")
    err = BackendError(f"Backend rejected the request ({status}): {detail}")
    err.retryable = False
    raise err


def parse_reply(payload: dict) -> list[Part]:
    """Extract the first candidate's parts from a ``generateContent`` response."""
    if not isinstance(payload, dict):
        raise MalformedResponseError("Response body is not an object")

    block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise ContentPolicyError(f"Prompt was blocked: {block_reason}")

    candidates = payload.get("candidates") or []
    if not candidates:
        raise MalformedResponseError("Response contains no candidates")

    candidate = candidates[0]
    raw_parts = (candidate.get("content") or {}).get("parts") or []
    finish_reason = candidate.get("finishReason")
    if not raw_parts and finish_reason in BLOCKED_FINISH_REASONS:
        raise ContentPolicyError(f"Reply was withheld: {finish_reason}")

    parts: list[Part] = []
    for raw in raw_parts:
        # Skip part kinds the chat cannot show (function calls, code, ...)
        if not isinstance(raw, dict) or ("text" not in raw and "inlineData" not in raw):
            continue
        try:
            parts.append(Part.model_validate(raw))
        except pydantic.ValidationError as exc:
            raise MalformedResponseError(f"Unreadable response part: {exc}") from exc

    if not parts:
        raise MalformedResponseError(
            f"Response has no text or image parts (finishReason={finish_reason})"
        )
    return parts
