"""
Generation and embedding backends (Google Gemini).

Both backends share one interface each so the orchestrator and the
embedding client can be tested against fakes:

    await backend.generate(messages)  -> Optional[str]
    await embedder.embed(text)        -> List[float]

``messages`` uses the same shape as the rest of the service:
``[{"role": "system"|"user"|"assistant", "content": "..."}]``.

A rate-limit/quota signal from Gemini is translated into
``QuotaExceededError(retry_after)`` so callers never depend on
google-api-core exception types.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
import structlog

from .errors import QuotaExceededError

logger = structlog.get_logger()

# Final instruction appended after the history
ANSWER_INSTRUCTION = (
    "Answer the last user message clearly. If you used external info, mention it briefly."
)

_RETRY_DELAY_PATTERNS = (
    re.compile(r"retry_delay\s*\{\s*seconds:\s*(\d+)"),
    re.compile(r"retryDelay\"?\s*[:=]\s*\"?(\d+(?:\.\d+)?)s"),
    re.compile(r"retry in (\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
)


def parse_retry_delay(exc: Exception) -> Optional[float]:
    """
    Extract the backend-suggested retry delay (seconds) from a quota error.

    Looks at structured RetryInfo details first, then the error text.
    Returns None when the backend gave no hint.
    """
    for detail in getattr(exc, "details", None) or []:
        retry_delay = getattr(detail, "retry_delay", None)
        if retry_delay is not None:
            seconds = getattr(retry_delay, "seconds", 0) + getattr(retry_delay, "nanos", 0) / 1e9
            if seconds > 0:
                return float(seconds)
        if isinstance(detail, dict) and "retryDelay" in detail:
            match = re.match(r"(\d+(?:\.\d+)?)s", str(detail["retryDelay"]))
            if match:
                return float(match.group(1))

    text = str(exc)
    for pattern in _RETRY_DELAY_PATTERNS:
        match = pattern.search(text)
        if match:
            return float(match.group(1))
    return None


def to_gemini_contents(messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Map service messages onto Gemini contents (system text rides as a user turn)."""
    contents = []
    for msg in messages:
        role = "model" if msg["role"] == "assistant" else "user"
        contents.append({"role": role, "parts": [msg["content"]]})
    contents.append({"role": "user", "parts": [ANSWER_INSTRUCTION]})
    return contents


class GeminiBackend:
    """One Gemini chat model used as a generation backend."""

    def __init__(self, api_key: str, model: str, name: Optional[str] = None):
        genai.configure(api_key=api_key)
        self.model = model
        self.name = name or model
        self._model = genai.GenerativeModel(model_name=model)

    async def generate(self, messages: List[Dict[str, str]]) -> Optional[str]:
        """
        Run one generation call.

        Returns the answer text, or None when the model returned no text
        (e.g. a blocked candidate).

        Raises:
            QuotaExceededError: Backend reported a rate-limit/quota signal
            google.api_core.exceptions.GoogleAPIError: Any other backend failure
        """
        try:
            response = await self._model.generate_content_async(to_gemini_contents(messages))
        except google_exceptions.TooManyRequests as e:
            retry_after = parse_retry_delay(e)
            logger.warning("gemini_quota_exceeded", model=self.model, retry_after=retry_after)
            raise QuotaExceededError(str(e), retry_after=retry_after) from e

        try:
            return response.text
        except ValueError:
            logger.warning("gemini_empty_response", model=self.model)
            return None


class GeminiEmbedder:
    """Gemini embedding model (text-embedding-004 by default)."""

    def __init__(self, api_key: str, model: str = "text-embedding-004"):
        genai.configure(api_key=api_key)
        self.model = model if model.startswith("models/") else f"models/{model}"

    async def embed(self, text: str) -> List[float]:
        # embed_content is blocking; keep it off the event loop
        result = await asyncio.to_thread(genai.embed_content, model=self.model, content=text)
        return [float(v) for v in result["embedding"]]
