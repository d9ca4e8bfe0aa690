"""
Generation Orchestrator

Builds the model-facing conversation (style preamble, context, last turns)
and runs it on the primary backend. A quota signal gets exactly one retry
on the fallback backend after the backend-suggested delay; a second quota
signal degrades to a localized "try again later" answer.

Quota policy: backend quota exhaustion is never surfaced as HTTP 429. The
request succeeds with the soft message.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import structlog
from prometheus_client import Counter

from shared.errors import GenerationError, QuotaExceededError
from shared.messages import MessageId, localize

from .state import Role, Turn

logger = structlog.get_logger()

generation_calls = Counter(
    'rag_chat_generation_calls_total',
    'Generation backend calls',
    ['backend', 'outcome']
)


def build_style_preamble(language: str) -> str:
    """System/style message: target language plus the grounding rule."""
    language_name = localize(MessageId.LANGUAGE_NAME, language)
    return (
        'You are the in-app assistant for "Migrant-e-s Help" in Morocco.\n'
        "Primary scope: app data (services with their cities and categories, news, "
        "CAN 2025 stadiums and places).\n"
        "Answer only from the provided context. If the context does not contain the answer, "
        "say so and ask a brief follow-up question.\n"
        f"Stay concise, answer in {language_name}, prefer bullet points."
    )


@dataclass
class GenerationOutcome:
    text: str
    backend: Optional[str] = None
    # True when the soft quota message was returned instead of a model answer
    degraded: bool = False
    calls: int = 0


class GenerationOrchestrator:
    """Primary call, one bounded quota retry on the fallback, then a soft apology."""

    def __init__(
        self,
        primary,
        fallback,
        default_retry_delay: float = 4.0,
        max_retry_delay: float = 15.0,
        timeout: float = 30.0,
        sleep=asyncio.sleep,
    ):
        """
        Args:
            primary: Backend with ``await generate(messages) -> Optional[str]`` and a ``name``
            fallback: Backend used for the single retry
            default_retry_delay: Seconds to wait when the backend gives no hint
            max_retry_delay: Upper bound on any wait
            timeout: Per-call timeout in seconds
            sleep: Awaitable sleep (tests pass a recorder)
        """
        self.primary = primary
        self.fallback = fallback
        self.default_retry_delay = default_retry_delay
        self.max_retry_delay = max_retry_delay
        self.timeout = timeout
        self._sleep = sleep

    @staticmethod
    def build_conversation(style_preamble: str, context_prompt: str,
                           turn_window: Sequence[Turn]) -> List[Dict[str, str]]:
        messages = [
            {"role": "system", "content": style_preamble},
            {"role": "user", "content": context_prompt},
        ]
        for turn in turn_window:
            role = "assistant" if turn.role == Role.ASSISTANT else "user"
            messages.append({"role": role, "content": turn.text})
        return messages

    def retry_delay(self, error: QuotaExceededError) -> float:
        delay = error.retry_after if error.retry_after and error.retry_after > 0 else self.default_retry_delay
        return min(delay, self.max_retry_delay)

    async def _call(self, backend, messages: List[Dict[str, str]]) -> Optional[str]:
        name = getattr(backend, "name", type(backend).__name__)
        try:
            text = await asyncio.wait_for(backend.generate(messages), timeout=self.timeout)
        except QuotaExceededError:
            generation_calls.labels(backend=name, outcome="quota").inc()
            raise
        except asyncio.TimeoutError:
            generation_calls.labels(backend=name, outcome="timeout").inc()
            logger.error("generation_timeout", backend=name, timeout=self.timeout)
            raise GenerationError(detail=f"{name} timed out after {self.timeout}s")
        except Exception as e:
            generation_calls.labels(backend=name, outcome="error").inc()
            logger.error("generation_failed", backend=name, error=str(e), error_type=type(e).__name__)
            raise GenerationError(detail=f"{name}: {e}") from e
        generation_calls.labels(backend=name, outcome="ok").inc()
        return text

    async def respond(self, style_preamble: str, context_prompt: str,
                      turn_window: Sequence[Turn], language: str) -> GenerationOutcome:
        """
        Generate the answer text.

        Raises:
            GenerationError: A backend failed with something other than a quota signal
        """
        messages = self.build_conversation(style_preamble, context_prompt, turn_window)
        primary_name = getattr(self.primary, "name", "primary")
        fallback_name = getattr(self.fallback, "name", "fallback")

        try:
            text = await self._call(self.primary, messages)
            return GenerationOutcome(text=text or localize(MessageId.NO_ANSWER, language),
                                     backend=primary_name, calls=1)
        except QuotaExceededError as e:
            delay = self.retry_delay(e)
            logger.warning("generation_quota_retry", backend=primary_name,
                           fallback=fallback_name, delay_seconds=delay)

        await self._sleep(delay)

        try:
            text = await self._call(self.fallback, messages)
        except QuotaExceededError:
            logger.warning("generation_quota_exhausted", backend=fallback_name)
            return GenerationOutcome(text=localize(MessageId.QUOTA_EXHAUSTED, language),
                                     degraded=True, calls=2)

        return GenerationOutcome(text=text or localize(MessageId.NO_ANSWER, language),
                                 backend=fallback_name, calls=2)
