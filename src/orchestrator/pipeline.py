"""
Chat pipeline

Runs one chat request end to end once the HTTP layer has authenticated
and rate-limited it:

    validate -> log user turn -> route intent
      -> refusal | external lookup | (embed -> retrieve -> gate -> assemble -> generate)
      -> log assistant turn

All collaborators are injected; the pipeline holds no cross-request state.
"""

import asyncio
from typing import Dict, Optional

import structlog

from shared.config import ChatConfig
from shared.datastore import DatastoreClient
from shared.errors import BadRequestError, EmbeddingError, ErrorCode
from shared.messages import MessageId, localize, normalize_language

from .context import ContextAssembler
from .domain_gate import GateDecision, decide
from .embeddings import EmbeddingClient
from .generation import GenerationOrchestrator, build_style_preamble
from .intent_classifier import IntentClassifier
from .retrieval import RetrievalGateway
from .state import ChatAnswer, Intent, Query, Role

logger = structlog.get_logger()


class ChatPipeline:
    """Retrieval-gated chat over the app's records with external lookups."""

    def __init__(
        self,
        config: ChatConfig,
        datastore: DatastoreClient,
        embeddings: EmbeddingClient,
        retrieval: RetrievalGateway,
        generator: GenerationOrchestrator,
        adapters: Optional[Dict[Intent, object]] = None,
        classifier: Optional[IntentClassifier] = None,
        assembler: Optional[ContextAssembler] = None,
    ):
        self.config = config
        self.datastore = datastore
        self.embeddings = embeddings
        self.retrieval = retrieval
        self.generator = generator
        self.adapters = adapters or {}
        self.classifier = classifier or IntentClassifier()
        self.assembler = assembler or ContextAssembler(config.context_limits)

    def validate(self, query: Query) -> str:
        """
        Last user message, trimmed.

        Raises:
            BadRequestError: No usable user message, or one over the length cap
        """
        text = query.last_user_text()
        if not text:
            raise BadRequestError(ErrorCode.MISSING_USER_MESSAGE,
                                  localize(MessageId.MISSING_USER_MESSAGE, query.language))
        if len(text) > self.config.max_message_chars:
            raise BadRequestError(
                ErrorCode.MESSAGE_TOO_LONG,
                localize(MessageId.MESSAGE_TOO_LONG, query.language, limit=self.config.max_message_chars),
                detail=f"{len(text)} chars",
            )
        return text

    async def _reply(self, query: Query, answer: ChatAnswer, outcome: str) -> ChatAnswer:
        await self.datastore.log_message(query.conversation_id, Role.ASSISTANT.value, answer.output_text)
        logger.info("chat_answered", outcome=outcome, sources=len(answer.sources),
                    chars=len(answer.output_text))
        return answer

    def _refusal(self, language: str) -> ChatAnswer:
        return ChatAnswer(output_text=localize(MessageId.DOMAIN_REFUSAL, language), sources=[])

    async def _external(self, intent: Intent, text: str, language: str):
        adapter = self.adapters.get(intent)
        if adapter is None:
            logger.warning("adapter_missing", intent=intent.value)
            return None
        # Adapters chain at most two rounds of calls, each bounded by the same timeout
        limit = self.config.timeouts.external * 2
        try:
            return await asyncio.wait_for(adapter.lookup(text, language), timeout=limit)
        except asyncio.TimeoutError:
            logger.warning("external_lookup_timeout", intent=intent.value, timeout=limit)
            return None
        except Exception as e:
            logger.warning("external_lookup_failed", intent=intent.value, error_type=type(e).__name__)
            return None

    async def handle(self, query: Query) -> ChatAnswer:
        """
        Answer one chat request.

        Raises:
            BadRequestError: Missing or oversized user message (before any model call)
            EmbeddingError: The query could not be embedded
            GenerationError: Generation failed with a non-quota error
        """
        language = normalize_language(query.language)
        query = query.model_copy(update={"language": language})
        text = self.validate(query)

        await self.datastore.log_message(query.conversation_id, Role.USER.value, text)

        classification = self.classifier.classify(text, query.allow_external)
        intent = classification.intent
        logger.info("intent_routed", intent=intent.value, allow_external=query.allow_external)

        if classification.refuse:
            return await self._reply(query, self._refusal(language), "external_refused")

        if intent != Intent.APP_DATA:
            result = await self._external(intent, text, language)
            if result is not None and result.text is not None:
                answer = ChatAnswer(output_text=result.text, sources=result.sources)
                return await self._reply(query, answer, intent.value)
            if intent != Intent.WEATHER:
                # Directions and web search always answer; only a stalled or broken adapter lands here
                message = MessageId.DIRECTIONS_UNAVAILABLE if intent == Intent.DIRECTIONS else MessageId.WEB_UNAVAILABLE
                return await self._reply(query, ChatAnswer(output_text=localize(message, language)), intent.value)
            logger.info("weather_fell_through")

        try:
            vector = await self.embeddings.embed(text)
        except EmbeddingError as e:
            e.message = localize(MessageId.EMBEDDING_FAILED, language)
            raise

        retrieval = await self.retrieval.retrieve(vector, query.filters)

        decision = decide(retrieval.similarities(), self.config.strict_domain, self.config.min_similarity)
        if decision == GateDecision.REFUSE:
            return await self._reply(query, self._refusal(language), "domain_refused")

        block = self.assembler.assemble(retrieval.records(), language)
        window = query.turn_window(self.config.turn_window, self.config.max_message_chars)

        outcome = await self.generator.respond(
            build_style_preamble(language), block.as_prompt(), window, language
        )

        sources = [] if outcome.degraded else block.citations()
        answer = ChatAnswer(output_text=outcome.text, sources=sources)
        return await self._reply(query, answer, "quota_degraded" if outcome.degraded else "generated")
