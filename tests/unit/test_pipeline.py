"""
Unit tests for the chat pipeline wired with in-memory fakes: validation,
routing, the domain gate, grounded answers and the message log.
"""
import pytest

from shared.errors import BadRequestError, EmbeddingError, ErrorCode
from shared.messages import MessageId, localize
from orchestrator.embeddings import EmbeddingClient
from orchestrator.generation import GenerationOrchestrator
from orchestrator.pipeline import ChatPipeline
from orchestrator.retrieval import RetrievalGateway
from orchestrator.state import Filters, Intent, Query, Role, SourceCitation, SourceType, Turn
from rag.base import LookupResult


class FakeAdapter:
    def __init__(self, result, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def lookup(self, query_text, language):
        self.calls.append((query_text, language))
        if self.error:
            raise self.error
        return self.result


async def no_sleep(delay):
    pass


class Harness:
    def __init__(self, config, fakes, rows, primary=None, fallback=None, adapters=None,
                 embed_error=None):
        self.datastore = fakes.Datastore(rows)
        self.embedder = fakes.Embedder(error=embed_error)
        self.primary = primary or fakes.Backend("primary", "Try Akkari Health Center.")
        self.fallback = fallback or fakes.Backend("fallback")
        self.pipeline = ChatPipeline(
            config,
            self.datastore,
            EmbeddingClient(self.embedder),
            RetrievalGateway(self.datastore, config.match_counts),
            GenerationOrchestrator(self.primary, self.fallback, sleep=no_sleep),
            adapters=adapters,
        )


def query(text, language="en", allow_external=False, conversation_id="chat-1", history=()):
    turns = list(history) + [Turn(role=Role.USER, text=text)]
    return Query(conversation_id=conversation_id, language=language, turns=turns,
                 allow_external=allow_external)


# =============================================================================
# Validation
# =============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   "])
async def test_missing_message_rejected_before_any_model_call(config, fakes, sample_rows, text):
    harness = Harness(config, fakes, sample_rows)

    with pytest.raises(BadRequestError) as exc_info:
        await harness.pipeline.handle(query(text, language="fr"))

    assert exc_info.value.code == ErrorCode.MISSING_USER_MESSAGE
    assert exc_info.value.message == localize(MessageId.MISSING_USER_MESSAGE, "fr")
    assert harness.embedder.calls == []
    assert harness.primary.calls == []
    assert harness.datastore.messages == []


@pytest.mark.asyncio
async def test_last_turn_from_assistant_counts_as_missing(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows)
    q = Query(turns=[Turn(role=Role.ASSISTANT, text="Hello")])
    with pytest.raises(BadRequestError):
        # No user turn at all
        await harness.pipeline.handle(q)


@pytest.mark.asyncio
async def test_oversized_message_rejected(config, fakes, sample_rows):
    config.max_message_chars = 10
    harness = Harness(config, fakes, sample_rows)

    with pytest.raises(BadRequestError) as exc_info:
        await harness.pipeline.handle(query("x" * 11))

    assert exc_info.value.code == ErrorCode.MESSAGE_TOO_LONG
    assert harness.embedder.calls == []


# =============================================================================
# Routing
# =============================================================================

@pytest.mark.asyncio
async def test_external_intent_refused_when_disabled(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows)

    answer = await harness.pipeline.handle(query("weather in Rabat", allow_external=False))

    assert answer.output_text == localize(MessageId.DOMAIN_REFUSAL, "en")
    assert answer.sources == []
    assert harness.embedder.calls == []
    assert harness.primary.calls == []


@pytest.mark.asyncio
async def test_external_lookup_answers_directly(config, fakes, sample_rows):
    source = SourceCitation(type=SourceType.WEB, name="OpenRouteService", url="https://openrouteservice.org/")
    directions = FakeAdapter(LookupResult(text="Route: Rabat → Casablanca", sources=[source]))
    harness = Harness(config, fakes, sample_rows, adapters={Intent.DIRECTIONS: directions})

    answer = await harness.pipeline.handle(
        query("from Rabat to Casablanca", language="fr", allow_external=True))

    assert answer.output_text == "Route: Rabat → Casablanca"
    assert answer.sources == [source]
    assert directions.calls == [("from Rabat to Casablanca", "fr")]
    assert harness.embedder.calls == []


@pytest.mark.asyncio
async def test_weather_without_result_falls_through_to_app_data(config, fakes, sample_rows):
    weather = FakeAdapter(LookupResult(text=None))
    harness = Harness(config, fakes, sample_rows, adapters={Intent.WEATHER: weather})

    answer = await harness.pipeline.handle(query("weather in Atlantis", allow_external=True))

    assert weather.calls
    assert harness.embedder.calls == ["weather in Atlantis"]
    assert answer.output_text == "Try Akkari Health Center."


@pytest.mark.asyncio
async def test_missing_web_adapter_answers_unavailable(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows, adapters={})
    answer = await harness.pipeline.handle(query("latest news", allow_external=True))
    assert answer.output_text == localize(MessageId.WEB_UNAVAILABLE, "en")


@pytest.mark.asyncio
async def test_broken_weather_adapter_falls_through_to_app_data(config, fakes, sample_rows):
    weather = FakeAdapter(None, error=ValueError("unexpected payload"))
    harness = Harness(config, fakes, sample_rows, adapters={Intent.WEATHER: weather})

    answer = await harness.pipeline.handle(query("weather in Rabat", allow_external=True))

    assert weather.calls
    assert harness.embedder.calls == ["weather in Rabat"]
    assert answer.output_text == "Try Akkari Health Center."


@pytest.mark.asyncio
async def test_broken_directions_adapter_answers_unavailable(config, fakes, sample_rows):
    directions = FakeAdapter(None, error=AttributeError("segments"))
    harness = Harness(config, fakes, sample_rows, adapters={Intent.DIRECTIONS: directions})

    answer = await harness.pipeline.handle(
        query("from Rabat to Casablanca", language="ar", allow_external=True))

    assert answer.output_text == localize(MessageId.DIRECTIONS_UNAVAILABLE, "ar")
    assert answer.sources == []
    assert harness.embedder.calls == []


# =============================================================================
# Grounded answers
# =============================================================================

@pytest.mark.asyncio
async def test_grounded_answer_with_sources(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows)

    answer = await harness.pipeline.handle(query("health services in Rabat"))

    assert answer.output_text == "Try Akkari Health Center."
    assert [(s.type, s.id) for s in answer.sources] == [
        (SourceType.SERVICE, 1), (SourceType.SERVICE, 2), (SourceType.PLACE, 30),
        (SourceType.STADIUM, 20), (SourceType.NEWS, 10),
    ]

    messages = harness.primary.calls[0]
    assert messages[0]["role"] == "system"
    assert "answer in English" in messages[0]["content"]
    assert messages[1]["content"].startswith("Context:\nServices:\n- Akkari Health Center")
    assert messages[-1] == {"role": "user", "content": "health services in Rabat"}


@pytest.mark.asyncio
async def test_filters_reach_the_datastore(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows)
    q = query("legal aid")
    q.filters = Filters(city_id=3)

    await harness.pipeline.handle(q)

    params = dict(harness.datastore.rpc_calls)
    assert params["match_services"]["city_id"] == 3


@pytest.mark.asyncio
async def test_turn_window_limits_history(config, fakes, sample_rows):
    config.turn_window = 2
    history = [
        Turn(role=Role.USER, text="first"),
        Turn(role=Role.ASSISTANT, text="second"),
        Turn(role=Role.ASSISTANT, text="third"),
    ]
    harness = Harness(config, fakes, sample_rows)

    await harness.pipeline.handle(query("fourth", history=history))

    turns = [m["content"] for m in harness.primary.calls[0][2:]]
    assert turns == ["third", "fourth"]


@pytest.mark.asyncio
async def test_strict_gate_refuses_without_generation(config, fakes):
    config.strict_domain = True
    rows = {"match_services": [{"id": 1, "similarity": 0.1, "name_en": "X"}],
            "match_news": [{"id": 2, "similarity": 0.05, "title_en": "Y"}]}
    harness = Harness(config, fakes, rows)

    answer = await harness.pipeline.handle(query("capital of Peru", language="ar"))

    assert answer.output_text == localize(MessageId.DOMAIN_REFUSAL, "ar")
    assert answer.sources == []
    assert harness.primary.calls == []


@pytest.mark.asyncio
async def test_lenient_mode_generates_with_empty_context(config, fakes):
    harness = Harness(config, fakes, {})

    answer = await harness.pipeline.handle(query("anything"))

    assert harness.primary.calls[0][1]["content"] == "Context:\nNone"
    assert answer.sources == []


@pytest.mark.asyncio
async def test_degraded_answer_has_no_sources(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows,
                      primary=fakes.Backend("primary", fakes.quota()),
                      fallback=fakes.Backend("fallback", fakes.quota()))

    answer = await harness.pipeline.handle(query("health services", language="fr"))

    assert answer.output_text == localize(MessageId.QUOTA_EXHAUSTED, "fr")
    assert answer.sources == []


@pytest.mark.asyncio
async def test_embedding_failure_is_localized(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows, embed_error=RuntimeError("down"))

    with pytest.raises(EmbeddingError) as exc_info:
        await harness.pipeline.handle(query("health services", language="ar"))

    assert exc_info.value.message == localize(MessageId.EMBEDDING_FAILED, "ar")
    assert harness.primary.calls == []


@pytest.mark.asyncio
async def test_unsupported_language_defaults_to_english(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows)
    answer = await harness.pipeline.handle(query("weather in Rabat", language="de"))
    assert answer.output_text == localize(MessageId.DOMAIN_REFUSAL, "en")


# =============================================================================
# Message log
# =============================================================================

@pytest.mark.asyncio
async def test_both_turns_are_logged(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows)

    await harness.pipeline.handle(query("  health services  ", conversation_id="chat-9"))

    assert harness.datastore.messages == [
        ("chat-9", "user", "health services"),
        ("chat-9", "assistant", "Try Akkari Health Center."),
    ]


@pytest.mark.asyncio
async def test_nothing_logged_without_conversation(config, fakes, sample_rows):
    harness = Harness(config, fakes, sample_rows)
    await harness.pipeline.handle(query("health services", conversation_id=None))
    assert harness.datastore.messages == []
