"""
Integration tests for the chat gateway HTTP surface.

The app is built with in-memory collaborators (fake Redis, datastore,
embedder and generation backends) so the whole request path runs:
tracing, auth, rate limit, body parsing, pipeline and error mapping.
"""
import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from shared.cache import CacheClient
from shared.messages import MessageId, localize
from orchestrator.embeddings import EmbeddingClient
from orchestrator.generation import GenerationOrchestrator
from orchestrator.pipeline import ChatPipeline
from orchestrator.retrieval import RetrievalGateway
from gateway.main import GatewayComponents, create_app
from gateway.rate_limiter import DailyRateLimiter


async def no_sleep(delay):
    pass


@pytest.fixture
def stack(config, fakes, sample_rows):
    datastore = fakes.Datastore(sample_rows)
    embedder = fakes.Embedder()
    primary = fakes.Backend("primary", *(["Try Akkari Health Center."] * 10))
    cache = CacheClient(client=fakes.Redis())
    pipeline = ChatPipeline(
        config,
        datastore,
        EmbeddingClient(embedder, cache=cache),
        RetrievalGateway(datastore, config.match_counts),
        GenerationOrchestrator(primary, fakes.Backend("fallback"), sleep=no_sleep),
    )
    components = GatewayComponents(
        pipeline=pipeline,
        rate_limiter=DailyRateLimiter(cache, daily_limit=config.daily_request_limit),
        datastore=datastore,
        cache=cache,
    )
    return type("Stack", (), {
        "config": config, "components": components, "datastore": datastore,
        "embedder": embedder, "primary": primary,
    })


def make_client(stack):
    return TestClient(create_app(stack.config, stack.components))


def chat_body(text, **extra):
    body = {"chat_id": "chat-1", "language": "en", "messages": [{"role": "user", "content": text}]}
    body.update(extra)
    return body


# =============================================================================
# /api/rag-chat
# =============================================================================

def test_grounded_answer(stack):
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", json=chat_body("health services in Rabat"))

    assert response.status_code == 200
    data = response.json()
    assert data["output_text"] == "Try Akkari Health Center."
    assert data["sources"][0] == {
        "type": "service", "id": 1, "name": "Akkari Health Center", "lat": 34.01, "lng": -6.84,
    }
    assert [s["type"] for s in data["sources"]] == ["service", "service", "place", "stadium", "news"]
    assert "X-Request-ID" in response.headers


def test_missing_user_message(stack):
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", json={"language": "fr", "messages": []})

    assert response.status_code == 400
    assert response.json() == {
        "error": "missing_user_message",
        "message": localize(MessageId.MISSING_USER_MESSAGE, "fr"),
    }
    assert stack.embedder.calls == []
    assert stack.primary.calls == []


def test_message_too_long(stack):
    stack.config.max_message_chars = 20
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", json=chat_body("x" * 21))

    assert response.status_code == 400
    assert response.json()["error"] == "message_too_long"


@pytest.mark.parametrize("body", [b"not json", b"", b'{"messages": "nope"}', b'[1, 2]'])
def test_invalid_body(stack, body):
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", content=body,
                               headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_external_intent_refused_by_default(stack):
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", json=chat_body("weather in Rabat"))

    assert response.status_code == 200
    assert response.json() == {"output_text": localize(MessageId.DOMAIN_REFUSAL, "en"), "sources": []}


def test_soft_quota_answer_is_200(stack, fakes):
    pipeline = stack.components.pipeline
    pipeline.generator.primary = fakes.Backend("primary", fakes.quota(retry_after=1))
    pipeline.generator.fallback = fakes.Backend("fallback", fakes.quota())

    with make_client(stack) as client:
        response = client.post("/api/rag-chat", json=chat_body("health services", language="ar"))

    assert response.status_code == 200
    assert response.json() == {"output_text": localize(MessageId.QUOTA_EXHAUSTED, "ar"), "sources": []}


def test_embedding_failure_is_500(stack):
    stack.embedder.error = RuntimeError("embedding service down")
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", json=chat_body("health services"))

    assert response.status_code == 500
    assert response.json() == {
        "error": "embedding_failed",
        "message": localize(MessageId.EMBEDDING_FAILED, "en"),
    }


def test_unexpected_failure_is_chat_failed(stack):
    async def broken(*args, **kwargs):
        raise KeyError("boom")

    stack.components.pipeline.retrieval.retrieve = broken
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", json=chat_body("health services"))

    assert response.status_code == 500
    assert response.json()["error"] == "chat_failed"
    assert "boom" not in response.text


def test_messages_are_logged(stack):
    with make_client(stack) as client:
        client.post("/api/rag-chat", json=chat_body("health services", chat_id=42))

    assert stack.datastore.messages == [
        ("42", "user", "health services"),
        ("42", "assistant", "Try Akkari Health Center."),
    ]


# =============================================================================
# Auth and rate limit
# =============================================================================

def test_app_key_required_when_configured(stack):
    stack.config.app_key = "s3cret"
    with make_client(stack) as client:
        missing = client.post("/api/rag-chat", json=chat_body("health services"))
        wrong = client.post("/api/rag-chat", json=chat_body("health services"),
                            headers={"X-APP-KEY": "nope"})
        right = client.post("/api/rag-chat", json=chat_body("health services"),
                            headers={"X-APP-KEY": "s3cret"})

    assert missing.status_code == 401
    assert missing.json()["error"] == "unauthorized"
    assert wrong.status_code == 401
    assert right.status_code == 200


def test_auth_checked_before_body(stack):
    stack.config.app_key = "s3cret"
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", content=b"not json",
                               headers={"Content-Type": "application/json"})
    assert response.status_code == 401


def unauthorized_count():
    return REGISTRY.get_sample_value("rag_chat_requests_total", {"status": "unauthorized"}) or 0


def test_unauthorized_requests_are_counted(stack):
    stack.config.app_key = "s3cret"
    before = unauthorized_count()
    with make_client(stack) as client:
        response = client.post("/api/rag-chat", json=chat_body("health services"))
    assert response.status_code == 401
    assert unauthorized_count() == before + 1


def test_unauthorized_message_follows_accept_language(stack):
    stack.config.app_key = "s3cret"
    with make_client(stack) as client:
        french = client.post("/api/rag-chat", json=chat_body("health services"),
                             headers={"Accept-Language": "fr-FR,fr;q=0.9,en;q=0.8"})
        unknown = client.post("/api/rag-chat", json=chat_body("health services"),
                              headers={"Accept-Language": "de-DE"})

    assert french.json() == {"error": "unauthorized", "message": localize(MessageId.UNAUTHORIZED, "fr")}
    assert unknown.json()["message"] == localize(MessageId.UNAUTHORIZED, "en")


def test_daily_limit_per_ip(stack):
    stack.components.rate_limiter.daily_limit = 2
    with make_client(stack) as client:
        statuses = [
            client.post("/api/rag-chat", json=chat_body("health services"),
                        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}).status_code
            for _ in range(3)
        ]
        other = client.post("/api/rag-chat", json=chat_body("health services"),
                            headers={"X-Forwarded-For": "198.51.100.2"})

    assert statuses == [200, 200, 429]
    assert other.status_code == 200


def test_rate_limited_response_shape(stack):
    stack.components.rate_limiter.daily_limit = 1
    with make_client(stack) as client:
        client.post("/api/rag-chat", json=chat_body("health services"))
        response = client.post("/api/rag-chat", json=chat_body("health services"))

    assert response.status_code == 429
    assert response.json() == {"error": "rate_limited", "message": localize(MessageId.RATE_LIMITED, "en")}
    # Rejected before the pipeline ran
    assert len(stack.embedder.calls) == 1


def test_rate_limited_message_follows_accept_language(stack):
    stack.components.rate_limiter.daily_limit = 1
    with make_client(stack) as client:
        client.post("/api/rag-chat", json=chat_body("health services"))
        response = client.post("/api/rag-chat", json=chat_body("health services"),
                               headers={"Accept-Language": "ar"})

    assert response.status_code == 429
    assert response.json()["message"] == localize(MessageId.RATE_LIMITED, "ar")


# =============================================================================
# Methods and other routes
# =============================================================================

def test_get_is_method_not_allowed(stack):
    with make_client(stack) as client:
        response = client.get("/api/rag-chat")
    assert response.status_code == 405
    assert response.json()["error"] == "method_not_allowed"


def test_preflight(stack):
    with make_client(stack) as client:
        response = client.options("/api/rag-chat", headers={
            "Origin": "https://app.example.org",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "X-APP-KEY",
        })
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_create_chat(stack):
    with make_client(stack) as client:
        response = client.post("/api/chats")
    assert response.status_code == 200
    assert response.json() == {"chat_id": "chat-1"}


def test_health(stack):
    with make_client(stack) as client:
        response = client.get("/health")
    data = response.json()
    assert response.status_code == 200
    assert data["status"] == "healthy"
    assert data["rate_limiter"]["daily_limit"] == stack.config.daily_request_limit


def test_metrics(stack):
    with make_client(stack) as client:
        client.post("/api/rag-chat", json=chat_body("health services"))
        response = client.get("/metrics")
    assert response.status_code == 200
    assert "rag_chat_requests_total" in response.text
