"""
Migrant Help chat gateway

HTTP surface of the retrieval-augmented chat service.

Endpoints:
- POST /api/rag-chat - Answer a conversation (OPTIONS for preflight)
- POST /api/chats - Create a conversation id for the message log
- GET /health - Health check
- GET /metrics - Prometheus metrics
"""

import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import Counter, Histogram, generate_latest
from pydantic import BaseModel, Field, ValidationError

from shared.cache import CacheClient
from shared.config import ChatConfig, load_config
from shared.datastore import DatastoreClient
from shared.errors import (
    BadRequestError,
    ChatServiceError,
    ErrorCode,
    InternalError,
    RateLimitError,
    UnauthorizedError,
    register_exception_handlers,
)
from shared.llm_backends import GeminiBackend, GeminiEmbedder
from shared.logging_config import configure_logging
from shared.messages import MessageId, localize, normalize_language
from shared.tracing import RequestTracingMiddleware, resolve_caller_ip

from orchestrator.embeddings import EmbeddingClient
from orchestrator.generation import GenerationOrchestrator
from orchestrator.pipeline import ChatPipeline
from orchestrator.retrieval import RetrievalGateway
from orchestrator.state import Filters, Intent, Query, Turn

from rag.directions import DirectionsAdapter
from rag.weather import WeatherAdapter
from rag.websearch import WebSearchAdapter

from gateway.rate_limiter import DailyRateLimiter

SERVICE_NAME = "rag-chat"

logger = structlog.get_logger()

# Metrics
request_counter = Counter(
    'rag_chat_requests_total',
    'Total chat requests',
    ['status']
)
request_duration = Histogram(
    'rag_chat_request_duration_seconds',
    'Chat request duration in seconds',
    buckets=[0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 7.5, 10.0, 15.0, 30.0, 60.0]
)


# Request models
class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: Optional[str] = ""


class FiltersIn(BaseModel):
    cityId: Optional[Any] = None
    categoryId: Optional[Any] = None


class ChatRequest(BaseModel):
    chat_id: Optional[Any] = Field(None, description="Conversation id for the message log")
    language: Optional[str] = Field("en", description="en, fr or ar")
    messages: List[ChatMessageIn] = Field(default_factory=list)
    filters: Optional[FiltersIn] = None
    allowExternal: bool = False

    def to_query(self) -> Query:
        filters = self.filters or FiltersIn()
        return Query(
            conversation_id=str(self.chat_id) if self.chat_id not in (None, "") else None,
            language=normalize_language(self.language),
            turns=[Turn(role=m.role, text=m.content or "") for m in self.messages],
            filters=Filters(city_id=filters.cityId, category_id=filters.categoryId),
            allow_external=self.allowExternal,
        )


@dataclass
class GatewayComponents:
    """Everything the routes need, built once per process."""
    pipeline: ChatPipeline
    rate_limiter: DailyRateLimiter
    datastore: DatastoreClient
    cache: CacheClient
    # Closed on shutdown
    closeables: List[Any] = field(default_factory=list)


def build_components(config: ChatConfig) -> GatewayComponents:
    """Wire the production clients from configuration."""
    config.require_valid()

    cache = CacheClient(url=config.redis_url)
    http_client = httpx.AsyncClient(timeout=config.timeouts.external)
    datastore = DatastoreClient(config.datastore_rest_url, config.supabase_key,
                                timeout=config.timeouts.retrieval)

    embeddings = EmbeddingClient(
        GeminiEmbedder(config.google_api_key, config.embed_model),
        cache=cache,
        model=config.embed_model,
        ttl=config.embedding_cache_ttl,
        timeout=config.timeouts.embedding,
    )
    generator = GenerationOrchestrator(
        primary=GeminiBackend(config.google_api_key, config.chat_model, name="primary"),
        fallback=GeminiBackend(config.google_api_key, config.fallback_chat_model, name="fallback"),
        default_retry_delay=config.default_retry_delay,
        max_retry_delay=config.max_retry_delay,
        timeout=config.timeouts.generation,
    )
    adapters = {
        Intent.WEATHER: WeatherAdapter(http_client, cache=cache, timeout=config.timeouts.external),
        Intent.DIRECTIONS: DirectionsAdapter(http_client, api_key=config.openrouteservice_api_key,
                                             cache=cache, timeout=config.timeouts.external),
        Intent.WEB: WebSearchAdapter(http_client, api_key=config.serpapi_api_key,
                                     cache=cache, timeout=config.timeouts.external),
    }
    pipeline = ChatPipeline(
        config=config,
        datastore=datastore,
        embeddings=embeddings,
        retrieval=RetrievalGateway(datastore, config.match_counts, timeout=config.timeouts.retrieval),
        generator=generator,
        adapters=adapters,
    )
    return GatewayComponents(
        pipeline=pipeline,
        rate_limiter=DailyRateLimiter(cache, daily_limit=config.daily_request_limit),
        datastore=datastore,
        cache=cache,
        closeables=[http_client, datastore, cache],
    )


def get_components(request: Request) -> GatewayComponents:
    return request.app.state.components


def request_language(request: Request) -> str:
    """Caller language for errors raised before the body is read, from Accept-Language."""
    first_tag = request.headers.get("accept-language", "").split(",")[0].split(";")[0]
    return normalize_language(first_tag)


async def validate_app_key(request: Request):
    """Check X-APP-KEY only when FRONTEND_APP_KEY is configured."""
    config: ChatConfig = request.app.state.config
    if not config.auth_enabled:
        return True  # Auth disabled

    provided = request.headers.get("x-app-key", "")
    if not provided or not secrets.compare_digest(provided, config.app_key):
        raise UnauthorizedError(localize(MessageId.UNAUTHORIZED, request_language(request)),
                                detail="bad or missing X-APP-KEY")

    return True


async def _parse_chat_request(request: Request) -> ChatRequest:
    try:
        payload = await request.json()
    except ValueError:
        raise BadRequestError(ErrorCode.INVALID_REQUEST, "Request body must be JSON")
    if payload is None:
        payload = {}
    try:
        return ChatRequest.model_validate(payload)
    except ValidationError as e:
        raise BadRequestError(ErrorCode.INVALID_REQUEST, "Request body is invalid",
                              detail=f"{len(e.errors())} validation errors")


def create_app(config: Optional[ChatConfig] = None,
               components: Optional[GatewayComponents] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Configuration (read from the environment when omitted)
        components: Prebuilt components; when omitted they are built from
            config at startup, which fails if required settings are missing
    """
    config = config or load_config()
    configure_logging(SERVICE_NAME, level=config.log_level, log_format=config.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("starting_chat_gateway", port=config.service_port,
                    strict_domain=config.strict_domain, auth_enabled=config.auth_enabled)
        if app.state.components is None:
            app.state.components = build_components(config)

        yield

        logger.info("shutting_down_chat_gateway")
        for resource in app.state.components.closeables:
            if isinstance(resource, httpx.AsyncClient):
                await resource.aclose()
            else:
                await resource.close()

    app = FastAPI(
        title="Migrant Help Chat",
        description="Retrieval-augmented chat over services, news, stadiums and places",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.config = config
    app.state.components = components

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-APP-KEY"],
    )
    # Added last so it wraps CORS and sees every request
    app.add_middleware(RequestTracingMiddleware, service_name=SERVICE_NAME)

    register_exception_handlers(app)

    @app.options("/api/rag-chat")
    @app.options("/api/chats")
    async def preflight():
        return Response(status_code=200)

    @app.post("/api/rag-chat")
    async def rag_chat(
        request: Request,
        components: GatewayComponents = Depends(get_components),
    ):
        start = time.time()
        status = "ok"
        try:
            # Inside the try so rejected callers are counted
            await validate_app_key(request)
            ip = resolve_caller_ip(request)
            if not await components.rate_limiter.acquire(ip):
                raise RateLimitError(localize(MessageId.RATE_LIMITED, request_language(request)))

            body = await _parse_chat_request(request)
            query = body.to_query()
            try:
                answer = await components.pipeline.handle(query)
            except ChatServiceError:
                raise
            except Exception as e:
                logger.error("chat_failed", error=str(e), error_type=type(e).__name__, exc_info=e)
                raise InternalError(localize(MessageId.CHAT_FAILED, query.language), detail=str(e))

            return answer.to_wire()
        except ChatServiceError as e:
            status = e.code.value
            raise
        finally:
            request_counter.labels(status=status).inc()
            request_duration.observe(time.time() - start)

    @app.post("/api/chats")
    async def create_chat(
        _: bool = Depends(validate_app_key),
        components: GatewayComponents = Depends(get_components),
    ):
        chat_id = await components.datastore.create_chat()
        return {"chat_id": chat_id}

    @app.get("/health")
    async def health_check(components: GatewayComponents = Depends(get_components)):
        """Health check endpoint."""
        health = {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": "1.0.0",
            "cache": await components.cache.ping(),
            "datastore": await components.datastore.ping(),
            "rate_limiter": components.rate_limiter.get_status(),
        }
        if not health["datastore"]:
            health["status"] = "unhealthy"
        elif not health["cache"]:
            health["status"] = "degraded"
        return health

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type="text/plain")

    return app


def main():
    import uvicorn

    config = load_config()
    config.validate_or_exit(SERVICE_NAME)
    uvicorn.run(create_app(config), host="0.0.0.0", port=config.service_port)


if __name__ == "__main__":
    main()
