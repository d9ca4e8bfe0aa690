"""
Centralized configuration for the Migrant Help chat service.
Secure-by-default: credentials for the generation backend and the datastore
MUST be explicitly configured.

The configuration is built once at process start (see load_config) and handed
to every component constructor. Components never read the environment
themselves.
"""
import os
import sys
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}: {raw!r}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric value for {name}: {raw!r}")
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ContextLimits:
    """Character caps applied by the context assembler.

    These bound the model's token cost directly, so they are configuration
    and not literals in the formatters.
    """
    total_chars: int = 3000
    line_chars: int = 300
    name_chars: int = 80
    address_chars: int = 80
    phone_chars: int = 30
    capacity_chars: int = 20
    title_chars: int = 100


@dataclass
class MatchCounts:
    """Per-category result caps for the similarity search RPCs."""
    services: int = 6
    news: int = 3
    stadiums: int = 3
    places: int = 4


@dataclass
class Timeouts:
    """Upper bounds (seconds) for every suspension point of a request."""
    embedding: float = 10.0
    retrieval: float = 8.0
    generation: float = 30.0
    external: float = 10.0


@dataclass
class ChatConfig:
    """
    Configuration container with validation.

    Configuration Precedence (highest to lowest):
    1. Environment Variables
    2. Config Files (.env)
    3. Code Defaults (only for non-sensitive, optional values)
    """

    # =========================================================================
    # REQUIRED - No defaults, fail fast if missing
    # =========================================================================

    google_api_key: str = field(default_factory=lambda: _env_str("GOOGLE_API_KEY"))
    supabase_url: str = field(default_factory=lambda: _env_str("SUPABASE_URL"))
    supabase_key: str = field(default_factory=lambda: _env_str("SUPABASE_SERVICE_ROLE"))

    # =========================================================================
    # OPTIONAL - Sensible defaults for development
    # =========================================================================

    redis_url: str = field(default_factory=lambda: _env_str("REDIS_URL", "redis://localhost:6379/0"))

    # Caller credential (X-APP-KEY). Blank disables the check.
    app_key: str = field(default_factory=lambda: _env_str("FRONTEND_APP_KEY"))

    daily_request_limit: int = field(default_factory=lambda: _env_int("DAILY_REQUEST_LIMIT", 200))
    max_message_chars: int = field(default_factory=lambda: _env_int("MAX_MESSAGE_CHARS", 1200))
    turn_window: int = field(default_factory=lambda: _env_int("TURN_WINDOW", 2))

    # Domain gate
    strict_domain: bool = field(default_factory=lambda: _env_bool("STRICT_DOMAIN", False))
    min_similarity: float = field(default_factory=lambda: _env_float("MIN_SIM", 0.22))

    # Models
    chat_model: str = field(default_factory=lambda: _env_str("CHAT_MODEL", "gemini-1.5-flash"))
    fallback_chat_model: str = field(default_factory=lambda: _env_str("FALLBACK_CHAT_MODEL", "gemini-1.5-flash"))
    embed_model: str = field(default_factory=lambda: _env_str("EMBED_MODEL", "text-embedding-004"))

    # Generation retry on quota errors
    default_retry_delay: float = field(default_factory=lambda: _env_float("DEFAULT_RETRY_DELAY", 4.0))
    max_retry_delay: float = field(default_factory=lambda: _env_float("MAX_RETRY_DELAY", 15.0))

    # Embedding cache lifetime (seconds)
    embedding_cache_ttl: int = field(default_factory=lambda: _env_int("EMBEDDING_CACHE_TTL", 30 * 24 * 3600))

    context_limits: ContextLimits = field(default_factory=lambda: ContextLimits(
        total_chars=_env_int("MAX_CONTEXT_CHARS", 3000),
        line_chars=_env_int("MAX_CONTEXT_LINE_CHARS", 300),
    ))
    match_counts: MatchCounts = field(default_factory=lambda: MatchCounts(
        services=_env_int("MATCH_COUNT_SERVICES", 6),
        news=_env_int("MATCH_COUNT_NEWS", 3),
        stadiums=_env_int("MATCH_COUNT_STADIUMS", 3),
        places=_env_int("MATCH_COUNT_PLACES", 4),
    ))
    timeouts: Timeouts = field(default_factory=lambda: Timeouts(
        embedding=_env_float("EMBED_TIMEOUT", 10.0),
        retrieval=_env_float("RETRIEVAL_TIMEOUT", 8.0),
        generation=_env_float("GENERATION_TIMEOUT", 30.0),
        external=_env_float("EXTERNAL_TIMEOUT", 10.0),
    ))

    # External lookups (soft dependencies; weather needs no key)
    openrouteservice_api_key: str = field(default_factory=lambda: _env_str("OPENROUTESERVICE_API_KEY"))
    serpapi_api_key: str = field(default_factory=lambda: _env_str("SERPAPI_API_KEY"))

    # Service
    service_port: int = field(default_factory=lambda: _env_int("SERVICE_PORT", 8000))
    log_level: str = field(default_factory=lambda: _env_str("LOG_LEVEL", "INFO").upper())
    log_format: str = field(default_factory=lambda: _env_str("LOG_FORMAT", "json"))

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def auth_enabled(self) -> bool:
        """Whether callers must present a matching X-APP-KEY header."""
        return bool(self.app_key)

    @property
    def datastore_rest_url(self) -> str:
        """PostgREST base URL of the datastore."""
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of errors.
        Call at service startup to fail fast with clear errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if not self.google_api_key:
            errors.append(
                "GOOGLE_API_KEY is required but not set.\n"
                "  Set via environment variable: export GOOGLE_API_KEY='your-key'\n"
                "  Or in .env file: GOOGLE_API_KEY=your-key"
            )

        if not self.supabase_url or not self.supabase_key:
            errors.append(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE are required but not set.\n"
                "  Set via environment variables or in the .env file"
            )

        if self.daily_request_limit < 1:
            errors.append(f"DAILY_REQUEST_LIMIT must be >= 1, got {self.daily_request_limit}")

        if self.max_message_chars < 1:
            errors.append(f"MAX_MESSAGE_CHARS must be >= 1, got {self.max_message_chars}")

        if not 0.0 <= self.min_similarity <= 1.0:
            errors.append(f"MIN_SIM must be within [0, 1], got {self.min_similarity}")

        if self.context_limits.total_chars < 1 or self.context_limits.line_chars < 1:
            errors.append("MAX_CONTEXT_CHARS and MAX_CONTEXT_LINE_CHARS must be >= 1")

        if self.turn_window < 1:
            errors.append(f"TURN_WINDOW must be >= 1, got {self.turn_window}")

        if not self.openrouteservice_api_key:
            logger.warning("OPENROUTESERVICE_API_KEY not set; directions will answer with a setup hint.")
        if not self.serpapi_api_key:
            logger.warning("SERPAPI_API_KEY not set; web search will answer with a setup hint.")

        return errors

    def require_valid(self) -> "ChatConfig":
        """Raise ConfigurationError listing every problem, or return self."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                "Invalid configuration:\n" + "\n".join(f"{i}. {e}" for i, e in enumerate(errors, 1))
            )
        return self

    def validate_or_exit(self, service_name: str = "rag-chat"):
        """Validate configuration and exit with clear error if invalid."""
        errors = self.validate()
        if errors:
            print(f"\n{'='*60}", file=sys.stderr)
            print(f"CONFIGURATION ERROR - {service_name} cannot start", file=sys.stderr)
            print(f"{'='*60}\n", file=sys.stderr)
            for i, error in enumerate(errors, 1):
                print(f"{i}. {error}\n", file=sys.stderr)
            print(f"{'='*60}", file=sys.stderr)
            print("Fix the above issues and restart the service.", file=sys.stderr)
            print(f"{'='*60}\n", file=sys.stderr)
            sys.exit(1)


def load_config(env_file: Optional[str] = None) -> ChatConfig:
    """Read .env (if any) and the environment into a fresh ChatConfig."""
    load_dotenv(env_file)
    return ChatConfig()
