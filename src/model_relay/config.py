"""Runtime configuration for role routing, retries and background operations."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

DEFAULT_MAIN_PROVIDER = "anthropic"
DEFAULT_MAIN_MODEL = "claude-3-7-sonnet-20250219"
DEFAULT_RESEARCH_PROVIDER = "perplexity"
DEFAULT_RESEARCH_MODEL = "sonar-pro"


@dataclass(slots=True)
class RoleSettings:
    """Provider/model binding and generation parameters for one role."""

    provider: str | None = None
    model: str | None = None
    max_tokens: int = 64_000
    temperature: float = 0.2


@dataclass(slots=True)
class RetrySettings:
    """Per-role retry budget for transient provider failures."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0


@dataclass(slots=True)
class OperationsSettings:
    """Background operation manager settings."""

    history_limit: int = 100


@dataclass(slots=True)
class ProviderSettings:
    """HTTP settings for provider adapters."""

    base_urls: dict[str, str] = field(default_factory=dict)
    request_timeout_seconds: float = 60.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    main: RoleSettings = field(
        default_factory=lambda: RoleSettings(
            provider=DEFAULT_MAIN_PROVIDER,
            model=DEFAULT_MAIN_MODEL,
        ),
    )
    research: RoleSettings = field(
        default_factory=lambda: RoleSettings(
            provider=DEFAULT_RESEARCH_PROVIDER,
            model=DEFAULT_RESEARCH_MODEL,
            max_tokens=8_700,
            temperature=0.1,
        ),
    )
    fallback: RoleSettings = field(default_factory=RoleSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    operations: OperationsSettings = field(default_factory=OperationsSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            main=_role_from_env(
                "MAIN",
                provider=DEFAULT_MAIN_PROVIDER,
                model=DEFAULT_MAIN_MODEL,
                max_tokens=64_000,
                temperature=0.2,
            ),
            research=_role_from_env(
                "RESEARCH",
                provider=DEFAULT_RESEARCH_PROVIDER,
                model=DEFAULT_RESEARCH_MODEL,
                max_tokens=8_700,
                temperature=0.1,
            ),
            fallback=_role_from_env(
                "FALLBACK",
                provider=None,
                model=None,
                max_tokens=64_000,
                temperature=0.2,
            ),
            retry=RetrySettings(
                max_attempts=int(os.getenv("MODEL_RELAY_RETRY_MAX_ATTEMPTS", "3")),
                base_delay_seconds=float(os.getenv("MODEL_RELAY_RETRY_BASE_SECONDS", "1.0")),
                max_delay_seconds=float(os.getenv("MODEL_RELAY_RETRY_MAX_SECONDS", "30.0")),
            ),
            operations=OperationsSettings(
                history_limit=int(os.getenv("MODEL_RELAY_OPERATIONS_HISTORY_LIMIT", "100")),
            ),
            providers=ProviderSettings(
                base_urls=_collect_base_urls(),
                request_timeout_seconds=float(
                    os.getenv("MODEL_RELAY_REQUEST_TIMEOUT_SECONDS", "60.0"),
                ),
            ),
        )

    def role(self, name: str) -> RoleSettings:
        """Return settings for a role name (main, research, fallback)."""

        normalized = name.strip().lower()
        if normalized == "main":
            return self.main
        if normalized == "research":
            return self.research
        if normalized == "fallback":
            return self.fallback
        raise ValueError(f"Unknown role: {name!r}")

    def validate(self) -> None:
        """Raise configuration error for out-of-range tunables."""

        if self.retry.max_attempts <= 0:
            raise ValueError("MODEL_RELAY_RETRY_MAX_ATTEMPTS must be > 0.")
        if self.retry.base_delay_seconds < 0:
            raise ValueError("MODEL_RELAY_RETRY_BASE_SECONDS must be >= 0.")
        if self.retry.max_delay_seconds < self.retry.base_delay_seconds:
            raise ValueError(
                "MODEL_RELAY_RETRY_MAX_SECONDS must be >= MODEL_RELAY_RETRY_BASE_SECONDS.",
            )
        if self.operations.history_limit <= 0:
            raise ValueError("MODEL_RELAY_OPERATIONS_HISTORY_LIMIT must be > 0.")
        if self.providers.request_timeout_seconds <= 0:
            raise ValueError("MODEL_RELAY_REQUEST_TIMEOUT_SECONDS must be > 0.")
        for name, role in (
            ("MAIN", self.main),
            ("RESEARCH", self.research),
            ("FALLBACK", self.fallback),
        ):
            if role.max_tokens <= 0:
                raise ValueError(f"MODEL_RELAY_{name}_MAX_TOKENS must be > 0.")
            if not 0.0 <= role.temperature <= 2.0:
                raise ValueError(
                    f"MODEL_RELAY_{name}_TEMPERATURE must be within [0, 2], "
                    f"got {role.temperature!r}.",
                )


def _role_from_env(
    name: str,
    *,
    provider: str | None,
    model: str | None,
    max_tokens: int,
    temperature: float,
) -> RoleSettings:
    prefix = f"MODEL_RELAY_{name}"
    return RoleSettings(
        provider=_env_optional(f"{prefix}_PROVIDER", provider),
        model=_env_optional(f"{prefix}_MODEL", model),
        max_tokens=int(os.getenv(f"{prefix}_MAX_TOKENS", str(max_tokens))),
        temperature=float(os.getenv(f"{prefix}_TEMPERATURE", str(temperature))),
    )


def _env_optional(name: str, default: str | None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip()
    return normalized or None


def _collect_base_urls() -> dict[str, str]:
    raw = os.getenv("MODEL_RELAY_PROVIDER_BASE_URLS", "").strip()
    if not raw:
        return {}

    base_urls: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "|" not in token:
            raise ValueError(
                "Invalid MODEL_RELAY_PROVIDER_BASE_URLS entry: "
                f"{token!r}. Expected format '<provider>|<base_url>'.",
            )
        provider, url = token.split("|", 1)
        provider = provider.strip().lower()
        url = url.strip()
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                f"Invalid base URL for provider {provider!r}: {url!r}. "
                "Expected an absolute URL with http:// or https:// scheme.",
            )
        base_urls[provider] = url.rstrip("/")
    return base_urls
