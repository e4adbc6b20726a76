"""Domain models for role-based generation routing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Named purpose slots bound to a provider/model by configuration."""

    MAIN = "main"
    RESEARCH = "research"
    FALLBACK = "fallback"


ROLE_PRIORITY: tuple[Role, ...] = (Role.MAIN, Role.FALLBACK, Role.RESEARCH)


class AttemptOutcome(str, Enum):
    """Final outcome of one role within a generate call."""

    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"
    SKIPPED_NO_CREDENTIAL = "skipped_no_credential"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"


class RequestKind(str, Enum):
    """Adapter entry point requested by the caller."""

    TEXT = "text"
    OBJECT = "object"
    STREAM = "stream"


@dataclass(slots=True, frozen=True)
class ProviderBinding:
    """Provider, model and generation parameters resolved for one role."""

    role: Role
    provider: str
    model_id: str
    max_output_tokens: int
    temperature: float


@dataclass(slots=True)
class GenerationRequest:
    """Provider-agnostic generation request."""

    prompt: str
    system_prompt: str | None = None
    kind: RequestKind = RequestKind.TEXT
    schema: dict[str, Any] | None = None
    object_name: str = "generated_object"
    command_name: str = "generate"
    session: dict[str, str] | None = None
    project_root: str | None = None


@dataclass(slots=True)
class AttemptRecord:
    """Per-role attempt bookkeeping for one generate call."""

    role: Role
    provider: str | None
    model_id: str | None
    attempts: int
    outcome: AttemptOutcome
    error: str | None = None


@dataclass(slots=True, frozen=True)
class TelemetryRecord:
    """Token usage and derived cost for one successful generation."""

    command_name: str
    role: Role | None
    provider: str
    model_id: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    total_cost: float | None
    currency: str
    timestamp: datetime

    def to_dict(self) -> dict[str, object]:
        """Serialize telemetry for logs and operation results."""

        return {
            "timestamp": self.timestamp.isoformat(),
            "command_name": self.command_name,
            "role": self.role.value if self.role is not None else None,
            "provider": self.provider,
            "model_id": self.model_id,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "currency": self.currency,
        }


@dataclass(slots=True)
class GenerationResult:
    """Output of the first role that succeeded.

    For stream requests `output` is a `TextStream`; `telemetry` starts at
    zero tokens and is rebuilt from the final usage once the stream is read.
    """

    output: Any
    telemetry: TelemetryRecord
    role: Role
    provider: str
    model_id: str
    attempts: list[AttemptRecord] = field(default_factory=list)
