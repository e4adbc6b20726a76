"""Error taxonomy for role routing and provider calls."""

from __future__ import annotations

from model_relay.orchestrator.models import AttemptRecord, Role


class ConfigurationError(ValueError):
    """Role has no usable provider/model binding."""

    def __init__(self, message: str, *, role: Role | None = None) -> None:
        super().__init__(message)
        self.role = role


class ProviderError(RuntimeError):
    """Provider adapter call failure."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Failure expected to succeed on immediate retry (rate limit, overload)."""


class FatalProviderError(ProviderError):
    """Failure that retrying the same provider will not fix."""


class AllRolesExhaustedError(RuntimeError):
    """Every role in the fallback sequence was skipped or failed."""

    def __init__(self, sequence: list[Role], attempts: list[AttemptRecord]) -> None:
        self.sequence = list(sequence)
        self.attempts = list(attempts)
        super().__init__(_format_exhausted_message(self.sequence, self.attempts))


def _format_exhausted_message(sequence: list[Role], attempts: list[AttemptRecord]) -> str:
    roles = ", ".join(role.value for role in sequence)
    lines = [f"All roles in the sequence [{roles}] failed."]
    for record in attempts:
        detail = record.error or "no error recorded"
        lines.append(
            f"- {record.role.value} ({record.provider or 'unknown'}): "
            f"{record.outcome.value} after {record.attempts} attempt(s): {detail}",
        )
    return "\n".join(lines)
