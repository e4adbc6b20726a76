"""Generation orchestrator: role fallback sequence with bounded retries."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from model_relay.orchestrator.backend.base import (
    ProviderAdapter,
    ProviderCall,
    ProviderResponse,
    TextStream,
    Usage,
)
from model_relay.orchestrator.errors import AllRolesExhaustedError, ConfigurationError
from model_relay.orchestrator.models import (
    ROLE_PRIORITY,
    AttemptOutcome,
    AttemptRecord,
    GenerationRequest,
    GenerationResult,
    ProviderBinding,
    RequestKind,
    Role,
)
from model_relay.orchestrator.retry import RetryPolicy
from model_relay.orchestrator.roles import RoleConfigResolver, requires_credential
from model_relay.orchestrator.telemetry import build_telemetry_record

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, Any]], None]

_ADAPTER_METHODS = {
    RequestKind.TEXT: "generate_text",
    RequestKind.OBJECT: "generate_object",
    RequestKind.STREAM: "stream_text",
}


def build_role_sequence(role: Role | str) -> list[Role]:
    """Requested role first, then the remaining roles in priority order."""

    try:
        requested = Role(role)
    except ValueError:
        logger.warning("Unknown initial role %r, defaulting to the main sequence", role)
        requested = Role.MAIN
    return [requested, *(candidate for candidate in ROLE_PRIORITY if candidate != requested)]


class _RoleFailed(Exception):
    def __init__(self, outcome: AttemptOutcome, attempts: int, error: BaseException) -> None:
        super().__init__(str(error))
        self.outcome = outcome
        self.attempts = attempts
        self.error = error


class GenerationOrchestrator:
    """Runs a generation request across the role fallback sequence.

    Roles are attempted strictly one after another. A configuration error
    aborts the call; a missing credential skips the role; transient provider
    errors are retried on the same provider per `retry_policy`; any other
    provider error moves on to the next role.
    """

    def __init__(
        self,
        *,
        resolver: RoleConfigResolver,
        adapters: Mapping[str, ProviderAdapter],
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.resolver = resolver
        self.adapters = dict(adapters)
        self.retry_policy = retry_policy or RetryPolicy()

    def generate(
        self,
        role: Role | str,
        request: GenerationRequest,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        """Return the first successful role result, or raise `AllRolesExhaustedError`."""

        if not request.prompt or not request.prompt.strip():
            raise ValueError("User prompt content is missing.")

        sequence = build_role_sequence(role)
        notify = on_progress or (lambda _event: None)
        attempts: list[AttemptRecord] = []
        logger.info(
            "%s called for command=%s with role sequence [%s]",
            request.kind.value,
            request.command_name,
            ", ".join(item.value for item in sequence),
        )

        for index, current in enumerate(sequence):
            binding = self.resolver.resolve(current, request.project_root)

            if requires_credential(binding.provider) and not self.resolver.has_credential(
                binding.provider,
                request.session,
                request.project_root,
            ):
                logger.warning(
                    "Skipping role %s: no credential set for provider %s",
                    current.value,
                    binding.provider,
                )
                attempts.append(
                    AttemptRecord(
                        role=current,
                        provider=binding.provider,
                        model_id=binding.model_id,
                        attempts=0,
                        outcome=AttemptOutcome.SKIPPED_NO_CREDENTIAL,
                        error=f"No credential set for provider {binding.provider!r}",
                    ),
                )
                notify(
                    {
                        "event": "role_skipped",
                        "role": current.value,
                        "provider": binding.provider,
                        "reason": "missing_credential",
                    },
                )
                continue

            try:
                response, attempt_count = self._call_with_retries(
                    binding=binding,
                    request=request,
                    notify=notify,
                    position=(index + 1, len(sequence)),
                )
            except _RoleFailed as failed:
                logger.error(
                    "Service call failed for role %s (provider %s): %s",
                    current.value,
                    binding.provider,
                    failed.error,
                )
                attempts.append(
                    AttemptRecord(
                        role=current,
                        provider=binding.provider,
                        model_id=binding.model_id,
                        attempts=failed.attempts,
                        outcome=failed.outcome,
                        error=str(failed.error),
                    ),
                )
                continue

            attempts.append(
                AttemptRecord(
                    role=current,
                    provider=binding.provider,
                    model_id=binding.model_id,
                    attempts=attempt_count,
                    outcome=AttemptOutcome.SUCCESS,
                ),
            )
            telemetry = build_telemetry_record(
                command_name=request.command_name,
                binding=binding,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
            logger.info(
                "%s succeeded using role %s (provider %s, model %s)",
                request.kind.value,
                current.value,
                binding.provider,
                binding.model_id,
            )
            result = GenerationResult(
                output=_response_output(request.kind, response),
                telemetry=telemetry,
                role=current,
                provider=binding.provider,
                model_id=binding.model_id,
                attempts=attempts,
            )
            if response.stream is not None:
                _refresh_telemetry_on_complete(result, response.stream, request, binding)
            return result

        logger.error(
            "All roles in the sequence [%s] failed.",
            ", ".join(item.value for item in sequence),
        )
        raise AllRolesExhaustedError(sequence, attempts)

    def generate_text(
        self,
        role: Role | str,
        prompt: str,
        *,
        system_prompt: str | None = None,
        command_name: str = "generate-text",
        session: dict[str, str] | None = None,
    ) -> GenerationResult:
        """Convenience wrapper for text generation."""

        return self.generate(
            role,
            GenerationRequest(
                prompt=prompt,
                system_prompt=system_prompt,
                command_name=command_name,
                session=session,
            ),
        )

    def generate_object(  # noqa: PLR0913
        self,
        role: Role | str,
        prompt: str,
        *,
        schema: dict[str, Any] | None = None,
        object_name: str = "generated_object",
        system_prompt: str | None = None,
        command_name: str = "generate-object",
        session: dict[str, str] | None = None,
    ) -> GenerationResult:
        """Convenience wrapper for structured object generation."""

        return self.generate(
            role,
            GenerationRequest(
                prompt=prompt,
                system_prompt=system_prompt,
                kind=RequestKind.OBJECT,
                schema=schema,
                object_name=object_name,
                command_name=command_name,
                session=session,
            ),
        )

    def stream_text(
        self,
        role: Role | str,
        prompt: str,
        *,
        system_prompt: str | None = None,
        command_name: str = "stream-text",
        session: dict[str, str] | None = None,
    ) -> GenerationResult:
        """Open a text stream with the same fallback rules as `generate_text`.

        Fallback covers errors raised while the stream is opened. Once a role
        returns a stream, later errors surface to whoever iterates it.
        """

        return self.generate(
            role,
            GenerationRequest(
                prompt=prompt,
                system_prompt=system_prompt,
                kind=RequestKind.STREAM,
                command_name=command_name,
                session=session,
            ),
        )

    def _call_with_retries(
        self,
        *,
        binding: ProviderBinding,
        request: GenerationRequest,
        notify: ProgressCallback,
        position: tuple[int, int],
    ) -> tuple[ProviderResponse, int]:
        policy = self.retry_policy
        adapter = self.adapters.get(binding.provider)
        if adapter is None:
            raise _RoleFailed(
                AttemptOutcome.FATAL_FAILURE,
                0,
                ConfigurationError(
                    f"Provider {binding.provider!r} has no registered adapter",
                    role=binding.role,
                ),
            )
        method_name = _ADAPTER_METHODS[request.kind]
        method = getattr(adapter, method_name, None)
        if method is None:
            raise _RoleFailed(
                AttemptOutcome.FATAL_FAILURE,
                0,
                ConfigurationError(
                    f"Provider {binding.provider!r} does not support {method_name}",
                    role=binding.role,
                ),
            )
        call = _build_call(binding, request)

        attempt_no = 0
        while True:
            attempt_no += 1
            logger.info(
                "Attempt %d/%d for role %s (provider %s, model %s)",
                attempt_no,
                policy.max_attempts,
                binding.role.value,
                binding.provider,
                binding.model_id,
            )
            notify(
                {
                    "event": "attempt_started",
                    "role": binding.role.value,
                    "provider": binding.provider,
                    "attempt": attempt_no,
                    "progress": position[0],
                    "total": position[1],
                },
            )
            try:
                return method(call), attempt_no
            except Exception as error:  # noqa: BLE001
                logger.warning(
                    "Attempt %d failed for role %s (provider %s): %s",
                    attempt_no,
                    binding.role.value,
                    binding.provider,
                    error,
                )
                if not policy.is_retryable(error):
                    raise _RoleFailed(AttemptOutcome.FATAL_FAILURE, attempt_no, error) from error
                if attempt_no >= policy.max_attempts:
                    raise _RoleFailed(
                        AttemptOutcome.TRANSIENT_FAILURE,
                        attempt_no,
                        error,
                    ) from error
                delay = policy.delay_for(attempt_no)
                logger.info(
                    "Retryable error for role %s, retrying in %.1fs",
                    binding.role.value,
                    delay,
                )
                notify(
                    {
                        "event": "attempt_retry",
                        "role": binding.role.value,
                        "provider": binding.provider,
                        "attempt": attempt_no,
                        "delay_seconds": delay,
                    },
                )
                policy.wait(attempt_no)


def _response_output(kind: RequestKind, response: ProviderResponse) -> Any:
    if kind == RequestKind.OBJECT:
        return response.object
    if kind == RequestKind.STREAM:
        return response.stream
    return response.text


def _refresh_telemetry_on_complete(
    result: GenerationResult,
    stream: TextStream,
    request: GenerationRequest,
    binding: ProviderBinding,
) -> None:
    def update(usage: Usage) -> None:
        result.telemetry = build_telemetry_record(
            command_name=request.command_name,
            binding=binding,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )

    stream.on_complete(update)


def _build_call(binding: ProviderBinding, request: GenerationRequest) -> ProviderCall:
    messages: list[dict[str, str]] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.append({"role": "user", "content": request.prompt})
    return ProviderCall(
        provider=binding.provider,
        model_id=binding.model_id,
        messages=messages,
        max_tokens=binding.max_output_tokens,
        temperature=binding.temperature,
        schema=request.schema,
        object_name=request.object_name,
        session=request.session,
    )
