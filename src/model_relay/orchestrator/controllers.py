"""Controllers for model-relay CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from model_relay.config import Settings
from model_relay.operations import (
    BackgroundOperationManager,
    ExecutionContext,
    GenerationJobArgs,
    OperationNotFound,
    make_generation_work,
)
from model_relay.orchestrator.backend import (
    ProviderAdapter,
    TextStream,
    build_default_adapters,
    close_adapters,
)
from model_relay.orchestrator.errors import (
    AllRolesExhaustedError,
    ConfigurationError,
    ProviderError,
)
from model_relay.orchestrator.models import ROLE_PRIORITY, GenerationRequest, RequestKind
from model_relay.orchestrator.retry import RetryPolicy
from model_relay.orchestrator.roles import (
    CREDENTIAL_ENV_VARS,
    EnvRoleConfig,
    RoleConfigResolver,
    requires_credential,
)
from model_relay.orchestrator.service import GenerationOrchestrator


@dataclass(slots=True)
class GenerateCommand:
    """CLI input for one generation request."""

    role: str
    prompt: str
    system_prompt: str | None
    command_name: str
    as_object: bool
    background: bool
    timeout_seconds: float | None = None
    stream: bool = False


@dataclass(slots=True)
class CommandResult:
    """Lines to render in CLI plus success flag."""

    lines: list[str]
    success: bool


class RelayCliController:
    """Builds the orchestrator from environment settings and renders results."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    def models(self) -> list[str]:
        """Show role bindings and credential state."""

        settings = self._load_settings()
        resolver = RoleConfigResolver(EnvRoleConfig(settings))
        lines = ["Role bindings:"]
        for role in ROLE_PRIORITY:
            role_settings = settings.role(role.value)
            provider = role_settings.provider or "-"
            model = role_settings.model or "-"
            if role_settings.provider:
                if not requires_credential(role_settings.provider):
                    credential = "not required"
                elif resolver.has_credential(role_settings.provider):
                    credential = "set"
                else:
                    env_var = CREDENTIAL_ENV_VARS.get(role_settings.provider.lower(), "?")
                    credential = f"missing ({env_var})"
            else:
                credential = "-"
            lines.append(
                f"  {role.value}: provider={provider} model={model} "
                f"max_tokens={role_settings.max_tokens} "
                f"temperature={role_settings.temperature} credential={credential}",
            )
        return lines

    def generate(
        self,
        command: GenerateCommand,
        *,
        on_chunk: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Run one request; stream chunks go to `on_chunk` as they arrive."""

        if command.as_object and command.stream:
            raise ValueError("Object and stream modes cannot be combined.")
        settings = self._load_settings()
        adapters = build_default_adapters(settings)
        try:
            orchestrator = self._build_orchestrator(settings, adapters)
            request = GenerationRequest(
                prompt=command.prompt,
                system_prompt=command.system_prompt,
                kind=_request_kind(command),
                command_name=command.command_name,
            )
            if command.background:
                return self._generate_in_background(
                    settings=settings,
                    orchestrator=orchestrator,
                    role=command.role,
                    request=request,
                    timeout_seconds=command.timeout_seconds,
                )
            return self._generate_in_foreground(
                orchestrator=orchestrator,
                role=command.role,
                request=request,
                on_chunk=on_chunk,
            )
        finally:
            close_adapters(adapters.values())

    def _generate_in_foreground(
        self,
        *,
        orchestrator: GenerationOrchestrator,
        role: str,
        request: GenerationRequest,
        on_chunk: Callable[[str], None] | None,
    ) -> CommandResult:
        try:
            result = orchestrator.generate(role, request)
        except (AllRolesExhaustedError, ConfigurationError, ValueError) as error:
            return CommandResult(lines=[str(error)], success=False)

        lines: list[str] = []
        if isinstance(result.output, TextStream):
            try:
                if on_chunk is None:
                    lines.append(result.output.read())
                else:
                    for chunk in result.output:
                        on_chunk(chunk)
            except ProviderError as error:
                return CommandResult(lines=["", f"Stream interrupted: {error}"], success=False)
            if on_chunk is not None:
                lines.append("")
        else:
            lines.append(_render_output(result.output))

        telemetry = result.telemetry
        cost = "-" if telemetry.total_cost is None else f"{telemetry.total_cost:.6f}"
        lines.extend(
            [
                "",
                f"role={result.role.value} provider={result.provider} model={result.model_id}",
                f"tokens: input={telemetry.input_tokens} output={telemetry.output_tokens} "
                f"total={telemetry.total_tokens} cost={cost} {telemetry.currency}",
            ],
        )
        return CommandResult(lines=lines, success=True)

    def _generate_in_background(
        self,
        *,
        settings: Settings,
        orchestrator: GenerationOrchestrator,
        role: str,
        request: GenerationRequest,
        timeout_seconds: float | None,
    ) -> CommandResult:
        manager = BackgroundOperationManager(
            max_completed_operations=settings.operations.history_limit,
        )
        progress_lines: list[str] = []
        operation_id = manager.submit(
            make_generation_work(orchestrator),
            GenerationJobArgs(role=role, request=request),
            _progress_context(progress_lines),
        )
        lines = [f"Operation submitted: {operation_id}"]
        status = manager.wait(operation_id, timeout=timeout_seconds)
        lines.extend(progress_lines)
        if isinstance(status, OperationNotFound):
            lines.append(status.error.message)
            return CommandResult(lines=lines, success=False)
        lines.append(f"Operation status: {status.status.value}")
        if not status.is_terminal:
            return CommandResult(lines=lines, success=False)
        if status.error is not None:
            lines.append(f"{status.error.code}: {status.error.message}")
            return CommandResult(lines=lines, success=False)
        lines.append(json.dumps(status.result, ensure_ascii=False, indent=2, default=str))
        return CommandResult(lines=lines, success=True)

    def _load_settings(self) -> Settings:
        settings = self._settings or Settings.from_env()
        settings.validate()
        return settings

    def _build_orchestrator(
        self,
        settings: Settings,
        adapters: Mapping[str, ProviderAdapter],
    ) -> GenerationOrchestrator:
        return GenerationOrchestrator(
            resolver=RoleConfigResolver(EnvRoleConfig(settings)),
            adapters=adapters,
            retry_policy=RetryPolicy.from_settings(settings.retry),
        )


def _progress_context(sink: list[str]) -> ExecutionContext:
    def report(event: dict[str, object]) -> None:
        fields = " ".join(f"{key}={value}" for key, value in event.items() if key != "event")
        sink.append(f"  progress: {event.get('event')} {fields}".rstrip())

    return ExecutionContext(report_progress=report)


def _request_kind(command: GenerateCommand) -> RequestKind:
    if command.as_object:
        return RequestKind.OBJECT
    if command.stream:
        return RequestKind.STREAM
    return RequestKind.TEXT


def _render_output(output: object) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, indent=2, default=str)
