from __future__ import annotations

import logging

import allure
import pytest

from model_relay.orchestrator.backend.base import ProviderCall, ProviderResponse, TextStream, Usage
from model_relay.orchestrator.errors import (
    AllRolesExhaustedError,
    ConfigurationError,
    FatalProviderError,
    TransientProviderError,
)
from model_relay.orchestrator.models import AttemptOutcome, GenerationRequest, RequestKind, Role
from model_relay.orchestrator.retry import RetryPolicy
from model_relay.orchestrator.roles import RoleConfigResolver, RoleParameters
from model_relay.orchestrator.service import GenerationOrchestrator, build_role_sequence

pytestmark = [
    allure.epic("Role Routing"),
    allure.feature("Fallback Orchestration"),
]


class _StaticSource:
    """Role bindings and credentials held in plain dicts."""

    def __init__(
        self,
        bindings: dict[Role, tuple[str | None, str | None]],
        credentials: set[str] | None = None,
    ) -> None:
        self.bindings = bindings
        self.credentials = credentials or set()
        self.resolved: list[Role] = []

    def get_provider_for_role(self, role, project_root):
        self.resolved.append(role)
        return self.bindings[role][0]

    def get_model_for_role(self, role, project_root):
        return self.bindings[role][1]

    def get_parameters_for_role(self, role, project_root):
        return RoleParameters(max_tokens=100, temperature=0.0)

    def is_credential_set(self, provider, session, project_root):
        return provider in self.credentials


class _ScriptedAdapter:
    """Replays a script of exceptions/strings, one entry per call."""

    def __init__(self, *script: object) -> None:
        self.script = list(script)
        self.calls: list[ProviderCall] = []

    def _next(self, call: ProviderCall) -> object:
        self.calls.append(call)
        outcome = self.script.pop(0) if self.script else "ok"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def generate_text(self, call: ProviderCall) -> ProviderResponse:
        return ProviderResponse(text=str(self._next(call)), usage=Usage(10, 20))

    def generate_object(self, call: ProviderCall) -> ProviderResponse:
        return ProviderResponse(object={"value": self._next(call)}, usage=Usage(10, 20))

    def stream_text(self, call: ProviderCall) -> ProviderResponse:
        words = str(self._next(call)).split(" ")
        chunks: list[str | Usage] = [words[0], *(f" {word}" for word in words[1:])]
        return ProviderResponse(stream=TextStream([*chunks, Usage(10, 20)]), usage=Usage())


ALL_BOUND = {
    Role.MAIN: ("anthropic", "claude-3-7-sonnet-20250219"),
    Role.FALLBACK: ("openai", "gpt-4o"),
    Role.RESEARCH: ("perplexity", "sonar-pro"),
}
ALL_KEYS = {"anthropic", "openai", "perplexity"}


def _orchestrator(source: _StaticSource, adapters: dict, *, max_attempts: int = 3):
    slept: list[float] = []
    orchestrator = GenerationOrchestrator(
        resolver=RoleConfigResolver(source),
        adapters=adapters,
        retry_policy=RetryPolicy(max_attempts=max_attempts, sleep=slept.append),
    )
    return orchestrator, slept


def test_role_sequence_puts_requested_role_first() -> None:
    assert build_role_sequence(Role.MAIN) == [Role.MAIN, Role.FALLBACK, Role.RESEARCH]
    assert build_role_sequence("fallback") == [Role.FALLBACK, Role.MAIN, Role.RESEARCH]
    assert build_role_sequence(Role.RESEARCH) == [Role.RESEARCH, Role.MAIN, Role.FALLBACK]


def test_unknown_role_defaults_to_main_sequence(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        sequence = build_role_sequence("planner")

    assert sequence == [Role.MAIN, Role.FALLBACK, Role.RESEARCH]
    assert "Unknown initial role" in caplog.text


def test_main_success_returns_first_result_with_telemetry() -> None:
    main = _ScriptedAdapter("hello")
    fallback = _ScriptedAdapter()
    orchestrator, _ = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": main, "openai": fallback, "perplexity": _ScriptedAdapter()},
    )

    result = orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi", command_name="expand"))

    assert result.output == "hello"
    assert result.role == Role.MAIN
    assert result.provider == "anthropic"
    assert result.telemetry.input_tokens == 10
    assert result.telemetry.output_tokens == 20
    assert result.telemetry.total_tokens == 30
    assert result.telemetry.total_cost == pytest.approx(0.00033)
    assert result.telemetry.command_name == "expand"
    assert len(main.calls) == 1
    assert fallback.calls == []


def test_transient_failures_are_retried_on_the_same_provider() -> None:
    main = _ScriptedAdapter(TransientProviderError("overloaded"), "recovered")
    orchestrator, slept = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": main, "openai": _ScriptedAdapter(), "perplexity": _ScriptedAdapter()},
    )

    result = orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))

    assert result.output == "recovered"
    assert len(main.calls) == 2
    assert slept == [1.0]
    assert result.attempts[-1].attempts == 2


def test_fatal_failure_moves_to_next_role_without_retry() -> None:
    main = _ScriptedAdapter(FatalProviderError("invalid api key"))
    fallback = _ScriptedAdapter("from fallback")
    orchestrator, slept = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": main, "openai": fallback, "perplexity": _ScriptedAdapter()},
    )

    result = orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))

    assert result.output == "from fallback"
    assert result.role == Role.FALLBACK
    assert len(main.calls) == 1
    assert slept == []
    assert [record.outcome for record in result.attempts] == [
        AttemptOutcome.FATAL_FAILURE,
        AttemptOutcome.SUCCESS,
    ]


def test_exhausted_retries_fall_through_to_next_role() -> None:
    main = _ScriptedAdapter(*(TransientProviderError("rate limit") for _ in range(3)))
    fallback = _ScriptedAdapter("fallback ok")
    orchestrator, slept = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": main, "openai": fallback, "perplexity": _ScriptedAdapter()},
    )

    result = orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))

    assert result.output == "fallback ok"
    assert len(main.calls) == 3
    assert slept == [1.0, 2.0]
    assert result.attempts[0].outcome == AttemptOutcome.TRANSIENT_FAILURE
    assert result.attempts[0].attempts == 3


def test_missing_credential_skips_role_without_calling_adapter() -> None:
    main = _ScriptedAdapter("never")
    research = _ScriptedAdapter("researched")
    events: list[dict] = []
    orchestrator, _ = _orchestrator(
        _StaticSource(ALL_BOUND, {"perplexity"}),
        {"anthropic": main, "openai": _ScriptedAdapter("never"), "perplexity": research},
    )

    result = orchestrator.generate(
        Role.MAIN,
        GenerationRequest(prompt="hi"),
        on_progress=events.append,
    )

    assert result.output == "researched"
    assert result.role == Role.RESEARCH
    assert main.calls == []
    assert [record.outcome for record in result.attempts] == [
        AttemptOutcome.SKIPPED_NO_CREDENTIAL,
        AttemptOutcome.SKIPPED_NO_CREDENTIAL,
        AttemptOutcome.SUCCESS,
    ]
    assert [event["event"] for event in events] == [
        "role_skipped",
        "role_skipped",
        "attempt_started",
    ]


def test_credential_exempt_provider_runs_without_key() -> None:
    bindings = {
        Role.MAIN: ("ollama", "llama3"),
        Role.FALLBACK: ("openai", "gpt-4o"),
        Role.RESEARCH: ("perplexity", "sonar-pro"),
    }
    local = _ScriptedAdapter("local answer")
    orchestrator, _ = _orchestrator(_StaticSource(bindings, set()), {"ollama": local})

    result = orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))

    assert result.provider == "ollama"
    assert result.telemetry.total_cost == 0.0


def test_all_roles_failing_raises_aggregate_error() -> None:
    orchestrator, _ = _orchestrator(
        _StaticSource(ALL_BOUND, {"anthropic", "openai"}),
        {
            "anthropic": _ScriptedAdapter(FatalProviderError("model not found")),
            "openai": _ScriptedAdapter(RuntimeError("unexpected payload")),
            "perplexity": _ScriptedAdapter(),
        },
    )

    with pytest.raises(AllRolesExhaustedError) as info:
        orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))

    error = info.value
    assert error.sequence == [Role.MAIN, Role.FALLBACK, Role.RESEARCH]
    assert [record.outcome for record in error.attempts] == [
        AttemptOutcome.FATAL_FAILURE,
        AttemptOutcome.FATAL_FAILURE,
        AttemptOutcome.SKIPPED_NO_CREDENTIAL,
    ]
    message = str(error)
    assert message.startswith("All roles in the sequence [main, fallback, research] failed.")
    assert "model not found" in message
    assert "unexpected payload" in message


def test_configuration_error_aborts_without_trying_later_roles() -> None:
    bindings = dict(ALL_BOUND)
    bindings[Role.FALLBACK] = (None, None)
    source = _StaticSource(bindings, ALL_KEYS)
    orchestrator, _ = _orchestrator(
        source,
        {
            "anthropic": _ScriptedAdapter(FatalProviderError("bad request")),
            "perplexity": _ScriptedAdapter("unreachable"),
        },
    )

    with pytest.raises(ConfigurationError, match="'fallback'"):
        orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))
    assert Role.RESEARCH not in source.resolved


@pytest.mark.parametrize("prompt", ["", "   "])
def test_missing_prompt_is_rejected_before_any_call(prompt: str) -> None:
    source = _StaticSource(ALL_BOUND, ALL_KEYS)
    orchestrator, _ = _orchestrator(source, {})

    with pytest.raises(ValueError, match="User prompt content is missing."):
        orchestrator.generate(Role.MAIN, GenerationRequest(prompt=prompt))
    assert source.resolved == []


def test_provider_without_adapter_is_treated_as_failed_role() -> None:
    research = _ScriptedAdapter("research ok")
    orchestrator, _ = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"perplexity": research},
    )

    result = orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))

    assert result.role == Role.RESEARCH
    assert [record.attempts for record in result.attempts] == [0, 0, 1]


def test_object_requests_use_generate_object() -> None:
    main = _ScriptedAdapter("structured")
    orchestrator, _ = _orchestrator(_StaticSource(ALL_BOUND, ALL_KEYS), {"anthropic": main})

    result = orchestrator.generate_object(
        Role.MAIN,
        "List tasks",
        schema={"type": "object"},
        object_name="tasks",
        system_prompt="Return JSON.",
    )

    assert result.output == {"value": "structured"}
    call = main.calls[0]
    assert call.schema == {"type": "object"}
    assert call.object_name == "tasks"
    assert call.messages[0] == {"role": "system", "content": "Return JSON."}
    assert call.messages[-1] == {"role": "user", "content": "List tasks"}


def test_generate_text_wrapper_builds_text_request() -> None:
    main = _ScriptedAdapter("plain")
    orchestrator, _ = _orchestrator(_StaticSource(ALL_BOUND, ALL_KEYS), {"anthropic": main})

    result = orchestrator.generate_text(Role.MAIN, "hello", command_name="chat")

    assert result.output == "plain"
    assert result.telemetry.command_name == "chat"
    assert main.calls[0].messages == [{"role": "user", "content": "hello"}]


def test_progress_events_report_attempts_and_retries() -> None:
    main = _ScriptedAdapter(TransientProviderError("overloaded"), "ok")
    events: list[dict] = []
    orchestrator, _ = _orchestrator(_StaticSource(ALL_BOUND, ALL_KEYS), {"anthropic": main})

    orchestrator.generate(
        Role.MAIN,
        GenerationRequest(prompt="hi", kind=RequestKind.TEXT),
        on_progress=events.append,
    )

    assert [event["event"] for event in events] == [
        "attempt_started",
        "attempt_retry",
        "attempt_started",
    ]
    assert events[0]["progress"] == 1
    assert events[0]["total"] == 3
    assert events[2]["attempt"] == 2


def test_adapter_without_object_support_fails_role() -> None:
    class _TextOnly:
        def generate_text(self, call):
            return ProviderResponse(text="text", usage=Usage())

    fallback = _ScriptedAdapter("object from fallback")
    orchestrator, _ = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": _TextOnly(), "openai": fallback},
    )

    result = orchestrator.generate(
        Role.MAIN,
        GenerationRequest(prompt="hi", kind=RequestKind.OBJECT),
    )

    assert result.role == Role.FALLBACK
    assert result.attempts[0].outcome == AttemptOutcome.FATAL_FAILURE
    assert "does not support generate_object" in result.attempts[0].error


def test_two_transient_errors_then_success_on_third_attempt() -> None:
    main = _ScriptedAdapter(
        TransientProviderError("rate limited", status_code=429),
        TransientProviderError("overloaded", status_code=529),
        "third time lucky",
    )
    fallback = _ScriptedAdapter()
    orchestrator, slept = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": main, "openai": fallback, "perplexity": _ScriptedAdapter()},
    )

    result = orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))

    assert result.output == "third time lucky"
    assert result.role == Role.MAIN
    assert len(main.calls) == 3
    assert fallback.calls == []
    assert slept == [1.0, 2.0]
    assert result.attempts[-1].attempts == 3
    assert result.attempts[-1].outcome == AttemptOutcome.SUCCESS


def test_main_and_fallback_fatal_then_research_succeeds(caplog) -> None:
    main = _ScriptedAdapter(FatalProviderError("invalid api key", status_code=401))
    fallback = _ScriptedAdapter(FatalProviderError("model not found", status_code=404))
    research = _ScriptedAdapter("from research")
    orchestrator, slept = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": main, "openai": fallback, "perplexity": research},
    )

    with caplog.at_level(logging.ERROR, logger="model_relay.orchestrator.service"):
        result = orchestrator.generate(Role.MAIN, GenerationRequest(prompt="hi"))

    assert result.output == "from research"
    assert result.role == Role.RESEARCH
    assert [len(main.calls), len(fallback.calls), len(research.calls)] == [1, 1, 1]
    assert slept == []
    assert [record.outcome for record in result.attempts] == [
        AttemptOutcome.FATAL_FAILURE,
        AttemptOutcome.FATAL_FAILURE,
        AttemptOutcome.SUCCESS,
    ]
    error_lines = [
        record.getMessage() for record in caplog.records if record.levelno == logging.ERROR
    ]
    assert error_lines == [
        "Service call failed for role main (provider anthropic): invalid api key",
        "Service call failed for role fallback (provider openai): model not found",
    ]


def test_stream_request_returns_stream_and_refreshes_telemetry_on_completion() -> None:
    main = _ScriptedAdapter("streamed reply here")
    orchestrator, _ = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": main, "openai": _ScriptedAdapter(), "perplexity": _ScriptedAdapter()},
    )

    result = orchestrator.stream_text(Role.MAIN, "hi", command_name="chat")

    assert isinstance(result.output, TextStream)
    assert result.telemetry.total_tokens == 0
    assert list(result.output) == ["streamed", " reply", " here"]
    assert result.output.completed
    assert result.telemetry.input_tokens == 10
    assert result.telemetry.output_tokens == 20
    assert result.telemetry.total_cost == pytest.approx(0.00033)
    assert result.telemetry.command_name == "chat"


def test_stream_open_failure_falls_back_to_next_role() -> None:
    main = _ScriptedAdapter(FatalProviderError("invalid api key"))
    fallback = _ScriptedAdapter("fallback stream")
    orchestrator, _ = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": main, "openai": fallback, "perplexity": _ScriptedAdapter()},
    )

    result = orchestrator.generate(
        Role.MAIN,
        GenerationRequest(prompt="hi", kind=RequestKind.STREAM),
    )

    assert result.role == Role.FALLBACK
    assert result.output.read() == "fallback stream"
    assert result.attempts[0].outcome == AttemptOutcome.FATAL_FAILURE


def test_adapter_without_stream_support_fails_role() -> None:
    class _TextOnly:
        def generate_text(self, call):
            return ProviderResponse(text="text", usage=Usage())

    fallback = _ScriptedAdapter("streamed")
    orchestrator, _ = _orchestrator(
        _StaticSource(ALL_BOUND, ALL_KEYS),
        {"anthropic": _TextOnly(), "openai": fallback},
    )

    result = orchestrator.stream_text(Role.MAIN, "hi")

    assert result.role == Role.FALLBACK
    assert "does not support stream_text" in result.attempts[0].error
