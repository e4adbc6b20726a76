"""Units of work that run generation requests through the operation manager."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace

from model_relay.operations.models import OperationContext, OperationOutcome
from model_relay.orchestrator.backend.base import TextStream
from model_relay.orchestrator.errors import AllRolesExhaustedError
from model_relay.orchestrator.models import GenerationRequest, Role
from model_relay.orchestrator.service import GenerationOrchestrator

ALL_ROLES_EXHAUSTED = "ALL_ROLES_EXHAUSTED"


@dataclass(slots=True)
class GenerationJobArgs:
    role: Role | str
    request: GenerationRequest


def make_generation_work(
    orchestrator: GenerationOrchestrator,
) -> Callable[[GenerationJobArgs, OperationContext], OperationOutcome]:
    """Wrap the orchestrator as a unit of work for `BackgroundOperationManager.submit`.

    Exhausting every role becomes a failed outcome carrying the per-role
    attempt log. Stream requests are read to the end so the result carries
    the full text and final usage. Any other exception propagates and the
    manager records it.
    """

    def work(args: GenerationJobArgs, context: OperationContext) -> OperationOutcome:
        request = args.request
        if request.session is None and context.session is not None:
            request = replace(request, session=dict(context.session))
        context.logger.info(
            "[operation %s] Running %s with role %s",
            context.operation_id,
            request.command_name,
            args.role.value if isinstance(args.role, Role) else args.role,
        )
        try:
            result = orchestrator.generate(
                args.role,
                request,
                on_progress=context.report_progress,
            )
        except AllRolesExhaustedError as error:
            return OperationOutcome.failure(
                ALL_ROLES_EXHAUSTED,
                str(error),
                details={
                    "attempts": [
                        {
                            "role": record.role.value,
                            "provider": record.provider,
                            "model_id": record.model_id,
                            "attempts": record.attempts,
                            "outcome": record.outcome.value,
                            "error": record.error,
                        }
                        for record in error.attempts
                    ],
                },
            )
        output = result.output
        if isinstance(output, TextStream):
            output = output.read()
        return OperationOutcome.ok(
            {
                "output": output,
                "role": result.role.value,
                "provider": result.provider,
                "model_id": result.model_id,
                "telemetry": result.telemetry.to_dict(),
            },
        )

    return work
