"""Background operation tracking."""

from model_relay.operations.jobs import GenerationJobArgs, make_generation_work
from model_relay.operations.manager import STATUS_CHANGED, BackgroundOperationManager
from model_relay.operations.models import (
    ExecutionContext,
    OperationContext,
    OperationError,
    OperationNotFound,
    OperationOutcome,
    OperationSnapshot,
    OperationStatus,
)

__all__ = [
    "STATUS_CHANGED",
    "BackgroundOperationManager",
    "ExecutionContext",
    "GenerationJobArgs",
    "OperationContext",
    "OperationError",
    "OperationNotFound",
    "OperationOutcome",
    "OperationSnapshot",
    "OperationStatus",
    "make_generation_work",
]
