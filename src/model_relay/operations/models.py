"""Domain models for background operation tracking."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

ProgressSink = Callable[[dict[str, Any]], None]

OPERATION_NOT_FOUND = "OPERATION_NOT_FOUND"
OPERATION_EXECUTION_ERROR = "OPERATION_EXECUTION_ERROR"
MANAGER_EXECUTION_ERROR = "MANAGER_EXECUTION_ERROR"


class OperationStatus(str, Enum):
    """Operation lifecycle states; `not_found` is only reported by lookups."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"


TERMINAL_STATUSES = frozenset({OperationStatus.COMPLETED, OperationStatus.FAILED})


@dataclass(slots=True, frozen=True)
class OperationError:
    """Structured failure recorded on an operation."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


@dataclass(slots=True, frozen=True)
class OperationOutcome:
    """Success/failure tagged result returned by a unit of work."""

    success: bool
    data: Any = None
    error: OperationError | None = None

    @classmethod
    def ok(cls, data: Any = None) -> OperationOutcome:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> OperationOutcome:
        return cls(
            success=False,
            error=OperationError(code=code, message=message, details=details or {}),
        )


@dataclass(slots=True)
class ExecutionContext:
    """Caller-supplied logger, progress sink and session for a submitted job."""

    logger: logging.Logger | logging.LoggerAdapter | None = None
    report_progress: ProgressSink | None = None
    session: Mapping[str, str] | None = None


@dataclass(slots=True)
class OperationContext:
    """Context handed to a running unit of work."""

    operation_id: str
    logger: logging.Logger | logging.LoggerAdapter
    report_progress: ProgressSink
    session: Mapping[str, str] | None = None


@dataclass(slots=True)
class Operation:
    """Mutable record of an active operation, owned by the manager."""

    id: str
    status: OperationStatus
    start_time: datetime
    end_time: datetime | None = None
    result: Any = None
    error: OperationError | None = None
    logger: logging.Logger | logging.LoggerAdapter | None = field(default=None, repr=False)
    report_progress: ProgressSink | None = field(default=None, repr=False)
    session: Mapping[str, str] | None = field(default=None, repr=False)

    def snapshot(self) -> OperationSnapshot:
        return OperationSnapshot(
            id=self.id,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time,
            result=self.result,
            error=self.error,
        )


@dataclass(slots=True, frozen=True)
class OperationSnapshot:
    """Point-in-time view of an operation, safe to hand to callers."""

    id: str
    status: OperationStatus
    start_time: datetime
    end_time: datetime | None
    result: Any
    error: OperationError | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "result": self.result,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(slots=True, frozen=True)
class OperationNotFound:
    """Lookup result for an unknown or evicted operation id."""

    operation_id: str
    error: OperationError
    status: OperationStatus = OperationStatus.NOT_FOUND

    @classmethod
    def for_id(cls, operation_id: str) -> OperationNotFound:
        return cls(
            operation_id=operation_id,
            error=OperationError(
                code=OPERATION_NOT_FOUND,
                message=(
                    f"Operation ID {operation_id} not found. It may have been completed "
                    "and removed from history, or the ID may be invalid."
                ),
            ),
        )

    def to_dict(self) -> dict[str, object]:
        return {"status": self.status.value, "error": self.error.to_dict()}
