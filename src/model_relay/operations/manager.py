"""Background operation manager: detached execution with status polling."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from model_relay.operations.models import (
    MANAGER_EXECUTION_ERROR,
    OPERATION_EXECUTION_ERROR,
    ExecutionContext,
    Operation,
    OperationContext,
    OperationError,
    OperationNotFound,
    OperationOutcome,
    OperationSnapshot,
    OperationStatus,
)
from model_relay.utils import utc_now

logger = logging.getLogger(__name__)

STATUS_CHANGED = "statusChanged"
DEFAULT_HISTORY_LIMIT = 100

UnitOfWork = Callable[[Any, OperationContext], Any]
Listener = Callable[[dict[str, Any]], None]


class BackgroundOperationManager:
    """Runs submitted work on daemon threads and tracks its lifecycle.

    Each operation moves ``pending -> running -> completed | failed``. Active
    operations live in one index; on the terminal transition the record is
    converted to an `OperationSnapshot` (dropping its logger and progress
    sink) and moved to a bounded history. When the history is full the entry
    with the oldest ``end_time`` is evicted.

    Construct one instance at process start and pass it to the callers that
    need it.
    """

    def __init__(
        self,
        *,
        max_completed_operations: int = DEFAULT_HISTORY_LIMIT,
        default_logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        if max_completed_operations <= 0:
            raise ValueError("max_completed_operations must be > 0.")
        self.max_completed_operations = max_completed_operations
        self._default_logger = default_logger or logger
        self._lock = threading.Lock()
        self._active: dict[str, Operation] = {}
        self._history: dict[str, OperationSnapshot] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._listeners: dict[str, list[Listener]] = {}

    def submit(
        self,
        work: UnitOfWork,
        args: Any = None,
        context: ExecutionContext | None = None,
    ) -> str:
        """Register a pending operation, start it in the background, return its id."""

        context = context or ExecutionContext()
        operation_id = f"op-{uuid4()}"
        operation = Operation(
            id=operation_id,
            status=OperationStatus.PENDING,
            start_time=utc_now(),
            logger=context.logger,
            report_progress=context.report_progress,
            session=context.session,
        )
        with self._lock:
            self._active[operation_id] = operation
        self._log(operation, logging.INFO, "Operation added.")

        thread = threading.Thread(
            target=self._run_operation,
            args=(operation, work, args),
            daemon=True,
            name=f"operation-{operation_id}",
        )
        try:
            thread.start()
        except Exception as error:  # noqa: BLE001
            self._log(
                operation,
                logging.ERROR,
                f"Critical error starting operation: {error}",
                exc_info=True,
            )
            self._mark_running(operation)
            self._finish(
                operation,
                status=OperationStatus.FAILED,
                result=None,
                error=OperationError(code=MANAGER_EXECUTION_ERROR, message=str(error)),
            )
            return operation_id

        with self._lock:
            if operation_id in self._active:
                self._threads[operation_id] = thread
        return operation_id

    def get_status(self, operation_id: str) -> OperationSnapshot | OperationNotFound:
        """Look up an operation in the active index, then in history."""

        with self._lock:
            operation = self._active.get(operation_id)
            if operation is not None:
                return operation.snapshot()
            completed = self._history.get(operation_id)
        if completed is not None:
            return completed
        return OperationNotFound.for_id(operation_id)

    def wait(
        self,
        operation_id: str,
        timeout: float | None = None,
    ) -> OperationSnapshot | OperationNotFound:
        """Block until the operation finishes (or timeout) and return its status."""

        with self._lock:
            thread = self._threads.get(operation_id)
        if thread is not None:
            thread.join(timeout=timeout)
        return self.get_status(operation_id)

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def history_size(self) -> int:
        with self._lock:
            return len(self._history)

    # -- events -----------------------------------------------------------------

    def on(self, event_name: str, listener: Listener) -> None:
        """Register a listener for an event such as ``statusChanged``."""

        with self._lock:
            self._listeners.setdefault(event_name, []).append(listener)

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event_name, ()))
        for listener in listeners:
            try:
                listener(data)
            except Exception:  # noqa: BLE001
                logger.warning("Listener for %s failed", event_name, exc_info=True)

    # -- execution --------------------------------------------------------------

    def _run_operation(self, operation: Operation, work: UnitOfWork, args: Any) -> None:
        self._mark_running(operation)
        context = OperationContext(
            operation_id=operation.id,
            logger=operation.logger or self._default_logger,
            report_progress=lambda event: self._handle_progress(operation, event),
            session=operation.session,
        )
        try:
            outcome = work(args, context)
        except Exception as error:  # noqa: BLE001
            self._log(
                operation,
                logging.ERROR,
                f"Operation failed with error: {error}",
                exc_info=True,
            )
            self._finish(
                operation,
                status=OperationStatus.FAILED,
                result=None,
                error=OperationError(code=OPERATION_EXECUTION_ERROR, message=str(error)),
            )
            return

        if not isinstance(outcome, OperationOutcome):
            outcome = OperationOutcome.ok(outcome)
        if outcome.success:
            self._finish(
                operation,
                status=OperationStatus.COMPLETED,
                result=outcome.data,
                error=None,
            )
        else:
            self._finish(
                operation,
                status=OperationStatus.FAILED,
                result=None,
                error=outcome.error
                or OperationError(
                    code=OPERATION_EXECUTION_ERROR,
                    message="Operation reported failure without error details",
                ),
            )

    def _mark_running(self, operation: Operation) -> None:
        with self._lock:
            operation.status = OperationStatus.RUNNING
        self._log(operation, logging.INFO, "Operation running.")
        self.emit(STATUS_CHANGED, {"operation_id": operation.id, "status": operation.status})

    def _finish(
        self,
        operation: Operation,
        *,
        status: OperationStatus,
        result: Any,
        error: OperationError | None,
    ) -> None:
        op_logger = operation.logger
        with self._lock:
            operation.status = status
            operation.result = result
            operation.error = error
            operation.end_time = utc_now()
            snapshot = operation.snapshot()
            operation.logger = None
            operation.report_progress = None
            operation.session = None
            self._active.pop(operation.id, None)
            self._threads.pop(operation.id, None)
            self._history[operation.id] = snapshot
            evicted = self._evict_oldest()

        (op_logger or self._default_logger).info(
            "[operation %s] Operation finished with status: %s",
            operation.id,
            status.value,
        )
        if evicted is not None:
            logger.debug("Evicted operation %s from history", evicted)
        self.emit(
            STATUS_CHANGED,
            {
                "operation_id": snapshot.id,
                "status": snapshot.status,
                "result": snapshot.result,
                "error": snapshot.error,
            },
        )

    def _evict_oldest(self) -> str | None:
        # Caller holds the lock. Ties on end_time resolve to the earliest completion
        # because history insertion order is completion order.
        if len(self._history) <= self.max_completed_operations:
            return None
        oldest = min(self._history.values(), key=lambda snapshot: snapshot.end_time)
        del self._history[oldest.id]
        return oldest.id

    def _handle_progress(self, operation: Operation, event: dict[str, Any]) -> None:
        sink = operation.report_progress
        if sink is None:
            return
        try:
            sink(event)
        except Exception as error:  # noqa: BLE001
            self._log(operation, logging.WARNING, f"Failed to report progress: {error}")
            return
        self._log(operation, logging.DEBUG, f"Reported progress: {event}")

    def _log(
        self,
        operation: Operation,
        level: int,
        message: str,
        *,
        exc_info: bool = False,
    ) -> None:
        target = operation.logger or self._default_logger
        target.log(level, "[operation %s] %s", operation.id, message, exc_info=exc_info)
