# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Service - runs one tool invocation in an isolated context.

Responsibilities:
- Validate the request before any context is spawned
- Track progress through initializing -> loading -> executing -> terminal
- Enforce the per-request timeout and support cancellation
- Notify subscribers on every status/progress change
"""

import asyncio
import inspect
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Union

from toolvault.core.config import Config, get_config
from toolvault.core.errors import (
    ExecutionCancelledError,
    ExecutionTimeoutError,
    ToolExecutionError,
    ToolVaultError,
    WorkerUnavailableError,
)
from toolvault.core.logging import get_service_logger, log_event
from toolvault.execution.context import ContextPool, IsolatedContext
from toolvault.execution.models import (
    ContextMessage,
    ContextMessageType,
    ExecutionOptions,
    ExecutionProgress,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatus,
    VALID_TRANSITIONS,
)
from toolvault.execution.validation import (
    check_output,
    ensure_mapping,
    validate_code_ref,
    validate_input,
)
from toolvault.tools.models import ToolDescriptor

logger = get_service_logger("execution")

ProgressListener = Callable[[ExecutionProgress], Any]

# Progress at which a loading execution counts as executing
EXECUTING_THRESHOLD = 50


@dataclass
class _ActiveExecution:
    request: ExecutionRequest
    record: ExecutionProgress
    future: asyncio.Future
    started: float  # monotonic
    validate_output: bool
    context: Optional[IsolatedContext] = None
    timer: Optional[asyncio.TimerHandle] = None
    reader: Optional[asyncio.Task] = None
    warnings: List[str] = field(default_factory=list)


class ExecutionHandle:
    """Returned by ExecutionService.start()."""

    def __init__(self, execution_id: str, future: asyncio.Future):
        self.execution_id = execution_id
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> ExecutionResult:
        """Wait for the result. Cancelling the waiter does not cancel the execution."""
        return await asyncio.shield(self._future)


def _retrieve_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class ExecutionService:
    """
    Runs tools through an injected ContextPool.

    One context per accepted start(), torn down on any terminal transition.
    """

    def __init__(self, pool: ContextPool, config: Optional[Config] = None):
        self.pool = pool
        self.config = config or get_config()
        self._records: Dict[str, ExecutionProgress] = {}
        self._active: Dict[str, _ActiveExecution] = {}
        self._retained: "OrderedDict[str, None]" = OrderedDict()
        self._listeners: List[ProgressListener] = []
        self._background: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        descriptor: ToolDescriptor,
        params: Dict[str, Any],
        options: Union[ExecutionOptions, Dict[str, Any], None] = None
    ) -> ExecutionResult:
        """Run a tool and wait for its result."""
        handle = await self.start(descriptor, params, options)
        return await handle.wait()

    async def start(
        self,
        descriptor: ToolDescriptor,
        params: Dict[str, Any],
        options: Union[ExecutionOptions, Dict[str, Any], None] = None
    ) -> ExecutionHandle:
        """
        Validate, acquire a context and dispatch the request.

        Raises:
            ValidationError: Missing code_ref, non-mapping input or bad input
            WorkerUnavailableError: The pool could not provide a context
        """
        if isinstance(options, dict):
            options = ExecutionOptions.model_validate(options)
        options = options or ExecutionOptions()

        should_validate_input = self._option(options.validate_input, self.config.validate_input)
        should_validate_output = self._option(options.validate_output, self.config.validate_output)
        timeout = options.timeout if options.timeout is not None else self.config.default_timeout

        validate_code_ref(descriptor)
        if should_validate_input:
            validate_input(descriptor, params)
        else:
            ensure_mapping(descriptor, params)

        execution_id = str(uuid.uuid4())
        request = ExecutionRequest(
            execution_id=execution_id,
            descriptor=descriptor,
            input=dict(params),
            options=ExecutionOptions(
                timeout=timeout,
                validate_input=should_validate_input,
                validate_output=should_validate_output
            )
        )
        record = ExecutionProgress(
            execution_id=execution_id,
            tool_id=descriptor.id,
            started_at=datetime.now(timezone.utc)
        )
        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_retrieve_exception)

        active = _ActiveExecution(
            request=request,
            record=record,
            future=future,
            started=time.monotonic(),
            validate_output=should_validate_output
        )
        self._records[execution_id] = record
        self._active[execution_id] = active
        log_event(logger, "execution_initializing", level="DEBUG",
                  execution_id=execution_id, tool_id=descriptor.id)
        self._notify(record)

        # Spawning and dispatch count against the timeout
        active.timer = asyncio.get_running_loop().call_later(timeout, self._on_timeout, execution_id)

        try:
            active.context = await self.pool.acquire(execution_id)
            if not record.status.is_terminal:
                await active.context.start(descriptor.code_ref, request.input)
        except ToolVaultError as e:
            self._fail(active, e)
            self._finish(active)
            raise
        except Exception as e:
            error = WorkerUnavailableError(
                f"Execution context unavailable: {e}",
                execution_id=execution_id,
                tool_id=descriptor.id
            )
            self._fail(active, error)
            self._finish(active)
            raise error from e

        if record.status.is_terminal:
            # Timed out or cancelled while the request was being dispatched
            self._finish(active)
            raise active.future.exception()

        self._transition(record, ExecutionStatus.LOADING)
        active.reader = asyncio.create_task(self._consume(active))

        log_event(logger, "execution_dispatched", execution_id=execution_id,
                  tool_id=descriptor.id, timeout=timeout)
        return ExecutionHandle(execution_id, future)

    def cancel(self, execution_id: str) -> bool:
        """
        Cancel an active execution.

        Returns False for unknown or already-terminal executions.
        """
        active = self._active.get(execution_id)
        if active is None or active.record.status.is_terminal:
            return False

        error = ExecutionCancelledError(
            "Execution cancelled",
            execution_id=execution_id,
            tool_id=active.record.tool_id
        )
        self._fail(active, error, status=ExecutionStatus.CANCELLED)
        return True

    def get_progress(self, execution_id: str) -> Optional[ExecutionProgress]:
        record = self._records.get(execution_id)
        return record.model_copy() if record else None

    def list_active(self) -> List[ExecutionProgress]:
        return [a.record.model_copy() for a in self._active.values()]

    def release(self, execution_id: str) -> bool:
        """Drop a terminal progress record."""
        record = self._records.get(execution_id)
        if record is None or not record.status.is_terminal:
            return False
        del self._records[execution_id]
        self._retained.pop(execution_id, None)
        return True

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """
        Register a listener called with a progress snapshot on every change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def dispose(self) -> None:
        """Cancel everything in flight and dispose the pool."""
        for execution_id in list(self._active):
            self.cancel(execution_id)
        await self.pool.dispose()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def _consume(self, active: _ActiveExecution) -> None:
        try:
            async for message in active.context.messages():
                self._handle_message(active, message)
                if active.record.status.is_terminal:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Reading from context failed for {active.record.execution_id}")
            self._fail(active, ToolExecutionError(
                f"Execution context failed: {e}",
                execution_id=active.record.execution_id,
                tool_id=active.record.tool_id
            ))
            return

        self._fail(active, ToolExecutionError(
            "Execution context exited without reporting a result",
            execution_id=active.record.execution_id,
            tool_id=active.record.tool_id
        ))

    def _handle_message(self, active: _ActiveExecution, message: ContextMessage) -> None:
        record = active.record
        if record.status.is_terminal:
            logger.debug(f"Ignoring late {message.type.value} message for {record.execution_id}")
            return

        if message.type == ContextMessageType.PROGRESS:
            self._on_progress(record, message.progress or 0)
        elif message.type == ContextMessageType.SUCCESS:
            self._on_success(active, message)
        else:
            self._fail(active, ToolExecutionError(
                message.error or "Tool execution failed",
                execution_id=record.execution_id,
                tool_id=record.tool_id,
                details={"error_type": message.error_type}
            ))

    def _on_progress(self, record: ExecutionProgress, value: int) -> None:
        value = max(0, min(100, int(value)))
        changed = value > record.progress
        record.progress = max(record.progress, value)
        if record.status == ExecutionStatus.LOADING and record.progress >= EXECUTING_THRESHOLD:
            self._transition(record, ExecutionStatus.EXECUTING)
        elif changed:
            self._notify(record)

    def _on_success(self, active: _ActiveExecution, message: ContextMessage) -> None:
        record = active.record
        descriptor = active.request.descriptor

        if active.validate_output:
            for warning in check_output(descriptor, message.output):
                active.warnings.append(warning)
                log_event(logger, "output_validation_warning", level="WARNING",
                          execution_id=record.execution_id, tool_id=record.tool_id, warning=warning)

        ended_at = datetime.now(timezone.utc)
        result = ExecutionResult(
            execution_id=record.execution_id,
            tool_id=record.tool_id,
            output=message.output,
            execution_time_ms=message.execution_time_ms or 0.0,
            elapsed_ms=(time.monotonic() - active.started) * 1000,
            started_at=record.started_at,
            ended_at=ended_at,
            warnings=list(active.warnings)
        )
        record.progress = 100
        if not self._transition(record, ExecutionStatus.COMPLETED):
            return
        if not active.future.done():
            active.future.set_result(result)
        log_event(logger, "execution_completed", execution_id=record.execution_id,
                  tool_id=record.tool_id, elapsed_ms=result.elapsed_ms)
        self._finish(active)

    def _on_timeout(self, execution_id: str) -> None:
        active = self._active.get(execution_id)
        if active is None or active.record.status.is_terminal:
            return
        timeout = active.request.options.timeout
        self._fail(active, ExecutionTimeoutError(
            f"Execution timed out after {timeout}s",
            execution_id=execution_id,
            tool_id=active.record.tool_id,
            timeout_seconds=timeout
        ))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _fail(
        self,
        active: _ActiveExecution,
        error: ToolVaultError,
        status: ExecutionStatus = ExecutionStatus.ERROR
    ) -> None:
        record = active.record
        if not self._transition(record, status, error=error.message):
            return
        if not active.future.done():
            active.future.set_exception(error)

        level = "INFO" if status == ExecutionStatus.CANCELLED else "ERROR"
        log_event(logger, f"execution_{status.value}", level=level,
                  execution_id=record.execution_id, tool_id=record.tool_id,
                  code=error.code, error=error.message)
        self._finish(active)

    def _transition(
        self,
        record: ExecutionProgress,
        status: ExecutionStatus,
        error: Optional[str] = None
    ) -> bool:
        if status not in VALID_TRANSITIONS[record.status]:
            logger.debug(
                f"Rejected transition {record.status.value} -> {status.value} "
                f"for {record.execution_id}"
            )
            return False

        record.status = status
        if status.is_terminal:
            record.ended_at = datetime.now(timezone.utc)
            record.error = error
        self._notify(record)
        return True

    def _finish(self, active: _ActiveExecution) -> None:
        """Teardown after a terminal transition."""
        execution_id = active.record.execution_id
        self._active.pop(execution_id, None)

        if active.timer is not None:
            active.timer.cancel()
        if active.reader is not None and active.reader is not asyncio.current_task():
            active.reader.cancel()
        if active.context is not None:
            active.context.cancel()
            self._spawn(self._release_context(active.context))
            active.context = None

        self._retained[execution_id] = None
        while len(self._retained) > max(self.config.progress_retention, 0):
            evicted, _ = self._retained.popitem(last=False)
            self._records.pop(evicted, None)

    async def _release_context(self, context: IsolatedContext) -> None:
        try:
            await self.pool.release(context)
        except Exception:
            logger.exception(f"Failed to release context for {context.execution_id}")

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def _notify(self, record: ExecutionProgress) -> None:
        for listener in list(self._listeners):
            snapshot = record.model_copy()
            try:
                outcome = listener(snapshot)
            except Exception:
                logger.exception("Progress listener failed")
                continue
            if inspect.isawaitable(outcome):
                self._spawn(outcome, on_error="Progress listener failed")

    def _spawn(self, awaitable, on_error: Optional[str] = None) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)

        def done(t: asyncio.Future) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None and on_error:
                logger.error(f"{on_error}: {t.exception()}")

        task.add_done_callback(done)

    @staticmethod
    def _option(value: Optional[bool], default: bool) -> bool:
        return default if value is None else value
