# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine

Runs multi-step workflows through the execution service. Steps run one at a
time in list order; each admitted workflow runs as its own task and the
execution queue caps how many run at once.

Supports:
- Step dependencies (depends_on) and conditions
- Input references between steps: ${stepId.path}
- Retry with exponential backoff for retryable errors
- Pause / resume / cancel at step boundaries
- Priority admission under a concurrency cap
"""

import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union

from toolvault.core.config import Config, get_config
from toolvault.core.errors import (
    ConditionError,
    DependencyFailedError,
    ExecutionError,
    NotFoundError,
    ReferenceResolutionError,
    ToolExecutionError,
    ToolVaultError,
    ValidationError,
    WorkflowStateError,
)
from toolvault.core.logging import get_service_logger, log_event
from toolvault.execution.models import ExecutionOptions
from toolvault.execution.service import ExecutionService
from toolvault.tools.registry import ToolRegistry
from toolvault.workflow.conditions import evaluate_condition
from toolvault.workflow.history import WorkflowHistoryStore
from toolvault.workflow.models import (
    RUNNABLE_STATUSES,
    ExecutionStep,
    ExecutionStepResult,
    ExecutionWorkflow,
    QueueEntryStatus,
    QueueStatus,
    StepError,
    StepStatus,
    WorkflowEvent,
    WorkflowExecutionOptions,
    WorkflowStatus,
)
from toolvault.workflow.queue import ExecutionQueue
from toolvault.workflow.references import resolve_inputs
from toolvault.workflow.retry import RetryPolicy
from toolvault.workflow.validation import topological_sort, validate_steps

logger = get_service_logger("workflow")

WorkflowListener = Callable[[WorkflowEvent], Any]

_QUEUE_OUTCOME = {
    WorkflowStatus.COMPLETED: QueueEntryStatus.COMPLETED,
    WorkflowStatus.FAILED: QueueEntryStatus.FAILED,
    WorkflowStatus.CANCELLED: QueueEntryStatus.CANCELLED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


@dataclass
class _WorkflowRun:
    """Engine-side state of the current run of one workflow"""
    options: WorkflowExecutionOptions
    settled: asyncio.Event = field(default_factory=asyncio.Event)
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None

    @property
    def loop_active(self) -> bool:
        return self.task is not None and not self.task.done()


class WorkflowEngine:
    """
    Orchestrates workflows of tool executions.

    Owns the workflow map and the execution queue. Both are only mutated by
    synchronous code between await points.
    """

    def __init__(
        self,
        execution_service: ExecutionService,
        tool_registry: ToolRegistry,
        config: Optional[Config] = None,
        history_store: Optional[WorkflowHistoryStore] = None
    ):
        self.executions = execution_service
        self.tools = tool_registry
        self.config = config or get_config()
        if history_store is None and self.config.history_dir:
            history_store = WorkflowHistoryStore(Path(self.config.history_dir))
        self.history = history_store
        self.queue = ExecutionQueue(
            max_concurrent=self.config.max_concurrent_workflows,
            history_limit=self.config.queue_history_limit
        )
        self._workflows: Dict[str, ExecutionWorkflow] = {}
        self._runs: Dict[str, _WorkflowRun] = {}
        self._listeners: List[WorkflowListener] = []
        self._background: Set[asyncio.Future] = set()
        self._history_tail: Dict[str, asyncio.Future] = {}

    # ------------------------------------------------------------------
    # Definition
    # ------------------------------------------------------------------

    def create_workflow(
        self,
        name: str,
        steps: List[Union[ExecutionStep, Dict[str, Any]]],
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        order: str = "declared"
    ) -> ExecutionWorkflow:
        """
        Create a workflow.

        Args:
            name: Workflow name
            steps: Steps (models or dicts, camelCase keys accepted)
            description: Optional description
            metadata: Free-form metadata kept with the workflow
            order: "declared" keeps list order, "topological" sorts by depends_on

        Raises:
            ValidationError: Empty steps, duplicate ids, bad condition, cycle
        """
        prepared: List[ExecutionStep] = []
        for index, step in enumerate(steps):
            if isinstance(step, dict):
                step = ExecutionStep.model_validate(step)
            step = step.model_copy(deep=True)
            if not step.id:
                step.id = f"step_{index}"
            prepared.append(step)

        validate_steps(prepared)
        if order == "topological":
            prepared = topological_sort(prepared)
        elif order != "declared":
            raise ValidationError(f"Unknown step order: {order}", field="order", value=order)

        now = _now()
        workflow = ExecutionWorkflow(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            steps=self._with_tracking_ids(prepared),
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now
        )
        self._workflows[workflow.id] = workflow

        log_event(logger, "workflow_created", workflow_id=workflow.id,
                  workflow_name=name, steps=len(prepared))
        self._emit("workflow_created", workflow)
        return workflow.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def execute_workflow(
        self,
        workflow_id: str,
        options: Union[WorkflowExecutionOptions, Dict[str, Any], None] = None
    ) -> None:
        """
        Queue a run of the workflow and return without waiting for it.

        Raises:
            NotFoundError: Unknown workflow
            WorkflowStateError: Workflow is running, paused or already queued
        """
        workflow = self._get(workflow_id)
        run = self._runs.get(workflow_id)
        if (
            workflow.status not in RUNNABLE_STATUSES
            or self.queue.entry_for(workflow_id) is not None
            or (run is not None and run.loop_active)
        ):
            raise WorkflowStateError(
                f"Workflow {workflow_id} cannot be executed while {workflow.status.value}"
                + (" and queued" if self.queue.is_queued(workflow_id) else ""),
                workflow_id=workflow_id,
                status=workflow.status.value
            )

        if isinstance(options, dict):
            options = WorkflowExecutionOptions.model_validate(options)
        options = options or WorkflowExecutionOptions()

        # Fresh run
        workflow.status = WorkflowStatus.IDLE
        workflow.results = []
        workflow.current_step_index = 0
        workflow.started_at = None
        workflow.ended_at = None
        workflow.duration_ms = None
        workflow.active_execution_id = None
        workflow.run_count += 1
        workflow.steps = self._with_tracking_ids(workflow.steps)
        self._touch(workflow)

        self._runs[workflow_id] = _WorkflowRun(options=options)
        entry = self.queue.enqueue(workflow_id, int(options.priority))

        log_event(logger, "workflow_queued", workflow_id=workflow_id,
                  priority=entry.priority, run=workflow.run_count)
        self._emit("workflow_queued", workflow, priority=entry.priority, run=workflow.run_count)
        self._drain()

    async def cancel_workflow(self, workflow_id: str, cancel_active_step: bool = False) -> bool:
        """
        Cancel a queued, running or paused workflow.

        A running loop stops before its next step; recorded results are kept.
        With cancel_active_step the in-flight execution is cancelled as well.

        Returns False if there was nothing to cancel.
        """
        workflow = self._get(workflow_id)
        run = self._runs.get(workflow_id)
        queued = self.queue.cancel(workflow_id)
        loop_active = run is not None and run.loop_active

        if not queued and not loop_active and workflow.status != WorkflowStatus.PAUSED:
            return False

        workflow.status = WorkflowStatus.CANCELLED
        self._touch(workflow)
        if run is not None:
            run.cancelled.set()

        if loop_active:
            if cancel_active_step and workflow.active_execution_id:
                self.executions.cancel(workflow.active_execution_id)
            log_event(logger, "workflow_cancel_requested", workflow_id=workflow_id)
            self._emit("workflow_cancel_requested", workflow)
        else:
            # Nothing running: settle now
            self._settle(workflow, run)
            log_event(logger, "workflow_cancelled", workflow_id=workflow_id)
            self._emit("workflow_finished", workflow)
            self._drain()
        return True

    async def pause_workflow(self, workflow_id: str) -> None:
        """
        Pause a running workflow at the next step boundary.

        Raises:
            WorkflowStateError: Workflow is not running
        """
        workflow = self._get(workflow_id)
        if workflow.status != WorkflowStatus.RUNNING:
            raise WorkflowStateError(
                f"Only running workflows can be paused (workflow is {workflow.status.value})",
                workflow_id=workflow_id,
                status=workflow.status.value
            )
        workflow.status = WorkflowStatus.PAUSED
        self._touch(workflow)
        log_event(logger, "workflow_pause_requested", workflow_id=workflow_id,
                  step_index=workflow.current_step_index)
        self._emit("workflow_pause_requested", workflow)

    async def resume_workflow(self, workflow_id: str) -> None:
        """
        Resume a paused workflow from its next step, with the options and
        priority of the run it belongs to.

        Raises:
            WorkflowStateError: Workflow is not paused, or already re-queued
        """
        workflow = self._get(workflow_id)
        run = self._runs.get(workflow_id)
        if workflow.status != WorkflowStatus.PAUSED or run is None:
            raise WorkflowStateError(
                f"Only paused workflows can be resumed (workflow is {workflow.status.value})",
                workflow_id=workflow_id,
                status=workflow.status.value
            )

        if run.loop_active:
            # Pause not yet reached a step boundary: just keep going
            workflow.status = WorkflowStatus.RUNNING
            self._touch(workflow)
            self._emit("workflow_resumed", workflow)
            return

        if self.queue.entry_for(workflow_id) is not None:
            raise WorkflowStateError(
                f"Workflow {workflow_id} is already queued for resumption",
                workflow_id=workflow_id,
                status=workflow.status.value
            )

        run.settled = asyncio.Event()
        entry = self.queue.enqueue(workflow_id, int(run.options.priority))
        log_event(logger, "workflow_resume_queued", workflow_id=workflow_id,
                  step_index=workflow.current_step_index, priority=entry.priority)
        self._emit("workflow_queued", workflow, priority=entry.priority, resumed=True)
        self._drain()

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow, cancelling it first if it is active."""
        if workflow_id not in self._workflows:
            return False
        await self.cancel_workflow(workflow_id, cancel_active_step=True)
        run = self._runs.get(workflow_id)
        if run is not None and run.loop_active:
            run.task.cancel()
            await asyncio.gather(run.task, return_exceptions=True)
        self.queue.remove(workflow_id)
        del self._workflows[workflow_id]
        self._runs.pop(workflow_id, None)
        log_event(logger, "workflow_deleted", workflow_id=workflow_id)
        self._drain()
        return True

    async def wait_for(self, workflow_id: str, timeout: Optional[float] = None) -> ExecutionWorkflow:
        """
        Wait until the workflow's loop settles (finished, paused or cancelled).

        Raises:
            NotFoundError: Unknown workflow
            asyncio.TimeoutError: Not settled within timeout
        """
        self._get(workflow_id)
        run = self._runs.get(workflow_id)
        if run is not None:
            await asyncio.wait_for(run.settled.wait(), timeout)
        tail = self._history_tail.get(workflow_id)
        if tail is not None:
            await asyncio.gather(tail, return_exceptions=True)
        return self.get_workflow(workflow_id)

    async def shutdown(self) -> None:
        """Cancel every queued and running workflow and wait for the loops to exit."""
        tasks = []
        for workflow_id, run in list(self._runs.items()):
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                continue
            if self.queue.is_queued(workflow_id) or run.loop_active:
                await self.cancel_workflow(workflow_id, cancel_active_step=True)
            if run.task is not None and not run.task.done():
                run.task.cancel()
                tasks.append(run.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Workflow engine shut down")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_workflow(self, workflow_id: str) -> ExecutionWorkflow:
        """Deep copy of the workflow. Raises NotFoundError."""
        return self._get(workflow_id).model_copy(deep=True)

    def list_workflows(self) -> List[ExecutionWorkflow]:
        return [w.model_copy(deep=True) for w in self._workflows.values()]

    def get_queue_status(self) -> QueueStatus:
        return self.queue.status()

    def subscribe(self, listener: WorkflowListener) -> Callable[[], None]:
        """
        Register a listener for workflow events.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _drain(self) -> None:
        """Admit queued workflows while there are free slots."""
        while True:
            entry = self.queue.admit_next()
            if entry is None:
                return
            workflow = self._workflows.get(entry.workflow_id)
            run = self._runs.get(entry.workflow_id)
            if workflow is None or run is None:
                self.queue.finish(entry.workflow_id, QueueEntryStatus.CANCELLED)
                continue

            resumed = workflow.status == WorkflowStatus.PAUSED
            workflow.status = WorkflowStatus.RUNNING
            self._touch(workflow)
            run.task = asyncio.create_task(self._run_loop(workflow, run))

            log_event(logger, "workflow_resumed" if resumed else "workflow_started",
                      workflow_id=workflow.id, step_index=workflow.current_step_index)
            self._emit("workflow_resumed" if resumed else "workflow_started", workflow)

    async def _run_loop(self, workflow: ExecutionWorkflow, run: _WorkflowRun) -> None:
        crashed = False
        aborted = False
        try:
            aborted = await self._execute_steps(workflow, run)
        except asyncio.CancelledError:
            workflow.status = WorkflowStatus.CANCELLED
            raise
        except Exception:
            crashed = True
            logger.exception(f"Workflow loop crashed: {workflow.id}")
        finally:
            self._on_loop_exit(workflow, run, crashed or aborted)

    async def _execute_steps(self, workflow: ExecutionWorkflow, run: _WorkflowRun) -> bool:
        """Run steps from current_step_index. Returns True if the run was aborted by a failure."""
        while workflow.current_step_index < len(workflow.steps):
            if workflow.status in (WorkflowStatus.CANCELLED, WorkflowStatus.PAUSED):
                return False

            index = workflow.current_step_index
            step = workflow.steps[index]
            if workflow.started_at is None:
                workflow.started_at = _now()

            result = await self._run_step(workflow, step, index, run)

            workflow.results.append(result)
            workflow.current_step_index = index + 1
            self._touch(workflow)

            log_event(logger, "step_recorded", workflow_id=workflow.id, step_id=step.id,
                      step_status=result.status.value, retry_count=result.retry_count)
            self._emit("step_recorded", workflow, step=result)

            if result.status == StepStatus.FAILED and not run.options.continue_on_error:
                if workflow.status != WorkflowStatus.CANCELLED:
                    self._cascade_failure(workflow)
                return True
        return False

    def _cascade_failure(self, workflow: ExecutionWorkflow) -> None:
        """
        On abort, record DEPENDENCY_FAILED for remaining steps that depend,
        directly or transitively, on a failed step. Independent steps stay unrun.
        """
        failed = {r.step_id for r in workflow.results if r.status == StepStatus.FAILED}
        completed = workflow.completed_results()
        for index in range(workflow.current_step_index, len(workflow.steps)):
            step = workflow.steps[index]
            if not failed.intersection(step.depends_on):
                continue
            now = _now()
            missing = [dep for dep in step.depends_on if dep not in completed]
            result = ExecutionStepResult(
                step_id=step.id,
                tracking_id=step.tracking_id,
                step_index=index,
                tool_id=step.tool_id,
                status=StepStatus.FAILED,
                error=self._step_error(DependencyFailedError(step.id, missing), None),
                started_at=now,
                ended_at=now,
                duration_ms=0.0
            )
            workflow.results.append(result)
            failed.add(step.id)
            self._emit("step_recorded", workflow, step=result)

    def _on_loop_exit(self, workflow: ExecutionWorkflow, run: _WorkflowRun, ended_early: bool) -> None:
        workflow.active_execution_id = None

        paused = (
            workflow.status == WorkflowStatus.PAUSED
            and not ended_early
            and workflow.current_step_index < len(workflow.steps)
        )
        if paused:
            # Leave the queue; resume re-enqueues
            self.queue.remove(workflow.id)
            run.settled.set()
            log_event(logger, "workflow_paused", workflow_id=workflow.id,
                      step_index=workflow.current_step_index)
            self._emit("workflow_paused", workflow)
            self._drain()
            return

        if workflow.status != WorkflowStatus.CANCELLED:
            failed = ended_early or any(r.status == StepStatus.FAILED for r in workflow.results)
            finished = workflow.current_step_index >= len(workflow.steps)
            workflow.status = (
                WorkflowStatus.COMPLETED if finished and not failed else WorkflowStatus.FAILED
            )

        self._settle(workflow, run)
        self.queue.finish(workflow.id, _QUEUE_OUTCOME[workflow.status])

        level = "ERROR" if workflow.status == WorkflowStatus.FAILED else "INFO"
        log_event(logger, "workflow_finished", level=level, workflow_id=workflow.id,
                  status=workflow.status.value, duration_ms=workflow.duration_ms,
                  steps_recorded=len(workflow.results))
        self._emit("workflow_finished", workflow)
        self._drain()

    def _settle(self, workflow: ExecutionWorkflow, run: Optional[_WorkflowRun]) -> None:
        workflow.ended_at = _now()
        if workflow.started_at is not None:
            workflow.duration_ms = (workflow.ended_at - workflow.started_at).total_seconds() * 1000
        else:
            workflow.duration_ms = 0.0
        self._touch(workflow)
        if run is not None:
            run.settled.set()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run_step(
        self,
        workflow: ExecutionWorkflow,
        step: ExecutionStep,
        index: int,
        run: _WorkflowRun
    ) -> ExecutionStepResult:
        started_at = _now()
        started = time.monotonic()
        outputs = {sid: r.result for sid, r in workflow.completed_results().items()}

        def outcome(status: StepStatus, result: Any = None, error: Optional[Exception] = None,
                    retry_count: int = 0, execution_id: Optional[str] = None) -> ExecutionStepResult:
            return ExecutionStepResult(
                step_id=step.id,
                tracking_id=step.tracking_id,
                step_index=index,
                tool_id=step.tool_id,
                status=status,
                result=result if status == StepStatus.COMPLETED else None,
                error=self._step_error(error, execution_id) if error is not None else None,
                started_at=started_at,
                ended_at=_now(),
                duration_ms=(time.monotonic() - started) * 1000,
                retry_count=retry_count,
                execution_id=execution_id
            )

        # 1. Dependencies must have completed
        missing = [dep for dep in step.depends_on if dep not in outputs]
        if missing:
            return outcome(StepStatus.FAILED, error=DependencyFailedError(step.id, missing))

        # 2. Condition
        if step.condition:
            try:
                should_run = evaluate_condition(step.condition, outputs)
            except (ReferenceResolutionError, ConditionError, TypeError) as e:
                logger.debug(f"Condition for step {step.id} not satisfiable: {e}")
                should_run = False
            if not should_run:
                return outcome(StepStatus.SKIPPED)

        # 3. Inputs and tool
        try:
            params = resolve_inputs(step.inputs, outputs)
        except ReferenceResolutionError as e:
            return outcome(StepStatus.FAILED, error=e)

        descriptor = self.tools.find(step.tool_id)
        if descriptor is None:
            return outcome(StepStatus.FAILED, error=ValidationError(
                f"Unknown tool: {step.tool_id}", field="tool_id", value=step.tool_id
            ))

        # 4. Execute with retries
        policy = RetryPolicy(
            max_retries=step.max_retries if step.max_retries is not None else self.config.max_retries,
            backoff_base=self.config.backoff_base,
            backoff_max=self.config.backoff_max
        )
        timeout = step.timeout if step.timeout is not None else self.config.step_timeout
        retries = 0

        while True:
            execution_id = None
            try:
                handle = await self.executions.start(descriptor, params, ExecutionOptions(timeout=timeout))
                execution_id = handle.execution_id
                workflow.active_execution_id = execution_id
                result = await handle.wait()
                return outcome(StepStatus.COMPLETED, result=result.output,
                               retry_count=retries, execution_id=execution_id)
            except ToolVaultError as e:
                error = e
            except Exception as e:
                error = ToolExecutionError(
                    f"Unexpected error running step {step.id}: {e}",
                    execution_id=execution_id,
                    tool_id=step.tool_id
                )
            finally:
                workflow.active_execution_id = None

            if isinstance(error, ExecutionError) and error.execution_id:
                execution_id = error.execution_id

            if workflow.status == WorkflowStatus.CANCELLED or not policy.should_retry(error, retries):
                return outcome(StepStatus.FAILED, error=error,
                               retry_count=retries, execution_id=execution_id)

            retries += 1
            delay = policy.calculate_delay(retries)
            log_event(logger, "step_retry", level="WARNING", workflow_id=workflow.id,
                      step_id=step.id, attempt=retries + 1, delay=delay, code=error.code)
            self._emit("step_retry", workflow, step_id=step.id, attempt=retries + 1, delay=delay)

            if await self._backoff(run, delay):
                return outcome(StepStatus.FAILED, error=error,
                               retry_count=retries - 1, execution_id=execution_id)

    async def _backoff(self, run: _WorkflowRun, delay: float) -> bool:
        """Sleep before a retry. Returns True if the workflow was cancelled meanwhile."""
        try:
            await asyncio.wait_for(run.cancelled.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    @staticmethod
    def _step_error(error: Exception, execution_id: Optional[str]) -> StepError:
        if isinstance(error, ToolVaultError):
            return StepError(
                code=error.code,
                message=error.message,
                retryable=error.retryable,
                execution_id=execution_id,
                details=dict(error.details)
            )
        return StepError(code=ToolExecutionError.code, message=str(error), execution_id=execution_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, workflow_id: str) -> ExecutionWorkflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    @staticmethod
    def _touch(workflow: ExecutionWorkflow) -> None:
        workflow.updated_at = _now()

    @staticmethod
    def _with_tracking_ids(steps: List[ExecutionStep]) -> List[ExecutionStep]:
        return [step.model_copy(update={"tracking_id": str(uuid.uuid4())}) for step in steps]

    def _emit(
        self,
        event_type: str,
        workflow: ExecutionWorkflow,
        step: Optional[ExecutionStepResult] = None,
        **data: Any
    ) -> None:
        """Notify listeners and append to history."""
        event = WorkflowEvent(
            type=event_type,
            workflow_id=workflow.id,
            status=workflow.status,
            timestamp=_now(),
            step=step,
            data=data
        )
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
            except Exception:
                logger.exception(f"Workflow listener failed on {event_type}")
                continue
            if inspect.isawaitable(outcome):
                if _loop_running():
                    self._spawn(outcome, on_error=f"Workflow listener failed on {event_type}")
                elif inspect.iscoroutine(outcome):
                    outcome.close()

        if self.history is not None and _loop_running():
            previous = self._history_tail.get(workflow.id)
            tail = self._spawn(self._write_history(previous, workflow.model_copy(deep=True), event))
            self._history_tail[workflow.id] = tail

    async def _write_history(
        self,
        previous: Optional[asyncio.Future],
        snapshot: ExecutionWorkflow,
        event: WorkflowEvent
    ) -> None:
        # Keep per-workflow write order
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        try:
            await self.history.append_event(snapshot.id, event.model_dump(mode="json", exclude={"timestamp"}))
            await self.history.save_snapshot(snapshot)
        except Exception as e:
            log_event(logger, "history_write_failed", level="ERROR",
                      workflow_id=snapshot.id, error=str(e))

    def _spawn(self, awaitable, on_error: Optional[str] = None) -> asyncio.Future:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)

        def done(t: asyncio.Future) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None and on_error:
                logger.error(f"{on_error}: {t.exception()}")

        task.add_done_callback(done)
        return task
