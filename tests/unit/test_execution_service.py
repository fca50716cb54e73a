# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for ExecutionService

Tests validation, progress tracking, timeout, cancellation and observers
against the scripted context pool.
"""

import asyncio

import pytest

from toolvault.core.config import Config
from toolvault.core.errors import (
    ExecutionCancelledError,
    ExecutionTimeoutError,
    ToolExecutionError,
    ValidationError,
    WorkerUnavailableError,
)
from toolvault.execution.models import ExecutionOptions, ExecutionStatus
from toolvault.execution.service import ExecutionService
from toolvault.tools.models import ToolParameter

from tests.conftest import make_tool, wait_until


@pytest.fixture
def echo_tool():
    return make_tool(
        "echo",
        "tests:echo",
        inputs=[
            ToolParameter(name="text", type="string", required=True),
            ToolParameter(name="count", type="integer"),
        ],
        outputs=["text"]
    )


class TestExecute:
    """Test successful executions"""

    @pytest.mark.asyncio
    async def test_execute_returns_result(self, execution_service, echo_tool):
        """Should resolve with the tool output and completed progress"""
        result = await execution_service.execute(echo_tool, {"text": "hello"})

        assert result.output == {"text": "hello"}
        assert result.tool_id == "echo"
        assert result.warnings == []
        assert result.elapsed_ms >= 0

        progress = execution_service.get_progress(result.execution_id)
        assert progress.status == ExecutionStatus.COMPLETED
        assert progress.progress == 100
        assert progress.ended_at is not None

    @pytest.mark.asyncio
    async def test_status_sequence(self, execution_service, echo_tool):
        """Should move initializing -> loading -> executing -> completed"""
        statuses = []
        execution_service.subscribe(lambda p: statuses.append(p.status))

        await execution_service.execute(echo_tool, {"text": "hi"})

        distinct = [s for i, s in enumerate(statuses) if i == 0 or statuses[i - 1] != s]
        assert distinct == [
            ExecutionStatus.INITIALIZING,
            ExecutionStatus.LOADING,
            ExecutionStatus.EXECUTING,
            ExecutionStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_one_context_per_execution_released(self, execution_service, fake_pool, echo_tool):
        """Should acquire one context and release it after completion"""
        await execution_service.execute(echo_tool, {"text": "a"})
        await wait_until(lambda: len(fake_pool.released) == 1)

        assert len(fake_pool.contexts) == 1
        assert fake_pool.active_count == 0
        assert fake_pool.contexts[0].code_ref == "tests:echo"

    @pytest.mark.asyncio
    async def test_start_returns_handle(self, execution_service, echo_tool):
        """start() should return before the result is available"""
        handle = await execution_service.start(echo_tool, {"text": "x"})

        assert handle.execution_id
        result = await handle.wait()
        assert result.execution_id == handle.execution_id


class TestInputValidation:
    """Test validation before any context is spawned"""

    @pytest.mark.asyncio
    async def test_missing_required_input(self, execution_service, fake_pool, echo_tool):
        """Should reject with VALIDATION_ERROR and never spawn a context"""
        statuses = []
        execution_service.subscribe(lambda p: statuses.append(p.status))

        with pytest.raises(ValidationError) as exc_info:
            await execution_service.execute(echo_tool, {})

        assert exc_info.value.code == "VALIDATION_ERROR"
        assert exc_info.value.field == "text"
        assert fake_pool.contexts == []
        assert ExecutionStatus.LOADING not in statuses

    @pytest.mark.asyncio
    async def test_wrong_type(self, execution_service, fake_pool, echo_tool):
        """Should name the field with the wrong type"""
        with pytest.raises(ValidationError) as exc_info:
            await execution_service.execute(echo_tool, {"text": "a", "count": "three"})

        assert exc_info.value.field == "count"
        assert fake_pool.contexts == []

    @pytest.mark.asyncio
    async def test_missing_code_ref(self, execution_service, fake_pool):
        """A descriptor without code is a validation error, not a crash"""
        with pytest.raises(ValidationError) as exc_info:
            await execution_service.execute(make_tool("no-code"), {})

        assert exc_info.value.field == "code_ref"
        assert fake_pool.contexts == []

    @pytest.mark.asyncio
    async def test_non_mapping_input(self, execution_service, echo_tool):
        """Input must be a mapping even with validation disabled"""
        with pytest.raises(ValidationError):
            await execution_service.execute(
                echo_tool, ["text"], ExecutionOptions(validate_input=False)
            )

    @pytest.mark.asyncio
    async def test_validation_can_be_disabled(self, execution_service, echo_tool):
        """validate_input=False should pass input through unchecked"""
        result = await execution_service.execute(
            echo_tool, {"count": "three"}, {"validate_input": False}
        )
        assert result.output == {"count": "three"}


class TestOutputValidation:
    """Test advisory output validation"""

    @pytest.mark.asyncio
    async def test_missing_declared_output_is_warning(self, execution_service, fake_pool):
        """Missing declared outputs should only produce warnings"""
        fake_pool.outputs["tests:partial"] = {"present": 1}
        tool = make_tool("partial", "tests:partial", outputs=["present", "absent"])

        result = await execution_service.execute(tool, {})

        assert result.output == {"present": 1}
        assert len(result.warnings) == 1
        assert "absent" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_output_validation_disabled(self, execution_service, fake_pool):
        fake_pool.outputs["tests:partial"] = {}
        tool = make_tool("partial", "tests:partial", outputs=["absent"])

        result = await execution_service.execute(tool, {}, ExecutionOptions(validate_output=False))

        assert result.warnings == []


class TestFailures:
    """Test tool errors, timeouts and pool failures"""

    @pytest.mark.asyncio
    async def test_tool_error(self, execution_service):
        """Tool error should reject with EXECUTION_ERROR"""
        tool = make_tool("fail", "tests:fail")

        with pytest.raises(ToolExecutionError) as exc_info:
            await execution_service.execute(tool, {})

        error = exc_info.value
        assert error.code == "EXECUTION_ERROR"
        assert error.message == "boom"
        assert error.retryable is False
        progress = execution_service.get_progress(error.execution_id)
        assert progress.status == ExecutionStatus.ERROR
        assert progress.error == "boom"

    @pytest.mark.asyncio
    async def test_timeout(self, execution_service, fake_pool):
        """No terminal report within the timeout should reject with TIMEOUT"""
        tool = make_tool("hang", "tests:hang")

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await execution_service.execute(tool, {}, ExecutionOptions(timeout=0.05))

        error = exc_info.value
        assert error.code == "TIMEOUT"
        assert error.retryable is True
        assert execution_service.get_progress(error.execution_id).status == ExecutionStatus.ERROR
        assert fake_pool.contexts[0].cancelled is True

    @pytest.mark.asyncio
    async def test_context_exit_without_result(self, execution_service):
        """A context that goes away silently is an execution error"""
        tool = make_tool("exit", "tests:exit")

        with pytest.raises(ToolExecutionError) as exc_info:
            await execution_service.execute(tool, {})

        assert "without reporting a result" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_worker_unavailable(self, execution_service, fake_pool, echo_tool):
        """Pool failure should raise WORKER_UNAVAILABLE and end the record in error"""
        fake_pool.fail_acquire = True
        records = []
        execution_service.subscribe(records.append)

        with pytest.raises(WorkerUnavailableError) as exc_info:
            await execution_service.execute(echo_tool, {"text": "a"})

        assert exc_info.value.retryable is True
        assert records[-1].status == ExecutionStatus.ERROR

    @pytest.mark.asyncio
    async def test_timeout_covers_acquire(self, execution_service, fake_pool, echo_tool):
        """A slow context pool still counts against the timeout"""
        fake_pool.acquire_delay = 0.2

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await execution_service.execute(echo_tool, {"text": "a"}, ExecutionOptions(timeout=0.05))

        await wait_until(lambda: len(fake_pool.released) == 1)
        assert fake_pool.contexts[0].code_ref is None
        assert execution_service.get_progress(exc_info.value.execution_id).status == ExecutionStatus.ERROR


class TestCancel:
    """Test cancellation"""

    @pytest.mark.asyncio
    async def test_cancel_is_immediate_and_final(self, execution_service, fake_pool):
        """Cancelled progress must survive a late success report"""
        tool = make_tool("hang", "tests:hang")
        handle = await execution_service.start(tool, {})

        assert execution_service.cancel(handle.execution_id) is True
        assert execution_service.get_progress(handle.execution_id).status == ExecutionStatus.CANCELLED

        # Late report from the context
        fake_pool.contexts[0].emit(type="success", output={"late": True})
        await asyncio.sleep(0.05)

        assert execution_service.get_progress(handle.execution_id).status == ExecutionStatus.CANCELLED
        with pytest.raises(ExecutionCancelledError) as exc_info:
            await handle.wait()
        assert exc_info.value.code == "CANCELLED"
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_cancel_signals_context(self, execution_service, fake_pool):
        tool = make_tool("hang", "tests:hang")
        handle = await execution_service.start(tool, {})

        execution_service.cancel(handle.execution_id)
        await wait_until(lambda: fake_pool.active_count == 0)

        assert fake_pool.contexts[0].cancelled is True
        assert execution_service.list_active() == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_terminal(self, execution_service, echo_tool):
        """Should return False when there is nothing to cancel"""
        assert execution_service.cancel("missing") is False

        result = await execution_service.execute(echo_tool, {"text": "a"})
        assert execution_service.cancel(result.execution_id) is False
        assert execution_service.get_progress(result.execution_id).status == ExecutionStatus.COMPLETED


class TestProgressRecords:
    """Test record ownership, retention and release"""

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, execution_service, fake_pool):
        tool = make_tool("hang", "tests:hang")
        handle = await execution_service.start(tool, {})
        context = fake_pool.contexts[0]

        context.emit(type="progress", progress=90)
        await wait_until(lambda: execution_service.get_progress(handle.execution_id).progress == 90)
        context.emit(type="progress", progress=30)
        await asyncio.sleep(0.05)

        record = execution_service.get_progress(handle.execution_id)
        assert record.progress == 90
        assert record.status == ExecutionStatus.EXECUTING

        execution_service.cancel(handle.execution_id)

    @pytest.mark.asyncio
    async def test_get_progress_returns_copy(self, execution_service, echo_tool):
        result = await execution_service.execute(echo_tool, {"text": "a"})

        copy = execution_service.get_progress(result.execution_id)
        copy.status = ExecutionStatus.ERROR

        assert execution_service.get_progress(result.execution_id).status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_list_active(self, execution_service):
        tool = make_tool("hang", "tests:hang")
        handle = await execution_service.start(tool, {})

        active = execution_service.list_active()
        assert [p.execution_id for p in active] == [handle.execution_id]
        assert active[0].status == ExecutionStatus.LOADING

        execution_service.cancel(handle.execution_id)

    @pytest.mark.asyncio
    async def test_release(self, execution_service, echo_tool):
        result = await execution_service.execute(echo_tool, {"text": "a"})

        assert execution_service.release(result.execution_id) is True
        assert execution_service.get_progress(result.execution_id) is None
        assert execution_service.release(result.execution_id) is False

    @pytest.mark.asyncio
    async def test_retention_evicts_oldest(self, fake_pool, echo_tool):
        service = ExecutionService(fake_pool, Config(progress_retention=2))

        ids = [(await service.execute(echo_tool, {"text": str(i)})).execution_id for i in range(3)]

        assert service.get_progress(ids[0]) is None
        assert service.get_progress(ids[1]) is not None
        assert service.get_progress(ids[2]) is not None


class TestSubscribe:
    """Test the observer channel"""

    @pytest.mark.asyncio
    async def test_unsubscribe(self, execution_service, echo_tool):
        seen = []
        unsubscribe = execution_service.subscribe(seen.append)
        unsubscribe()

        await execution_service.execute(echo_tool, {"text": "a"})

        assert seen == []

    @pytest.mark.asyncio
    async def test_async_listener(self, execution_service, echo_tool):
        seen = []

        async def listener(progress):
            seen.append(progress.status)

        execution_service.subscribe(listener)
        await execution_service.execute(echo_tool, {"text": "a"})
        await wait_until(lambda: ExecutionStatus.COMPLETED in seen)

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self, execution_service, echo_tool):
        """A raising listener must not break the execution"""
        def broken(progress):
            raise RuntimeError("listener bug")

        execution_service.subscribe(broken)
        result = await execution_service.execute(echo_tool, {"text": "a"})

        assert result.output == {"text": "a"}


class TestDispose:

    @pytest.mark.asyncio
    async def test_dispose_cancels_in_flight(self, execution_service, fake_pool):
        handle = await execution_service.start(make_tool("hang", "tests:hang"), {})

        await execution_service.dispose()

        assert fake_pool.disposed is True
        assert execution_service.get_progress(handle.execution_id).status == ExecutionStatus.CANCELLED
        with pytest.raises(ExecutionCancelledError):
            await handle.wait()
