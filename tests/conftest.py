# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Fixtures and Utilities

Provides a scripted in-memory context pool so the execution service and the
workflow engine can be tested without spawning processes.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

import pytest

from toolvault.core.config import Config
from toolvault.core.errors import WorkerUnavailableError
from toolvault.execution.context import ContextPool, IsolatedContext
from toolvault.execution.models import ContextMessage, ContextMessageType
from toolvault.execution.service import ExecutionService
from toolvault.tools.models import ToolDescriptor, ToolOutput, ToolParameter
from toolvault.tools.registry import ToolRegistry
from toolvault.workflow.engine import WorkflowEngine


# ============================================================================
# Scripted Context Pool
# ============================================================================

class FakeContext(IsolatedContext):
    """
    In-memory context driven by the pool's script.

    Tests can push further messages with emit(), e.g. a late success after
    the execution was cancelled.
    """

    def __init__(self, execution_id: str, pool: "FakeContextPool"):
        super().__init__(execution_id)
        self.pool = pool
        self.code_ref: Optional[str] = None
        self.params: Optional[Dict[str, Any]] = None
        self.cancelled = False
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    async def start(self, code_ref: str, params: Dict) -> None:
        self.code_ref = code_ref
        self.params = params
        for message in self.pool.script(code_ref, params):
            self._queue.put_nowait(message)

    def emit(self, **fields: Any) -> None:
        self._queue.put_nowait(ContextMessage(execution_id=self.execution_id, **fields))

    def exit(self) -> None:
        """Simulate the context going away without a terminal message."""
        self._queue.put_nowait(None)

    async def messages(self):
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message
            if message.type != ContextMessageType.PROGRESS:
                return

    def cancel(self) -> None:
        self.cancelled = True

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(None)


class FakeContextPool(ContextPool):
    """
    Scripted pool. Behaviour is chosen by the function part of the code_ref:

    - echo:  progress 10/30/50/90, then success with the input as output
    - fail:  progress 10, then error "boom"
    - hang:  progress 10, then nothing (times out)
    - exit:  progress 10, then the context goes away
    - anything in ``outputs``: success with that output
    """

    def __init__(self):
        self.contexts: List[FakeContext] = []
        self.released: List[FakeContext] = []
        self.outputs: Dict[str, Any] = {}
        self.fail_acquire = False
        self.acquire_delay = 0.0
        self.disposed = False
        self._active: Set[FakeContext] = set()

    def script(self, code_ref: str, params: Dict) -> List[Optional[ContextMessage]]:
        behaviour = code_ref.partition(":")[2]
        progress = [ContextMessage(type="progress", progress=p) for p in (10, 30, 50, 90)]

        if code_ref in self.outputs:
            return progress + [ContextMessage(type="success", output=self.outputs[code_ref],
                                              execution_time_ms=1.0, tool_ref=code_ref)]
        if behaviour == "fail":
            return progress[:1] + [ContextMessage(type="error", error="boom", error_type="RuntimeError")]
        if behaviour == "hang":
            return progress[:1]
        if behaviour == "exit":
            return progress[:1] + [None]
        return progress + [ContextMessage(type="success", output=dict(params),
                                          execution_time_ms=1.0, tool_ref=code_ref)]

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def acquire(self, execution_id: str) -> IsolatedContext:
        if self.disposed or self.fail_acquire:
            raise WorkerUnavailableError("No context available", execution_id=execution_id)
        if self.acquire_delay:
            await asyncio.sleep(self.acquire_delay)
        context = FakeContext(execution_id, self)
        self.contexts.append(context)
        self._active.add(context)
        return context

    async def release(self, context: IsolatedContext) -> None:
        await context.close()
        self._active.discard(context)
        self.released.append(context)

    async def drain(self) -> None:
        return None

    async def dispose(self) -> None:
        self.disposed = True
        for context in list(self._active):
            await self.release(context)

    def attempts(self, code_ref: str) -> int:
        return sum(1 for c in self.contexts if c.code_ref == code_ref)


# ============================================================================
# Helpers
# ============================================================================

def make_tool(
    tool_id: str,
    code_ref: Optional[str] = None,
    inputs: Optional[List[ToolParameter]] = None,
    outputs: Optional[List[str]] = None
) -> ToolDescriptor:
    return ToolDescriptor(
        id=tool_id,
        name=tool_id.title(),
        code_ref=code_ref,
        inputs=inputs or [],
        outputs=[ToolOutput(name=name) for name in (outputs or [])]
    )


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(interval)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_config():
    """Fast config: short timeouts, no backoff delay"""
    return Config(
        default_timeout=2.0,
        step_timeout=2.0,
        max_retries=3,
        backoff_base=0.0,
        max_concurrent_workflows=3,
        log_level="DEBUG",
        log_format="text"
    )


@pytest.fixture
def fake_pool():
    return FakeContextPool()


@pytest.fixture
def execution_service(fake_pool, test_config):
    return ExecutionService(fake_pool, test_config)


@pytest.fixture
def tool_registry(fake_pool):
    """Registry of scripted tools"""
    fake_pool.outputs["tests:flag"] = {"flag": False, "count": 3}
    fake_pool.outputs["tests:data"] = {"a": {"b": 42}, "items": [1, 2, 3]}
    return ToolRegistry([
        make_tool("echo", "tests:echo"),
        make_tool("fail", "tests:fail"),
        make_tool("hang", "tests:hang"),
        make_tool("flag", "tests:flag"),
        make_tool("data", "tests:data"),
        make_tool("no-code"),
    ])


@pytest.fixture
def engine(execution_service, tool_registry, test_config):
    return WorkflowEngine(execution_service, tool_registry, test_config)
