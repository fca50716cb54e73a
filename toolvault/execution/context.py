# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Isolated execution contexts and the pool that owns them.

The execution service never runs tool code itself. It asks an injected
ContextPool for a context, hands it a code reference and an input map, and
reads ContextMessages back until a terminal one arrives.
"""

import asyncio
import json
import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from toolvault.core.config import Config, get_config
from toolvault.core.errors import WorkerUnavailableError
from toolvault.core.logging import get_service_logger
from toolvault.execution.models import ContextMessage, ContextMessageType

logger = get_service_logger("context-pool")

WORKER_MODULE = "toolvault.execution.worker"

# Line limit for the message channel; a success line carries the whole output
STREAM_LIMIT = 64 * 1024 * 1024

_STDERR_CHUNK = 64 * 1024

# Directory holding the toolvault package, always importable by workers
_PACKAGE_ROOT = str(Path(__file__).resolve().parents[2])


class IsolatedContext(ABC):
    """One sandboxed unit running a single tool invocation."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id

    @abstractmethod
    async def start(self, code_ref: str, params: Dict) -> None:
        """Dispatch the request. Raises WorkerUnavailableError if it can't be delivered."""

    @abstractmethod
    def messages(self) -> AsyncIterator[ContextMessage]:
        """Messages from the context, ending after a terminal one or on exit."""

    @abstractmethod
    def cancel(self) -> None:
        """Tell the context to stop. Returns without waiting."""

    @abstractmethod
    async def close(self) -> None:
        """Tear the context down and wait for it to go away."""

    async def wait_closed(self) -> None:
        await self.close()


class ContextPool(ABC):
    """Owns the lifecycle of isolated contexts."""

    @abstractmethod
    async def acquire(self, execution_id: str) -> IsolatedContext:
        """Provide a fresh context. Raises WorkerUnavailableError."""

    @abstractmethod
    async def release(self, context: IsolatedContext) -> None:
        """Tear down a context obtained from acquire()."""

    @property
    @abstractmethod
    def active_count(self) -> int:
        ...

    @abstractmethod
    async def drain(self) -> None:
        """Wait until every acquired context has finished."""

    @abstractmethod
    async def dispose(self) -> None:
        """Terminate all contexts and refuse further acquisitions."""


# ============================================================================
# SUBPROCESS CONTEXTS
# ============================================================================

class SubprocessContext(IsolatedContext):
    """A fresh Python interpreter running the worker module."""

    def __init__(self, execution_id: str, python: str, env: Dict[str, str]):
        super().__init__(execution_id)
        self._python = python
        self._env = env
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    async def spawn(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                self._python, "-m", WORKER_MODULE,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                limit=STREAM_LIMIT
            )
        except OSError as e:
            raise WorkerUnavailableError(
                f"Failed to start execution context: {e}",
                execution_id=self.execution_id
            )
        self._stderr_task = asyncio.create_task(self._forward_stderr())
        logger.debug(f"Spawned context pid={self._process.pid} for {self.execution_id}")

    async def start(self, code_ref: str, params: Dict) -> None:
        if self._process is None:
            raise WorkerUnavailableError("Context was never spawned", execution_id=self.execution_id)

        request = {"execution_id": self.execution_id, "code_ref": code_ref, "input": params}
        try:
            self._process.stdin.write((json.dumps(request, default=str) + "\n").encode())
            await self._process.stdin.drain()
            self._process.stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise WorkerUnavailableError(
                f"Execution context rejected the request: {e}",
                execution_id=self.execution_id
            )

    async def messages(self) -> AsyncIterator[ContextMessage]:
        if self._process is None:
            return
        async for raw in self._process.stdout:
            line = raw.decode(errors="replace").strip()
            if not line:
                continue
            try:
                message = ContextMessage.model_validate(json.loads(line))
            except (json.JSONDecodeError, PydanticValidationError):
                logger.warning(f"Discarding malformed message from {self.execution_id}: {line[:200]}")
                continue
            yield message
            if message.type != ContextMessageType.PROGRESS:
                return

    def cancel(self) -> None:
        if self._process and self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass

    async def close(self) -> None:
        self.cancel()
        if self._process is not None:
            await self._process.wait()
        if self._stderr_task is not None:
            await asyncio.gather(self._stderr_task, return_exceptions=True)

    async def wait_closed(self) -> None:
        if self._process is not None:
            await self._process.wait()

    async def _forward_stderr(self) -> None:
        # Chunked reads: tool output here has no line length bound
        while True:
            chunk = await self._process.stderr.read(_STDERR_CHUNK)
            if not chunk:
                return
            for line in chunk.decode(errors="replace").splitlines():
                if line.strip():
                    logger.debug(f"[{self.execution_id}] {line}")


class SubprocessContextPool(ContextPool):
    """
    Spawns one worker process per execution.

    Args:
        python: Interpreter used for workers (defaults to the current one)
        python_path: Extra import roots for tool modules
        max_contexts: Cap on simultaneously live contexts, None for no cap
    """

    def __init__(
        self,
        python: Optional[str] = None,
        python_path: Optional[List[str]] = None,
        max_contexts: Optional[int] = None
    ):
        self.python = python or sys.executable
        self.python_path = list(python_path or [])
        self.max_contexts = max_contexts
        self._contexts: Set[SubprocessContext] = set()
        self._disposed = False

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "SubprocessContextPool":
        """Pool using the execution.python_path and execution.max_contexts settings."""
        config = config or get_config()
        return cls(python_path=config.python_path, max_contexts=config.max_contexts)

    @property
    def active_count(self) -> int:
        return len(self._contexts)

    def _worker_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        paths = self.python_path + [_PACKAGE_ROOT]
        if env.get("PYTHONPATH"):
            paths.append(env["PYTHONPATH"])
        env["PYTHONPATH"] = os.pathsep.join(paths)
        env["PYTHONUNBUFFERED"] = "1"
        return env

    async def acquire(self, execution_id: str) -> IsolatedContext:
        if self._disposed:
            raise WorkerUnavailableError("Context pool has been disposed", execution_id=execution_id)
        if self.max_contexts is not None and len(self._contexts) >= self.max_contexts:
            raise WorkerUnavailableError(
                f"Context pool exhausted ({self.max_contexts} contexts in use)",
                execution_id=execution_id
            )

        context = SubprocessContext(execution_id, self.python, self._worker_env())
        self._contexts.add(context)
        try:
            await context.spawn()
        except WorkerUnavailableError:
            self._contexts.discard(context)
            raise
        return context

    async def release(self, context: IsolatedContext) -> None:
        try:
            await context.close()
        finally:
            self._contexts.discard(context)

    async def drain(self) -> None:
        await asyncio.gather(
            *(context.wait_closed() for context in list(self._contexts)),
            return_exceptions=True
        )

    async def dispose(self) -> None:
        self._disposed = True
        contexts = list(self._contexts)
        for context in contexts:
            context.cancel()
        await asyncio.gather(*(self.release(c) for c in contexts), return_exceptions=True)
        logger.info(f"Context pool disposed ({len(contexts)} contexts terminated)")
