# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Isolated execution worker.

Run as ``python -m toolvault.execution.worker``. Reads one JSON request
from stdin:

    {"execution_id": "...", "code_ref": "package.module:function", "input": {...}}

and writes JSON lines to stdout:

    {"type": "progress", "progress": 10}   started
    {"type": "progress", "progress": 30}   module loaded
    {"type": "progress", "progress": 50}   callable resolved
    {"type": "progress", "progress": 90}   tool returned
    {"type": "success", "output": ..., "execution_time_ms": ..., "tool_ref": ..., "timestamp": ...}
    {"type": "error", "error": "...", "error_type": "..."}

Anything the tool prints goes to stderr so it cannot corrupt the channel.
"""

import asyncio
import importlib
import inspect
import json
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, TextIO


def _open_channel() -> TextIO:
    """Keep the real stdout for messages and point fd 1 at stderr."""
    channel = os.fdopen(os.dup(sys.stdout.fileno()), "w", buffering=1)
    sys.stdout.flush()
    os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
    sys.stdout = sys.stderr
    return channel


def _emit(channel: TextIO, execution_id: str, message_type: str, **fields: Any) -> None:
    message = {"type": message_type, "execution_id": execution_id, **fields}
    channel.write(json.dumps(message, default=str) + "\n")
    channel.flush()


def resolve_callable(code_ref: str, on_module_loaded: Callable[[], None] = None) -> Callable:
    """Import ``package.module:function`` and return the function."""
    module_name, _, func_name = code_ref.partition(":")
    module = importlib.import_module(module_name)
    if on_module_loaded:
        on_module_loaded()

    target: Any = module
    for attr in func_name.split("."):
        target = getattr(target, attr)
    if not callable(target):
        raise TypeError(f"{code_ref} is not callable")
    return target


def run_request(request: Dict[str, Any], channel: TextIO) -> None:
    execution_id = request.get("execution_id", "")
    code_ref = request.get("code_ref", "")
    params = request.get("input") or {}

    def progress(value: int) -> None:
        _emit(channel, execution_id, "progress", progress=value)

    progress(10)
    start = time.perf_counter()
    try:
        func = resolve_callable(code_ref, on_module_loaded=lambda: progress(30))
        progress(50)

        result = func(params)
        if inspect.isawaitable(result):
            result = asyncio.run(_await(result))
        progress(90)
    except Exception as e:
        _emit(channel, execution_id, "error", error=str(e) or e.__class__.__name__,
              error_type=e.__class__.__name__)
        return

    try:
        _emit(
            channel,
            execution_id,
            "success",
            output=result,
            execution_time_ms=(time.perf_counter() - start) * 1000,
            tool_ref=code_ref,
            timestamp=datetime.now(timezone.utc).isoformat()
        )
    except (TypeError, ValueError) as e:
        _emit(channel, execution_id, "error", error=f"Tool output is not serializable: {e}",
              error_type=e.__class__.__name__)


async def _await(awaitable):
    return await awaitable


def main() -> int:
    channel = _open_channel()
    line = sys.stdin.readline()
    try:
        request = json.loads(line)
    except json.JSONDecodeError as e:
        _emit(channel, "", "error", error=f"Invalid request: {e}", error_type="ValueError")
        return 1

    run_request(request, channel)
    channel.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
