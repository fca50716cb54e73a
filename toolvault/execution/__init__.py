# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Single tool executions.

This package contains:
- models: Request, progress, result and context message models
- validation: Input/output checks against a tool descriptor
- context: Isolated execution contexts and the owning pool
- worker: Entry point run inside each subprocess context
- service: The execution service
"""

from toolvault.execution.context import ContextPool, IsolatedContext, SubprocessContextPool
from toolvault.execution.models import (
    ExecutionOptions,
    ExecutionProgress,
    ExecutionResult,
    ExecutionStatus,
)
from toolvault.execution.service import ExecutionHandle, ExecutionService

__all__ = [
    "ContextPool",
    "IsolatedContext",
    "SubprocessContextPool",
    "ExecutionOptions",
    "ExecutionProgress",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionHandle",
    "ExecutionService",
]
