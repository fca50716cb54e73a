# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Multi-step workflows.

Chains tool executions into dependency-ordered, retryable, resumable
workflows admitted through a priority queue.
"""

from toolvault.workflow.engine import WorkflowEngine
from toolvault.workflow.history import WorkflowHistoryStore
from toolvault.workflow.models import (
    ExecutionStep,
    ExecutionStepResult,
    ExecutionWorkflow,
    QueueStatus,
    StepStatus,
    WorkflowExecutionOptions,
    WorkflowStatus,
)
from toolvault.workflow.queue import ExecutionQueue

__all__ = [
    "WorkflowEngine",
    "WorkflowHistoryStore",
    "ExecutionStep",
    "ExecutionStepResult",
    "ExecutionWorkflow",
    "QueueStatus",
    "StepStatus",
    "WorkflowExecutionOptions",
    "WorkflowStatus",
    "ExecutionQueue",
]
