# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Models

Pydantic models for single tool executions: request, progress, result and
the messages exchanged with an isolated context.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from toolvault.tools.models import ToolDescriptor


class ExecutionStatus(str, Enum):
    INITIALIZING = "initializing"
    LOADING = "loading"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.ERROR,
    ExecutionStatus.CANCELLED,
})

# Allowed status transitions; terminal states have none
VALID_TRANSITIONS = {
    ExecutionStatus.INITIALIZING: {
        ExecutionStatus.LOADING,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.ERROR,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.LOADING: {
        ExecutionStatus.EXECUTING,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.ERROR,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.EXECUTING: {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.ERROR,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.ERROR: set(),
    ExecutionStatus.CANCELLED: set(),
}


class ExecutionOptions(BaseModel):
    """Per-request execution options. None means "use the configured default"."""
    timeout: Optional[float] = None  # seconds
    validate_input: Optional[bool] = None
    validate_output: Optional[bool] = None


class ExecutionRequest(BaseModel):
    """Immutable once submitted"""
    model_config = ConfigDict(frozen=True)

    execution_id: str
    descriptor: ToolDescriptor
    input: Dict[str, Any]
    options: ExecutionOptions = Field(default_factory=ExecutionOptions)


class ExecutionProgress(BaseModel):
    """Live state of one execution, owned by the execution service"""
    execution_id: str
    tool_id: str
    progress: int = 0  # 0-100
    status: ExecutionStatus = ExecutionStatus.INITIALIZING
    started_at: datetime
    ended_at: Optional[datetime] = None
    error: Optional[str] = None


class ExecutionResult(BaseModel):
    """Outcome of a completed execution"""
    execution_id: str
    tool_id: str
    output: Any = None
    execution_time_ms: float = 0.0  # measured inside the context
    elapsed_ms: float = 0.0  # wall clock in the orchestrator
    started_at: datetime
    ended_at: datetime
    warnings: List[str] = []


class ContextMessageType(str, Enum):
    PROGRESS = "progress"
    SUCCESS = "success"
    ERROR = "error"


class ContextMessage(BaseModel):
    """One message reported by an isolated context"""
    type: ContextMessageType
    execution_id: Optional[str] = None
    progress: Optional[int] = None
    output: Any = None
    execution_time_ms: Optional[float] = None
    tool_ref: Optional[str] = None
    timestamp: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
