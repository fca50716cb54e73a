# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Models

Pydantic models for multi-step workflows and the execution queue.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class WorkflowStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


# States from which execute_workflow may start a (re-)run
RUNNABLE_STATUSES = frozenset({
    WorkflowStatus.IDLE,
    WorkflowStatus.COMPLETED,
    WorkflowStatus.FAILED,
    WorkflowStatus.CANCELLED,
})


class QueueEntryStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


PRIORITY_LEVELS = {"low": 1, "normal": 2, "high": 3}


class ExecutionStep(BaseModel):
    """One tool invocation within a workflow"""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None  # generated as step_<index> when absent
    tool_id: str = Field(alias="toolId")
    inputs: Dict[str, Any] = {}  # literals or ${stepId.path} references
    depends_on: List[str] = Field(default=[], alias="dependsOn")
    condition: Optional[str] = None
    max_retries: Optional[int] = Field(default=None, alias="maxRetries")
    timeout: Optional[float] = None  # seconds
    name: Optional[str] = None
    description: Optional[str] = None
    tracking_id: Optional[str] = None  # assigned by the engine, new on every run


class StepError(BaseModel):
    code: str
    message: str
    retryable: bool = False
    execution_id: Optional[str] = None
    details: Dict[str, Any] = {}


class ExecutionStepResult(BaseModel):
    """Terminal outcome of one step in one run"""
    model_config = ConfigDict(frozen=True)

    step_id: str
    tracking_id: str
    step_index: int
    tool_id: str
    status: StepStatus
    result: Any = None  # present iff completed
    error: Optional[StepError] = None  # present iff failed
    started_at: datetime
    ended_at: datetime
    duration_ms: float
    retry_count: int = 0
    execution_id: Optional[str] = None


class ExecutionWorkflow(BaseModel):
    """A workflow and the state of its latest run"""
    id: str
    name: str
    description: Optional[str] = None
    steps: List[ExecutionStep]
    status: WorkflowStatus = WorkflowStatus.IDLE
    current_step_index: int = 0
    results: List[ExecutionStepResult] = []
    run_count: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    metadata: Dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime
    active_execution_id: Optional[str] = None

    def completed_results(self) -> Dict[str, ExecutionStepResult]:
        """Completed results by step id"""
        return {r.step_id: r for r in self.results if r.status == StepStatus.COMPLETED}


class WorkflowExecutionOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    continue_on_error: bool = Field(default=False, alias="continueOnError")
    priority: Union[int, str] = PRIORITY_LEVELS["normal"]

    @field_validator("priority", mode="before")
    @classmethod
    def _priority_level(cls, value: Union[int, str]) -> int:
        if isinstance(value, bool):
            raise ValueError("priority must be low, normal, high or an integer")
        if isinstance(value, int):
            return value
        level = PRIORITY_LEVELS.get(str(value).lower())
        if level is None:
            raise ValueError(f"Unknown priority: {value}")
        return level


class QueueEntry(BaseModel):
    id: str
    workflow_id: str
    priority: int
    enqueued_at: datetime
    sequence: int  # FIFO tiebreak
    status: QueueEntryStatus = QueueEntryStatus.QUEUED
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class QueueStatus(BaseModel):
    queued: List[QueueEntry]
    running: List[QueueEntry]
    total: int
    max_concurrent: int


class WorkflowEvent(BaseModel):
    """Notification sent to workflow subscribers"""
    type: str  # workflow_queued, workflow_started, step_recorded, workflow_finished, ...
    workflow_id: str
    status: WorkflowStatus
    timestamp: datetime
    step: Optional[ExecutionStepResult] = None
    data: Dict[str, Any] = {}
