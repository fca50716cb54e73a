# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Queue

Admission control for workflows. Higher priority first, FIFO within a
priority, at most ``max_concurrent`` running. Non-preemptive: a running
workflow is never displaced.

The queue holds no locks. The engine calls it only from synchronous code
between await points.
"""

import heapq
import itertools
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Tuple

from toolvault.core.errors import ConflictError
from toolvault.workflow.models import QueueEntry, QueueEntryStatus, QueueStatus


class ExecutionQueue:
    """Priority queue of workflow runs with a concurrency cap."""

    def __init__(self, max_concurrent: int = 3, history_limit: int = 100):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._heap: List[Tuple[int, int, str]] = []  # (-priority, sequence, entry id)
        self._queued: Dict[str, QueueEntry] = {}
        self._running: Dict[str, QueueEntry] = {}
        self._by_workflow: Dict[str, str] = {}  # workflow id -> active entry id
        self._history: Deque[QueueEntry] = deque(maxlen=max(history_limit, 0))
        self._sequence = itertools.count()

    def enqueue(self, workflow_id: str, priority: int = 2) -> QueueEntry:
        """
        Add a workflow run.

        Raises ConflictError if the workflow already has a queued or running entry.
        """
        if workflow_id in self._by_workflow:
            raise ConflictError(f"Workflow already queued or running: {workflow_id}", resource="QueueEntry")

        entry = QueueEntry(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            priority=priority,
            enqueued_at=datetime.now(timezone.utc),
            sequence=next(self._sequence)
        )
        self._queued[entry.id] = entry
        self._by_workflow[workflow_id] = entry.id
        heapq.heappush(self._heap, (-priority, entry.sequence, entry.id))
        return entry

    def admit_next(self) -> Optional[QueueEntry]:
        """Move the next queued entry to running if there is a free slot."""
        if len(self._running) >= self.max_concurrent:
            return None

        while self._heap:
            _, _, entry_id = heapq.heappop(self._heap)
            entry = self._queued.pop(entry_id, None)
            if entry is None:
                continue  # cancelled or removed while queued
            entry.status = QueueEntryStatus.RUNNING
            entry.started_at = datetime.now(timezone.utc)
            self._running[entry.id] = entry
            return entry
        return None

    def finish(self, workflow_id: str, status: QueueEntryStatus) -> Optional[QueueEntry]:
        """Move a running entry to history with a terminal status."""
        entry_id = self._by_workflow.get(workflow_id)
        entry = self._running.pop(entry_id, None) if entry_id else None
        if entry is None:
            return None
        del self._by_workflow[workflow_id]
        self._retire(entry, status)
        return entry

    def cancel(self, workflow_id: str) -> bool:
        """Cancel a queued (not yet running) entry."""
        entry_id = self._by_workflow.get(workflow_id)
        entry = self._queued.pop(entry_id, None) if entry_id else None
        if entry is None:
            return False
        del self._by_workflow[workflow_id]
        self._retire(entry, QueueEntryStatus.CANCELLED)
        return True

    def remove(self, workflow_id: str) -> bool:
        """Drop the workflow's active entry without recording it in history."""
        entry_id = self._by_workflow.pop(workflow_id, None)
        if entry_id is None:
            return False
        self._queued.pop(entry_id, None)
        self._running.pop(entry_id, None)
        return True

    def entry_for(self, workflow_id: str) -> Optional[QueueEntry]:
        entry_id = self._by_workflow.get(workflow_id)
        if entry_id is None:
            return None
        return self._queued.get(entry_id) or self._running.get(entry_id)

    def is_queued(self, workflow_id: str) -> bool:
        return self._by_workflow.get(workflow_id) in self._queued

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def queued_count(self) -> int:
        return len(self._queued)

    def status(self) -> QueueStatus:
        queued = sorted(self._queued.values(), key=lambda e: (-e.priority, e.sequence))
        return QueueStatus(
            queued=[e.model_copy() for e in queued],
            running=[e.model_copy() for e in self._running.values()],
            total=len(self._queued) + len(self._running) + len(self._history),
            max_concurrent=self.max_concurrent
        )

    def history(self) -> List[QueueEntry]:
        return [e.model_copy() for e in self._history]

    def _retire(self, entry: QueueEntry, status: QueueEntryStatus) -> None:
        entry.status = status
        entry.ended_at = datetime.now(timezone.utc)
        self._history.append(entry)
