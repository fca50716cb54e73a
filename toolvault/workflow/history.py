# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow History Store - disk persistence of workflow runs.

Layout, one directory per workflow:

    <history_dir>/<workflow_id>/workflow.json    latest snapshot
    <history_dir>/<workflow_id>/events.jsonl     append-only run events
"""

import asyncio
import json
import aiofiles
from pathlib import Path
from typing import Any, Dict, List
from datetime import datetime, timezone

from toolvault.core.errors import NotFoundError
from toolvault.core.logging import get_service_logger
from toolvault.workflow.models import ExecutionWorkflow

logger = get_service_logger("workflow-history")


class WorkflowHistoryStore:
    """
    Persists workflow snapshots and run events to disk.

    Responsibilities:
    - Save the latest workflow snapshot
    - Append run events (run started, step recorded, run finished)
    - Read a workflow's history back
    """

    def __init__(self, history_dir: Path):
        """
        Initialize WorkflowHistoryStore.

        Args:
            history_dir: Root directory for workflow history
        """
        self.history_dir = Path(history_dir)
        self.history_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"WorkflowHistoryStore initialized with directory: {self.history_dir}")

    def _workflow_dir(self, workflow_id: str) -> Path:
        return self.history_dir / workflow_id

    async def save_snapshot(self, workflow: ExecutionWorkflow) -> None:
        """Overwrite workflow.json with the current state of the workflow."""
        workflow_dir = self._workflow_dir(workflow.id)
        await asyncio.to_thread(workflow_dir.mkdir, parents=True, exist_ok=True)

        async with aiofiles.open(workflow_dir / "workflow.json", "w") as f:
            await f.write(workflow.model_dump_json(indent=2))

    async def append_event(self, workflow_id: str, event: Dict[str, Any]) -> None:
        """Append one event to events.jsonl."""
        workflow_dir = self._workflow_dir(workflow_id)
        await asyncio.to_thread(workflow_dir.mkdir, parents=True, exist_ok=True)

        event_with_timestamp = {
            **event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        async with aiofiles.open(workflow_dir / "events.jsonl", "a") as f:
            await f.write(json.dumps(event_with_timestamp, default=str) + "\n")

        logger.debug(f"Logged event for workflow {workflow_id}: {event.get('type', 'unknown')}")

    async def get_history(self, workflow_id: str) -> Dict[str, Any]:
        """
        Read a workflow's snapshot and events.

        Returns:
            Dict with "workflow" (snapshot or None) and "events"

        Raises:
            NotFoundError: If nothing was recorded for the workflow
        """
        workflow_dir = self._workflow_dir(workflow_id)
        exists = await asyncio.to_thread(workflow_dir.exists)
        if not exists:
            raise NotFoundError("Workflow history", workflow_id)

        snapshot = None
        snapshot_file = workflow_dir / "workflow.json"
        if await asyncio.to_thread(snapshot_file.exists):
            async with aiofiles.open(snapshot_file, "r") as f:
                snapshot = json.loads(await f.read())

        events: List[Dict[str, Any]] = []
        events_file = workflow_dir / "events.jsonl"
        if await asyncio.to_thread(events_file.exists):
            async with aiofiles.open(events_file, "r") as f:
                content = await f.read()
                for line in content.splitlines():
                    if line.strip():
                        events.append(json.loads(line))

        return {"workflow_id": workflow_id, "workflow": snapshot, "events": events}

    async def list_workflows(self) -> List[str]:
        """Ids of workflows with recorded history."""
        entries = await asyncio.to_thread(lambda: sorted(self.history_dir.iterdir()))
        return [entry.name for entry in entries if entry.is_dir()]
