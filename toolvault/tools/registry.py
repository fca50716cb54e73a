# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tool Registry - in-memory catalog of tool descriptors.

The workflow engine looks tools up here by id. Catalog files are YAML:

    tools:
      - id: word-count
        name: Word Count
        code_ref: toolvault.tools.builtin:word_count
        inputs:
          - {name: text, type: string, required: true}
        outputs:
          - {name: words}
"""

import yaml
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from toolvault.core.errors import ConflictError, NotFoundError, ValidationError
from toolvault.core.logging import get_service_logger
from toolvault.tools.models import ToolDescriptor

logger = get_service_logger("tool-registry")


class ToolRegistry:
    """
    Maps tool ids to descriptors.

    Responsibilities:
    - Register / unregister descriptors
    - Resolve a tool id for the workflow engine
    - Load catalog files
    """

    def __init__(self, descriptors: Optional[Iterable[ToolDescriptor]] = None):
        self._tools: Dict[str, ToolDescriptor] = {}
        for descriptor in descriptors or []:
            self.register(descriptor)

    def register(self, descriptor: ToolDescriptor) -> None:
        """Register a descriptor. Raises ConflictError on duplicate ids."""
        if descriptor.id in self._tools:
            raise ConflictError(f"Tool already registered: {descriptor.id}", resource="Tool")
        self._tools[descriptor.id] = descriptor
        logger.debug(f"Registered tool {descriptor.id}")

    def unregister(self, tool_id: str) -> bool:
        return self._tools.pop(tool_id, None) is not None

    def get(self, tool_id: str) -> ToolDescriptor:
        """Get descriptor by id. Raises NotFoundError."""
        descriptor = self._tools.get(tool_id)
        if descriptor is None:
            raise NotFoundError("Tool", tool_id)
        return descriptor

    def find(self, tool_id: str) -> Optional[ToolDescriptor]:
        return self._tools.get(tool_id)

    def list(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @classmethod
    def from_yaml(cls, path: Path) -> "ToolRegistry":
        """
        Build a registry from a YAML catalog file.

        Raises:
            NotFoundError: If the file doesn't exist
            ValidationError: If an entry is not a valid descriptor
        """
        path = Path(path)
        if not path.exists():
            raise NotFoundError("Tool catalog", str(path))

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        registry = cls()
        for entry in data.get("tools", []):
            try:
                descriptor = ToolDescriptor.model_validate(entry)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid tool entry in {path.name}: {e.errors()[0]['msg']}",
                    field="tools",
                    value=entry
                )
            registry.register(descriptor)

        logger.info(f"Loaded {len(registry)} tools from {path}")
        return registry
