# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Step input references.

A reference is ``${stepId}`` or ``${stepId.path.to.value}``. Only completed
step outputs are visible, so ``outputs`` maps step id to the output of a
completed step. Path segments index dicts by key and lists by position.
"""

import json
import re
from typing import Any, Dict, List

from toolvault.core.errors import ReferenceResolutionError

REFERENCE_PATTERN = re.compile(r"\$\{([^}]+)\}")

_MISSING = object()


def find_references(text: str) -> List[str]:
    """Reference bodies (without ``${}``) in order of appearance."""
    return REFERENCE_PATTERN.findall(text)


def is_full_reference(value: Any) -> bool:
    return (
        isinstance(value, str)
        and value.startswith("${")
        and value.endswith("}")
        and value.count("${") == 1
    )


def get_path(obj: Any, path: List[str]) -> Any:
    """Walk a key path. Returns _MISSING when any segment is absent."""
    current = obj
    for part in path:
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            if not -len(current) <= index < len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def resolve_reference(reference: str, outputs: Dict[str, Any]) -> Any:
    """
    Resolve ``stepId.path`` against completed step outputs.

    Raises:
        ReferenceResolutionError: Step not completed or path not found
    """
    step_id, *path = [part.strip() for part in reference.strip().split(".")]
    if step_id not in outputs:
        raise ReferenceResolutionError(f"${{{reference}}}", f"step {step_id} not found or not completed")

    value = get_path(outputs[step_id], path)
    if value is _MISSING:
        raise ReferenceResolutionError(f"${{{reference}}}", "path not found")
    return value


def resolve_value(value: Any, outputs: Dict[str, Any]) -> Any:
    """Resolve references in a single input value, recursing into dicts and lists"""
    if isinstance(value, dict):
        return {key: resolve_value(item, outputs) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, outputs) for item in value]
    if not isinstance(value, str):
        return value

    # Single reference: raw value, type preserved
    if is_full_reference(value):
        return resolve_reference(value[2:-1], outputs)

    # Embedded references: "text ${ref} more text"
    if "${" in value:
        def replace_ref(match):
            resolved = resolve_reference(match.group(1), outputs)
            return resolved if isinstance(resolved, str) else json.dumps(resolved, default=str)

        return REFERENCE_PATTERN.sub(replace_ref, value)

    return value


def resolve_inputs(inputs: Dict[str, Any], outputs: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve every input of a step"""
    return {key: resolve_value(value, outputs) for key, value in inputs.items()}
