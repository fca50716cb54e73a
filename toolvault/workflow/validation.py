# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Validation

Step list checks and optional dependency ordering (Kahn's algorithm).
"""

import heapq
from typing import Dict, List

from toolvault.core.errors import ValidationError
from toolvault.workflow.conditions import compile_condition
from toolvault.workflow.models import ExecutionStep


def validate_steps(steps: List[ExecutionStep]) -> None:
    """
    Validate a step list.

    Raises ValidationError if:
    - there are no steps
    - step ids are not unique
    - a condition doesn't compile (ConditionError)
    """
    # 1. Empty workflow check
    if len(steps) == 0:
        raise ValidationError("Workflow must have at least one step", field="steps")

    # 2. Duplicate step IDs
    step_ids = [step.id for step in steps]
    if len(step_ids) != len(set(step_ids)):
        duplicates = sorted({sid for sid in step_ids if step_ids.count(sid) > 1})
        raise ValidationError(f"Duplicate step IDs found: {duplicates}", field="steps")

    # 3. Conditions must compile
    for step in steps:
        if step.condition is not None:
            compile_condition(step.condition)


def topological_sort(steps: List[ExecutionStep]) -> List[ExecutionStep]:
    """
    Order steps so every step comes after its dependencies.

    Stable: among steps that are ready at the same time, declaration order
    wins, so an already well-ordered list is returned unchanged.

    Raises ValidationError on unknown dependencies or cycles.
    """
    index_of: Dict[str, int] = {step.id: i for i, step in enumerate(steps)}
    dependents: Dict[str, List[str]] = {step.id: [] for step in steps}
    in_degree: Dict[str, int] = {step.id: 0 for step in steps}

    for step in steps:
        for dep in set(step.depends_on):
            if dep not in index_of:
                raise ValidationError(
                    f"Step {step.id} depends on unknown step: {dep}",
                    field="depends_on"
                )
            if dep == step.id:
                raise ValidationError(f"Step {step.id} depends on itself", field="depends_on")
            dependents[dep].append(step.id)
            in_degree[step.id] += 1

    # Ready steps keyed by declaration index
    ready = [index_of[sid] for sid, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    ordered: List[ExecutionStep] = []
    while ready:
        step = steps[heapq.heappop(ready)]
        ordered.append(step)
        for dependent in dependents[step.id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, index_of[dependent])

    if len(ordered) != len(steps):
        cyclic = sorted(sid for sid, degree in in_degree.items() if degree > 0)
        raise ValidationError(f"Dependency cycle detected among steps: {cyclic}", field="depends_on")

    return ordered
