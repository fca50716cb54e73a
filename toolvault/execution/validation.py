# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Input and output validation against a tool descriptor.

Input problems are fatal and raised before any context is spawned.
Output problems are advisory and returned as warning strings.
"""

import math
from typing import Any, List

from toolvault.core.errors import ValidationError
from toolvault.tools.models import ToolDescriptor


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and math.isnan(value))


def _is_integer(value: Any) -> bool:
    if not _is_number(value):
        return False
    return isinstance(value, int) or (math.isfinite(value) and value.is_integer())


_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": _is_number,
    "integer": _is_integer,
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, (list, tuple)),
    "object": lambda v: isinstance(v, dict),
    "geojson": lambda v: isinstance(v, dict),
}


def validate_code_ref(descriptor: ToolDescriptor) -> None:
    """A descriptor is only executable with a 'module:function' code_ref."""
    code_ref = descriptor.code_ref
    if not code_ref:
        raise ValidationError(
            f"Tool {descriptor.id} has no executable code reference",
            field="code_ref"
        )
    module_name, sep, func_name = code_ref.partition(":")
    if not sep or not module_name.strip() or not func_name.strip():
        raise ValidationError(
            f"Invalid code reference for tool {descriptor.id}: {code_ref} "
            f"(expected 'package.module:function')",
            field="code_ref",
            value=code_ref
        )


def ensure_mapping(descriptor: ToolDescriptor, params: Any) -> None:
    if not isinstance(params, dict):
        raise ValidationError(
            f"Input for tool {descriptor.id} must be a mapping, got {type(params).__name__}",
            field="input"
        )


def validate_input(descriptor: ToolDescriptor, params: Any) -> None:
    """
    Check an input map against the descriptor's declared parameters.

    Raises:
        ValidationError: naming the first offending field
    """
    ensure_mapping(descriptor, params)

    for name in descriptor.required_inputs:
        if params.get(name) is None:
            raise ValidationError(f"Missing required input: {name}", field=name)

    for param in descriptor.inputs:
        if param.name not in params or params[param.name] is None:
            continue
        check = _TYPE_CHECKS.get(param.type.lower())
        if check is None:
            continue
        value = params[param.name]
        if not check(value):
            raise ValidationError(
                f"Input {param.name} must be of type {param.type}, got {type(value).__name__}",
                field=param.name,
                value=value
            )


def check_output(descriptor: ToolDescriptor, output: Any) -> List[str]:
    """Return a warning for each declared output missing from a dict output."""
    if not isinstance(output, dict):
        return []
    return [
        f"Declared output missing from result: {declared.name}"
        for declared in descriptor.outputs
        if declared.name not in output
    ]
