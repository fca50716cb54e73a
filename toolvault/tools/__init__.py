# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Tool descriptors, the tool registry and the built-in tools."""

from toolvault.tools.models import ToolDescriptor, ToolOutput, ToolParameter
from toolvault.tools.registry import ToolRegistry
from toolvault.tools.builtin import builtin_descriptors

__all__ = [
    "ToolDescriptor",
    "ToolOutput",
    "ToolParameter",
    "ToolRegistry",
    "builtin_descriptors",
]
