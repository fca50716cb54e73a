# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities shared by the execution service and the workflow engine.

This package contains:
- config: Configuration management
- errors: Custom exceptions
- logging: Structured logging
"""

from toolvault.core.config import get_config, Config
from toolvault.core.errors import ToolVaultError, NotFoundError, ValidationError
from toolvault.core.logging import get_logger

__all__ = [
    "get_config",
    "Config",
    "ToolVaultError",
    "NotFoundError",
    "ValidationError",
    "get_logger",
]
