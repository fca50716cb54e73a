# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
ToolVault Configuration - Single source of truth.
YAML for settings, env vars only for the config path and log level.
"""

import logging
import os
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/toolvault.yaml"


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable orchestrator configuration.
    All values from YAML. No hidden state.
    """

    # -- Execution service --
    default_timeout: float = 30.0
    validate_input: bool = True
    validate_output: bool = True
    progress_retention: int = 256
    max_contexts: Optional[int] = None
    python_path: List[str] = field(default_factory=list)

    # -- Workflow engine --
    max_concurrent_workflows: int = 3
    step_timeout: float = 300.0
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: Optional[float] = None
    queue_history_limit: int = 100
    history_dir: Optional[str] = None

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.
    """
    if not Path(path).exists():
        logger.debug(f"Config not found at {path}, using defaults")
        return Config(log_level=os.getenv("LOG_LEVEL", "INFO"))

    with open(path) as f:
        y = yaml.safe_load(f) or {}

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    defaults = Config()
    return Config(
        # Execution
        default_timeout=float(get(y, "execution", "default_timeout", default=defaults.default_timeout)),
        validate_input=bool(get(y, "execution", "validate_input", default=defaults.validate_input)),
        validate_output=bool(get(y, "execution", "validate_output", default=defaults.validate_output)),
        progress_retention=int(get(y, "execution", "progress_retention", default=defaults.progress_retention)),
        max_contexts=get(y, "execution", "max_contexts"),
        python_path=list(get(y, "execution", "python_path") or []),

        # Workflow
        max_concurrent_workflows=int(get(y, "workflow", "max_concurrent", default=defaults.max_concurrent_workflows)),
        step_timeout=float(get(y, "workflow", "step_timeout", default=defaults.step_timeout)),
        max_retries=int(get(y, "workflow", "max_retries", default=defaults.max_retries)),
        backoff_base=float(get(y, "workflow", "backoff_base", default=defaults.backoff_base)),
        backoff_max=get(y, "workflow", "backoff_max"),
        queue_history_limit=int(get(y, "workflow", "queue_history_limit", default=defaults.queue_history_limit)),
        history_dir=get(y, "workflow", "history_dir"),

        # Logging
        log_level=os.getenv("LOG_LEVEL") or get(y, "logging", "level") or defaults.log_level,
        log_format=get(y, "logging", "format") or defaults.log_format,
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("TOOLVAULT_CONFIG_PATH", DEFAULT_CONFIG_PATH)
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
