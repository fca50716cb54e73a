# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Step retry policy (exponential backoff)."""

from dataclasses import dataclass
from typing import Optional

from toolvault.core.errors import ToolVaultError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry budget and backoff for one step.

    The delay before retry n (1-based) is ``backoff_base * 2 ** (n - 1)``:
    1, 2, 4, 8 seconds with the default base, capped by ``backoff_max``.
    """

    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: Optional[float] = None

    def calculate_delay(self, retry_number: int) -> float:
        delay = self.backoff_base * (2 ** max(retry_number - 1, 0))
        if self.backoff_max is not None:
            delay = min(delay, self.backoff_max)
        return max(delay, 0.0)

    def should_retry(self, error: Exception, retries_used: int) -> bool:
        """Only retryable toolvault errors are re-attempted, within budget."""
        if retries_used >= self.max_retries:
            return False
        return isinstance(error, ToolVaultError) and error.retryable
