"""
Samflow Retry Policy

Exponential backoff with jitter between step attempts.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from samflow.core.config import EngineConfig


@dataclass
class BackoffPolicy:
    """
    Exponential backoff with jitter.

    The delay before retry ``attempt`` (1-based) is
    ``min(base * 2 ** (attempt - 1), maximum)`` scaled by a random factor in
    ``[1 - jitter, 1 + jitter]``.
    """
    base: float = 1.0
    maximum: float = 30.0
    jitter: float = 0.2
    rng: Optional[random.Random] = None

    @classmethod
    def from_config(cls, config: EngineConfig) -> "BackoffPolicy":
        return cls(
            base=config.backoff_base,
            maximum=config.backoff_max,
            jitter=config.backoff_jitter,
        )

    def nominal_delay(self, attempt: int) -> float:
        exponent = max(attempt - 1, 0)
        # Avoid float overflow for very large attempt numbers
        if exponent > 62:
            return self.maximum
        return min(self.base * (2 ** exponent), self.maximum)

    def delay_for(self, attempt: int) -> float:
        nominal = self.nominal_delay(attempt)
        if not self.jitter:
            return nominal
        rng = self.rng or random
        return nominal * rng.uniform(1 - self.jitter, 1 + self.jitter)
