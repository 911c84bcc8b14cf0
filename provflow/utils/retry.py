from __future__ import annotations

import random

from ..constants import DEFAULT_FUZZ_BAND


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


def fuzz(seconds: float, band: float = DEFAULT_FUZZ_BAND) -> float:
    """Draw a delay uniformly from ``[seconds * (1 - band), seconds * (1 + band)]``."""
    if not 0 <= band < 1:
        raise ValueError("fuzz band must be in [0, 1)")
    return random.uniform(seconds * (1 - band), seconds * (1 + band))
