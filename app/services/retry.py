import random
from datetime import datetime, timedelta


def compute_backoff_seconds(attempt: int, base: int = 10, cap: int = 900) -> int:
    # exponential backoff with jitter; attempt is 1-based
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.randint(0, min(30, exp // 3))
    return exp + jitter


def next_visible_at(now: datetime, attempt: int) -> datetime:
    return now + timedelta(seconds=compute_backoff_seconds(attempt))


def retries_exhausted(attempts: int, max_attempts: int) -> bool:
    return attempts >= max_attempts
