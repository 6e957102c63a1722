"""
Per-connection token bucket.

Each connection starts with a full bucket of `capacity` tokens and earns one
token back every `refill_interval` seconds, never exceeding capacity.
Rejected messages are dropped; nothing is queued or retried.
"""

from dataclasses import dataclass
from typing import Callable, Dict
import time


@dataclass
class Bucket:
    tokens: int
    last_refill: float


class RateLimiter:
    def __init__(self, capacity: int, refill_interval: float, clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_interval <= 0:
            raise ValueError("refill_interval must be positive")
        self.capacity = capacity
        self.refill_interval = refill_interval
        self.clock = clock
        self.buckets: Dict[str, Bucket] = {}

    def allow(self, conn_id: str) -> bool:
        """Take one token for this connection. False if the bucket is empty."""
        now = self.clock()
        bucket = self.buckets.get(conn_id)
        if bucket is None:
            bucket = Bucket(tokens=self.capacity, last_refill=now)
            self.buckets[conn_id] = bucket

        earned = int((now - bucket.last_refill) // self.refill_interval)
        if earned > 0:
            bucket.tokens = min(self.capacity, bucket.tokens + earned)
            bucket.last_refill += earned * self.refill_interval

        if bucket.tokens <= 0:
            return False
        bucket.tokens -= 1
        return True

    def forget(self, conn_id: str) -> None:
        self.buckets.pop(conn_id, None)

    def __repr__(self):
        return f"<RateLimiter: {self.capacity} per {self.refill_interval}s, {len(self.buckets)} buckets>"
