"""Counting join barrier for the two parallel pre-alignment stages.

WHY: Cleaning the transcript and extracting audio run at the same time,
and alignment needs both. Exactly one of them must start the alignment,
whichever finishes second, no matter how close together they finish.

HOW: Each finishing stage calls arrive(). The counter is incremented and
compared under a lock, so the arrival that makes the count reach
``parties`` is the only one that sees True.

RULES:
- arrive() returns True exactly once, on the ``parties``-th call
- Arrivals past ``parties`` return False
"""

from __future__ import annotations

import threading


class JoinBarrier:
    """Non-blocking barrier: tells the last arrival it was last."""

    def __init__(self, parties: int = 2) -> None:
        if parties < 1:
            raise ValueError("parties must be >= 1")
        self.parties = parties
        self._count = 0
        self._lock = threading.Lock()

    def arrive(self) -> bool:
        with self._lock:
            self._count += 1
            return self._count == self.parties

    @property
    def count(self) -> int:
        with self._lock:
            return self._count
