"""
Reconcile verdicts returned to the reconciliation worker.
"""
from typing import Iterable, Optional

from pydantic import BaseModel


class ReconcileResult(BaseModel):
    """
    Requeue directive for one cluster.

    - done(): no requeue requested (the worker still resyncs periodically)
    - now(): requeue immediately
    - after(seconds): requeue after a bounded delay
    """

    requeue: bool = False
    requeue_after: Optional[float] = None
    failed: bool = False
    error: Optional[str] = None

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls()

    @classmethod
    def now(cls) -> "ReconcileResult":
        return cls(requeue=True)

    @classmethod
    def after(cls, seconds: float) -> "ReconcileResult":
        return cls(requeue=True, requeue_after=seconds)

    @property
    def delay(self) -> Optional[float]:
        """Seconds until the next pass, 0 for immediate, None for no requeue."""
        if not self.requeue:
            return None
        return self.requeue_after or 0.0

    def merge(self, other: "ReconcileResult") -> "ReconcileResult":
        """Combine two verdicts, keeping the most urgent requeue and any failure."""
        delays = [d for d in (self.delay, other.delay) if d is not None]
        if delays:
            soonest = min(delays)
            merged = ReconcileResult.now() if soonest == 0 else ReconcileResult.after(soonest)
        else:
            merged = ReconcileResult.done()
        merged.failed = self.failed or other.failed
        merged.error = self.error or other.error
        return merged

    @classmethod
    def combine(cls, results: Iterable["ReconcileResult"]) -> "ReconcileResult":
        combined = cls.done()
        for result in results:
            combined = combined.merge(result)
        return combined
