"""
In-memory call ledger (API monitor).

Keeps a bounded, newest-first list of call records and publishes a
snapshot of it to subscribers on every change.
"""

import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, List, Optional

from ai_call_governor.storage.models import CallRecord, CallStatus

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100

Subscriber = Callable[[List[CallRecord]], None]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class LedgerSummary:
    """Aggregate view of a set of call records."""
    total_calls: int
    successful_calls: int
    failed_calls: int
    success_rate: float  # percent
    total_tokens: int
    total_cost: float
    average_duration: Optional[float]  # ms, over terminal records


def summarize_records(records: Iterable[CallRecord]) -> LedgerSummary:
    """Summarize call records for dashboards and reports."""
    records = list(records)
    total = len(records)
    successful = sum(1 for r in records if r.status == CallStatus.SUCCESS)
    failed = sum(1 for r in records if r.status == CallStatus.FAILED)
    durations = [r.duration for r in records if r.duration is not None]

    return LedgerSummary(
        total_calls=total,
        successful_calls=successful,
        failed_calls=failed,
        success_rate=(successful / total * 100) if total else 0.0,
        total_tokens=sum(r.total_tokens or 0 for r in records),
        total_cost=sum(r.estimated_cost or 0.0 for r in records),
        average_duration=(sum(durations) / len(durations)) if durations else None,
    )


class CallLedger:
    """Bounded ring buffer of call records with publish/subscribe.

    Records are prepended, so index 0 is always the newest; once the
    capacity is exceeded the oldest record is evicted.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, clock: Callable[[], int] = now_ms):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._clock = clock
        self._logs: List[CallRecord] = []
        self._subscribers: List[Subscriber] = []

    def add_log(self, agent_name: str, model: str, request_payload: Any = None) -> str:
        """Record a new call in Pending state.

        Args:
            agent_name: Name of the calling agent
            model: Model the call targets
            request_payload: Caller-supplied payload kept for inspection

        Returns:
            The id of the new record
        """
        record = CallRecord(
            id=f"api-call-{uuid.uuid4().hex}",
            start_time=self._clock(),
            status=CallStatus.PENDING,
            agent_name=agent_name,
            model=model,
            request_payload=request_payload,
        )
        self._logs.insert(0, record)
        if len(self._logs) > self.capacity:
            self._logs.pop()

        self._notify()
        return record.id

    def update_log(self, log_id: str, **updates: Any) -> Optional[CallRecord]:
        """Merge fields into the record with the given id.

        When the merged status is terminal, end_time and duration are
        stamped from the stored start_time. Unknown ids are ignored.

        Returns:
            The updated record, or None if the id is unknown
        """
        for index, original in enumerate(self._logs):
            if original.id == log_id:
                break
        else:
            return None

        updated = replace(original, **updates)
        if updated.status.is_terminal:
            end_time = self._clock()
            updated = replace(updated, end_time=end_time, duration=end_time - updated.start_time)
        else:
            updated = replace(updated, end_time=None, duration=None)

        self._logs[index] = updated
        self._notify()
        return updated

    def get_log(self, log_id: str) -> Optional[CallRecord]:
        return next((record for record in self._logs if record.id == log_id), None)

    def get_logs(self) -> List[CallRecord]:
        """Return a snapshot of all records, newest first."""
        return list(self._logs)

    def summary(self) -> LedgerSummary:
        return summarize_records(self._logs)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for ledger changes.

        The callback is invoked immediately with the current records and
        again after every mutation.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)
        self._deliver(callback, list(self._logs))

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = list(self._logs)
        for callback in list(self._subscribers):
            self._deliver(callback, list(snapshot))

    @staticmethod
    def _deliver(callback: Subscriber, snapshot: List[CallRecord]) -> None:
        try:
            callback(snapshot)
        except Exception:
            logger.exception("[LEDGER] Subscriber failed")
