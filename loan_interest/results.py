"""
Accrual Run Results

Aggregate outcome of a daily accrual or month-end compounding run. The
accumulator is shared by worker threads processing accounts of one run.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Dict
import threading
import time


@dataclass(frozen=True)
class AccrualResult:
    """Summary returned to whoever triggered the run"""
    date: date
    total_accounts_processed: int
    failed_accounts: int
    total_interest_applied: Decimal
    duration_ms: int
    cancelled: bool = False

    @property
    def successful_accounts(self) -> int:
        return self.total_accounts_processed - self.failed_accounts

    @property
    def has_failures(self) -> bool:
        """Soft-failure signal: some accounts need another run"""
        return self.failed_accounts > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "total_accounts_processed": self.total_accounts_processed,
            "failed_accounts": self.failed_accounts,
            "total_interest_applied": str(self.total_interest_applied),
            "duration_ms": self.duration_ms,
            "cancelled": self.cancelled,
        }


class ResultAccumulator:
    """Thread-safe success/failure counters and running interest total"""

    def __init__(self, for_date: date):
        self.for_date = for_date
        self._lock = threading.Lock()
        self._successes = 0
        self._failures = 0
        self._total = Decimal('0')
        self._started = time.monotonic()

    def record_success(self, amount: Decimal) -> None:
        with self._lock:
            self._successes += 1
            self._total += amount

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1

    @property
    def successes(self) -> int:
        with self._lock:
            return self._successes

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def result(self, cancelled: bool = False) -> AccrualResult:
        with self._lock:
            return AccrualResult(
                date=self.for_date,
                total_accounts_processed=self._successes + self._failures,
                failed_accounts=self._failures,
                total_interest_applied=self._total,
                duration_ms=int((time.monotonic() - self._started) * 1000),
                cancelled=cancelled,
            )
