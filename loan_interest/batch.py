"""
Daily Accrual Batch Module

Applies one day of simple interest to every account that has not yet been
accrued for the target date. Accounts are paged by id (keyset pagination),
because each successful write removes the account from the eligible set and
an offset-based page index would skip rows as the set shrinks.
"""

from datetime import date, datetime, timezone
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager, nullcontext
from typing import Callable, Iterator, List, Optional
import math
import threading

from .interest import DailyInterestCalculator
from .logging_config import get_logger, log_action
from .models import LoanAccount
from .results import AccrualResult, ResultAccumulator
from .storage import AccountStore
from .writer import AccrualWriter, add_daily_interest


DEFAULT_BATCH_SIZE = 100

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


def worker_pool(max_workers: int, name: str):
    """Thread pool for per-account work, or a null context when sequential"""
    if max_workers > 1:
        return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
    return nullcontext()


class BatchAccrualRunner:
    """Runs the daily interest accrual across all eligible accounts"""

    def __init__(
        self,
        store: AccountStore,
        calculator: DailyInterestCalculator,
        writer: AccrualWriter,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Clock = utc_clock,
        max_workers: int = 1,
        use_row_locks: bool = False
    ):
        if batch_size < 1:
            raise ValueError("Batch size must be positive")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.store = store
        self.calculator = calculator
        self.writer = writer
        self.batch_size = batch_size
        self.clock = clock
        self.max_workers = max_workers
        self.use_row_locks = use_row_locks and store.supports_row_locks
        self.logger = get_logger("loan_interest.batch")

        if use_row_locks and not store.supports_row_locks:
            self.logger.warning(
                f"{type(store).__name__} has no row locks; relying on version checks only"
            )

    def apply_daily_accrual(self, for_date: date,
                            cancel_event: Optional[threading.Event] = None) -> AccrualResult:
        """
        Accrue one day of interest on every account eligible for for_date

        Args:
            for_date: Calendar date being accrued
            cancel_event: When set, the run stops before the next page and
                returns the partial result

        Returns:
            AccrualResult with success/failure counts and the interest total

        Raises:
            ValueError: for_date is later than today in the store's zone

        Errors from the store while counting or fetching a page propagate;
        errors while writing a single account are counted as failures.
        """
        today = self._today()
        if for_date > today:
            # last_applied_at is stamped from the clock, not from for_date
            raise ValueError(f"Cannot accrue interest for {for_date}, later than today ({today})")

        self.logger.info(f"Starting daily interest accrual for {for_date}")
        accumulator = ResultAccumulator(for_date)

        total_accounts = self.store.count_eligible_for_accrual(for_date)
        total_batches = math.ceil(total_accounts / self.batch_size)
        self.logger.info(f"Accounts needing interest for {for_date}: {total_accounts}")

        cancelled = False
        after_id: Optional[str] = None
        batch_number = 0

        with worker_pool(self.max_workers, "accrual") as executor:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    self.logger.warning(f"Daily accrual for {for_date} cancelled after {batch_number} batches")
                    break

                with self._next_page(for_date, after_id) as page:
                    batch_number += 1
                    self.logger.info(
                        f"Processing batch {batch_number}/{max(total_batches, batch_number)} "
                        f"with {len(page)} accounts"
                    )
                    self._process_page(page, for_date, accumulator, executor)

                if len(page) < self.batch_size:
                    break
                after_id = page[-1].id

        result = accumulator.result(cancelled=cancelled)
        log_action(
            self.logger, "info",
            f"Completed daily interest accrual for {for_date}. "
            f"Success: {result.successful_accounts}, Failures: {result.failed_accounts}, "
            f"Total interest applied: {result.total_interest_applied}, Duration: {result.duration_ms} ms",
            action="daily_accrual",
            resource="loan_accounts",
            extra=result.to_dict()
        )
        return result

    def _today(self) -> date:
        now = self.clock()
        if self.store.tz is not None:
            now = now.astimezone(self.store.tz)
        return now.date()

    @contextmanager
    def _next_page(self, for_date: date, after_id: Optional[str]) -> Iterator[List[LoanAccount]]:
        if self.use_row_locks:
            with self.store.locked_page_eligible_for_accrual(for_date, self.batch_size, after_id) as page:
                yield page
        else:
            yield self.store.page_eligible_for_accrual(for_date, self.batch_size, after_id)

    def _process_page(self, page: List[LoanAccount], for_date: date,
                      accumulator: ResultAccumulator, executor: Optional[ThreadPoolExecutor]) -> None:
        if executor is None:
            for account in page:
                self._accrue_account(account, for_date, accumulator)
        else:
            # Drain the page before fetching the next one
            list(executor.map(lambda a: self._accrue_account(a, for_date, accumulator), page))

    def _accrue_account(self, account: LoanAccount, for_date: date,
                        accumulator: ResultAccumulator) -> None:
        try:
            daily_interest = self.calculator.for_account(account)
            outcome = self.writer.write_mutation(
                account.id,
                account.version,
                add_daily_interest(daily_interest, self.clock())
            )
        except Exception as e:
            accumulator.record_failure()
            self.logger.error(f"Failed to apply interest to account {account.id}: {e}", exc_info=True)
            return

        if outcome.succeeded:
            accumulator.record_success(daily_interest)
        else:
            accumulator.record_failure()
            self.logger.error(
                f"Failed to apply interest to account {account.id} for {for_date}: "
                f"{outcome.status.value}: {outcome.error}"
            )
