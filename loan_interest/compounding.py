"""
Month-End Compounding Module

Moves accrued interest into principal for every account. Unlike the daily
run there is no eligibility filter: processing does not change which rows a
page query returns, and accounts with nothing accrued are visited but not
written, so a repeated run is a no-op.
"""

from decimal import Decimal
from datetime import date
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional
import math
import threading

from .batch import DEFAULT_BATCH_SIZE, worker_pool
from .logging_config import get_logger, log_action
from .models import LoanAccount, ZERO
from .results import AccrualResult, ResultAccumulator
from .storage import AccountStore
from .writer import AccrualWriter, transfer_accrued_to_principal


class MonthEndCompounder:
    """Compounds accrued interest into principal across all accounts"""

    def __init__(
        self,
        store: AccountStore,
        writer: AccrualWriter,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int = 1
    ):
        if batch_size < 1:
            raise ValueError("Batch size must be positive")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.store = store
        self.writer = writer
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.logger = get_logger("loan_interest.compounding")

    def apply_month_end_compounding(self, for_date: date,
                                    cancel_event: Optional[threading.Event] = None) -> AccrualResult:
        """
        Transfer accrued interest to principal for all accounts

        Args:
            for_date: Date the compounding is booked for, typically the last
                day of the month
            cancel_event: When set, the run stops before the next page and
                returns the partial result

        Returns:
            AccrualResult whose total is the interest moved into principal
        """
        self.logger.info(f"Starting month-end compounding for {for_date}")
        accumulator = ResultAccumulator(for_date)

        total_accounts = self.store.count()
        total_batches = math.ceil(total_accounts / self.batch_size)
        self.logger.info(f"Total accounts for month-end processing: {total_accounts}")

        cancelled = False
        after_id: Optional[str] = None
        batch_number = 0

        with worker_pool(self.max_workers, "compounding") as executor:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    self.logger.warning(f"Month-end compounding for {for_date} cancelled after {batch_number} batches")
                    break

                page = self.store.page_all(self.batch_size, after_id)
                batch_number += 1
                self.logger.info(
                    f"Processing month-end batch {batch_number}/{max(total_batches, batch_number)} "
                    f"with {len(page)} accounts"
                )
                self._process_page(page, accumulator, executor)

                if len(page) < self.batch_size:
                    break
                after_id = page[-1].id

        result = accumulator.result(cancelled=cancelled)
        log_action(
            self.logger, "info",
            f"Completed month-end compounding for {for_date}. "
            f"Success: {result.successful_accounts}, Failures: {result.failed_accounts}, "
            f"Total interest applied: {result.total_interest_applied}, Duration: {result.duration_ms} ms",
            action="month_end_compounding",
            resource="loan_accounts",
            extra=result.to_dict()
        )
        return result

    def _process_page(self, page: List[LoanAccount], accumulator: ResultAccumulator,
                      executor: Optional[ThreadPoolExecutor]) -> None:
        if executor is None:
            for account in page:
                self._compound_account(account, accumulator)
        else:
            list(executor.map(lambda a: self._compound_account(a, accumulator), page))

    def _compound_account(self, account: LoanAccount, accumulator: ResultAccumulator) -> None:
        accrued: Decimal = account.accrued_interest

        if accrued <= ZERO:
            # Nothing to compound, no write issued
            accumulator.record_success(ZERO)
            return

        try:
            outcome = self.writer.write_mutation(
                account.id,
                account.version,
                transfer_accrued_to_principal()
            )
        except Exception as e:
            accumulator.record_failure()
            self.logger.error(f"Failed to apply month-end interest to account {account.id}: {e}", exc_info=True)
            return

        if outcome.succeeded:
            accumulator.record_success(accrued)
            self.logger.debug(
                f"Applied accrued interest {accrued} to principal for account {account.id}. "
                f"New principal: {outcome.account.principal_amount}"
            )
        else:
            accumulator.record_failure()
            self.logger.error(
                f"Failed to apply month-end interest to account {account.id}: "
                f"{outcome.status.value}: {outcome.error}"
            )
