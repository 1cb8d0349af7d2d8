"""
Interest Engine Module

Wires the account store, calculator, writer and the two batch jobs from
configuration, and provides the entry points a scheduler calls: the daily
accrual job and the month-end compounding job.
"""

from datetime import date, datetime
from typing import Callable, Optional
import calendar
import threading

from .accounts import AccountManager
from .batch import BatchAccrualRunner
from .compounding import MonthEndCompounder
from .config import LoanInterestConfig, get_config
from .interest import DailyInterestCalculator
from .logging_config import get_logger
from .results import AccrualResult
from .storage import AccountStore, create_account_store
from .writer import AccrualWriter


def is_month_end(day: date) -> bool:
    """True on the last calendar day of the month"""
    return day.day == calendar.monthrange(day.year, day.month)[1]


class InterestEngine:
    """Loan interest engine with all components initialized"""

    def __init__(
        self,
        store: AccountStore,
        config: Optional[LoanInterestConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or get_config()
        self.tz = self.config.zone()
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.logger = get_logger("loan_interest.engine")

        self.store = store
        if self.store.tz is None:
            self.store.tz = self.tz

        self.account_manager = AccountManager(self.store)
        self.calculator = DailyInterestCalculator(self.config.day_count_basis)
        self.writer = AccrualWriter(self.store)
        self.daily_runner = BatchAccrualRunner(
            self.store,
            self.calculator,
            self.writer,
            batch_size=self.config.batch_size,
            clock=self.clock,
            max_workers=self.config.max_workers,
            use_row_locks=self.config.use_row_locks
        )
        self.compounder = MonthEndCompounder(
            self.store,
            self.writer,
            batch_size=self.config.batch_size,
            max_workers=self.config.max_workers
        )

        self.logger.info(
            f"InterestEngine initialized with day_count_basis={self.config.day_count_basis}, "
            f"timezone={self.config.timezone}, batch_size={self.config.batch_size}"
        )

    @classmethod
    def from_config(cls, config: Optional[LoanInterestConfig] = None) -> 'InterestEngine':
        """Build the engine and its store from configuration"""
        config = config or get_config()
        store = create_account_store(config.database_url, tz=config.zone())
        return cls(store, config)

    def today(self) -> date:
        """Current calendar date in the configured timezone"""
        return self.clock().astimezone(self.tz).date()

    def apply_daily_accrual(self, for_date: Optional[date] = None,
                            cancel_event: Optional[threading.Event] = None) -> AccrualResult:
        return self.daily_runner.apply_daily_accrual(for_date or self.today(), cancel_event)

    def apply_month_end_compounding(self, for_date: Optional[date] = None,
                                    cancel_event: Optional[threading.Event] = None) -> AccrualResult:
        return self.compounder.apply_month_end_compounding(for_date or self.today(), cancel_event)

    def run_daily_job(self) -> Optional[AccrualResult]:
        """Scheduled daily accrual for today; errors are logged, not raised"""
        today = self.today()
        self.logger.info(f"Starting scheduled daily interest calculation for date: {today}")
        try:
            result = self.apply_daily_accrual(today)
        except Exception as e:
            self.logger.error(f"Error during scheduled daily interest calculation for date: {today}: {e}", exc_info=True)
            return None

        if result.has_failures:
            self.logger.warning(f"Daily interest for {today} left {result.failed_accounts} accounts for the next run")
        return result

    def run_month_end_job(self) -> Optional[AccrualResult]:
        """Scheduled compounding; only runs on the last day of the month"""
        today = self.today()
        if not is_month_end(today):
            self.logger.info(f"Skipping month-end interest application, {today} is not a month end")
            return None

        self.logger.info(f"Starting scheduled month-end interest application for date: {today}")
        try:
            result = self.apply_month_end_compounding(today)
        except Exception as e:
            self.logger.error(f"Error during scheduled month-end interest application for date: {today}: {e}", exc_info=True)
            return None

        if result.has_failures:
            self.logger.warning(f"Month-end interest for {today} failed on {result.failed_accounts} accounts")
        return result

    def close(self) -> None:
        self.store.close()
