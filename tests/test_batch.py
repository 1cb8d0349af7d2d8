"""
Test suite for the daily accrual batch runner

Covers exactly-once-per-date application, full coverage when some accounts
fail, keyset paging over a shrinking eligible set and overlapping runs.
"""

import pytest
import threading
from collections import Counter
from decimal import Decimal
from datetime import datetime, timezone, time, timedelta, date
from zoneinfo import ZoneInfo

from loan_interest.batch import BatchAccrualRunner
from loan_interest.interest import DailyInterestCalculator
from loan_interest.models import LoanAccount
from loan_interest.storage import InMemoryAccountStore, SQLiteAccountStore, StorageError
from loan_interest.writer import AccrualWriter, add_daily_interest


DAILY = Decimal('27.397260')  # 100000 at 10% on a 365 basis


class FixedClock:
    """Clock pinned to noon UTC of a settable date"""

    def __init__(self, day: date):
        self.day = day

    def __call__(self) -> datetime:
        return datetime.combine(self.day, time(12, 0), tzinfo=timezone.utc)


class FailingWritesStore(InMemoryAccountStore):
    """Store that rejects writes for selected accounts"""

    def __init__(self, failing_ids):
        super().__init__()
        self.failing_ids = set(failing_ids)

    def compare_and_write(self, account_id, expected_version, account):
        if account_id in self.failing_ids:
            raise StorageError(f"Row {account_id} unavailable")
        return super().compare_and_write(account_id, expected_version, account)


class RecordingWriter(AccrualWriter):
    """Writer that counts how often each account is attempted"""

    def __init__(self, store):
        super().__init__(store)
        self.attempts = Counter()
        self._lock = threading.Lock()

    def write_mutation(self, account_id, expected_version, mutation):
        with self._lock:
            self.attempts[account_id] += 1
        return super().write_mutation(account_id, expected_version, mutation)


def seed_accounts(store, count, principal=Decimal('100000.00'), rate=Decimal('10.00'), last_applied_at=None):
    now = datetime.now(timezone.utc)
    for index in range(count):
        store.insert(LoanAccount(
            id=f"ACC{index:04d}",
            created_at=now,
            updated_at=now,
            account_holder_name=f"Holder {index}",
            principal_amount=principal,
            interest_rate=rate,
            date_of_disbursal=date(2024, 1, 1),
            last_applied_at=last_applied_at
        ))


def make_runner(store, day, batch_size=100, writer=None, **kwargs):
    return BatchAccrualRunner(
        store,
        DailyInterestCalculator(365),
        writer or AccrualWriter(store),
        batch_size=batch_size,
        clock=FixedClock(day),
        **kwargs
    )


class TestDailyAccrual:
    """Single-run behaviour"""

    def setup_method(self):
        self.store = InMemoryAccountStore()
        self.day = date(2024, 1, 15)

    def test_accrues_one_day(self):
        seed_accounts(self.store, 1)
        result = make_runner(self.store, self.day).apply_daily_accrual(self.day)

        assert result.date == self.day
        assert result.total_accounts_processed == 1
        assert result.failed_accounts == 0
        assert result.total_interest_applied == DAILY
        assert result.duration_ms >= 0
        assert not result.cancelled

        account = self.store.load("ACC0000")
        assert account.accrued_interest == DAILY
        assert account.principal_amount == Decimal('100000.00')
        assert account.last_applied_at == FixedClock(self.day)()
        assert account.version == 1

    def test_empty_store(self):
        result = make_runner(self.store, self.day).apply_daily_accrual(self.day)
        assert result.total_accounts_processed == 0
        assert result.total_interest_applied == Decimal('0')

    def test_zero_rate_account_counted_as_success(self):
        seed_accounts(self.store, 1, rate=Decimal('0'))
        result = make_runner(self.store, self.day).apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 1
        assert result.failed_accounts == 0
        assert self.store.load("ACC0000").last_applied_at is not None

    def test_accumulates_over_consecutive_dates(self):
        """Interest accrues on the unchanged principal, one amount per date"""
        seed_accounts(self.store, 1)
        clock = FixedClock(date(2024, 1, 1))
        runner = BatchAccrualRunner(self.store, DailyInterestCalculator(365), AccrualWriter(self.store), clock=clock)

        for offset in range(5):
            clock.day = date(2024, 1, 1) + timedelta(days=offset)
            result = runner.apply_daily_accrual(clock.day)
            assert result.total_interest_applied == DAILY

        account = self.store.load("ACC0000")
        assert account.accrued_interest == DAILY * 5
        assert account.accrued_interest == Decimal('136.986300')
        assert account.principal_amount == Decimal('100000.00')
        assert account.version == 5

    def test_repeat_run_for_same_date_is_noop(self):
        seed_accounts(self.store, 3)
        runner = make_runner(self.store, self.day)

        first = runner.apply_daily_accrual(self.day)
        second = runner.apply_daily_accrual(self.day)

        assert first.total_accounts_processed == 3
        assert second.total_accounts_processed == 0
        assert second.total_interest_applied == Decimal('0')
        for index in range(3):
            account = self.store.load(f"ACC{index:04d}")
            assert account.accrued_interest == DAILY
            assert account.version == 1

    def test_rejects_date_after_today(self):
        seed_accounts(self.store, 2)
        runner = make_runner(self.store, self.day)

        for _ in range(2):
            with pytest.raises(ValueError, match="later than today"):
                runner.apply_daily_accrual(date(2024, 1, 20))

        assert self.store.count_eligible_for_accrual(date(2024, 1, 20)) == 2
        account = self.store.load("ACC0000")
        assert account.accrued_interest == Decimal('0')
        assert account.version == 0

    def test_today_follows_store_zone(self):
        # 20:00 UTC on the 15th is already the 16th in India
        store = InMemoryAccountStore(tz=ZoneInfo("Asia/Kolkata"))
        seed_accounts(store, 1)
        runner = BatchAccrualRunner(
            store, DailyInterestCalculator(365), AccrualWriter(store),
            clock=lambda: datetime(2024, 1, 15, 20, 0, tzinfo=timezone.utc)
        )

        assert runner.apply_daily_accrual(date(2024, 1, 16)).total_accounts_processed == 1
        with pytest.raises(ValueError):
            runner.apply_daily_accrual(date(2024, 1, 17))

    def test_account_already_applied_for_date_not_selected(self):
        seed_accounts(self.store, 1, last_applied_at=datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc))
        writer = RecordingWriter(self.store)
        result = make_runner(self.store, self.day, writer=writer).apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 0
        assert writer.attempts == Counter()
        assert self.store.load("ACC0000").version == 0

    def test_mixed_eligibility(self):
        seed_accounts(self.store, 2)
        now = datetime.now(timezone.utc)
        self.store.insert(LoanAccount(
            id="ACC9999", created_at=now, updated_at=now, account_holder_name="Done",
            principal_amount=Decimal('100000.00'), interest_rate=Decimal('10.00'),
            date_of_disbursal=date(2024, 1, 1),
            last_applied_at=datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)
        ))

        result = make_runner(self.store, self.day).apply_daily_accrual(self.day)
        assert result.total_accounts_processed == 2
        assert self.store.load("ACC9999").accrued_interest == Decimal('0')

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            make_runner(self.store, self.day, batch_size=0)
        with pytest.raises(ValueError):
            make_runner(self.store, self.day, max_workers=0)


class TestPaging:
    """Coverage across pages while the eligible set shrinks"""

    def setup_method(self):
        self.day = date(2024, 1, 15)

    def test_every_account_visited_once_with_small_pages(self):
        store = InMemoryAccountStore()
        seed_accounts(store, 25)
        writer = RecordingWriter(store)

        result = make_runner(store, self.day, batch_size=10, writer=writer).apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 25
        assert result.failed_accounts == 0
        assert result.total_interest_applied == DAILY * 25
        assert len(writer.attempts) == 25
        assert set(writer.attempts.values()) == {1}
        assert store.count_eligible_for_accrual(self.day) == 0

    def test_page_size_equal_to_population(self):
        store = InMemoryAccountStore()
        seed_accounts(store, 10)
        writer = RecordingWriter(store)

        result = make_runner(store, self.day, batch_size=10, writer=writer).apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 10
        assert set(writer.attempts.values()) == {1}

    def test_failures_do_not_abort_or_repeat(self):
        failing = {"ACC0000", "ACC0007", "ACC0012", "ACC0019"}
        store = FailingWritesStore(failing)
        seed_accounts(store, 20)
        writer = RecordingWriter(store)

        result = make_runner(store, self.day, batch_size=6, writer=writer).apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 20
        assert result.failed_accounts == len(failing)
        assert result.successful_accounts == 16
        assert result.has_failures
        assert result.total_interest_applied == DAILY * 16
        assert set(writer.attempts.values()) == {1}

        for index in range(20):
            account = store.load(f"ACC{index:04d}")
            if account.id in failing:
                assert account.accrued_interest == Decimal('0')
                assert account.last_applied_at is None
            else:
                assert account.accrued_interest == DAILY
                assert account.last_applied_at is not None

        # Failed accounts stay eligible for the next run
        assert store.count_eligible_for_accrual(self.day) == len(failing)

    def test_unexpected_exception_is_isolated(self):
        store = InMemoryAccountStore()
        seed_accounts(store, 3)

        class ExplodingCalculator(DailyInterestCalculator):
            def for_account(self, account):
                if account.id == "ACC0001":
                    raise RuntimeError("boom")
                return super().for_account(account)

        runner = BatchAccrualRunner(
            store, ExplodingCalculator(365), AccrualWriter(store), clock=FixedClock(self.day)
        )
        result = runner.apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 3
        assert result.failed_accounts == 1
        assert store.load("ACC0002").accrued_interest == DAILY

    def test_page_query_failure_propagates(self):
        class BrokenStore(InMemoryAccountStore):
            def page_eligible_for_accrual(self, for_date, page_size, after_id=None):
                raise StorageError("connection refused")

        store = BrokenStore()
        seed_accounts(store, 1)

        with pytest.raises(StorageError, match="connection refused"):
            make_runner(store, self.day).apply_daily_accrual(self.day)

    def test_sqlite_store(self):
        store = SQLiteAccountStore(":memory:")
        seed_accounts(store, 13)

        result = make_runner(store, self.day, batch_size=5).apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 13
        assert result.total_interest_applied == DAILY * 13
        assert store.count_eligible_for_accrual(self.day) == 0
        store.close()


class TestConcurrency:
    """Worker pools and overlapping runs"""

    def setup_method(self):
        self.day = date(2024, 1, 15)

    def test_thread_pool_processing(self):
        store = InMemoryAccountStore()
        seed_accounts(store, 30)

        result = make_runner(store, self.day, batch_size=7, max_workers=4).apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 30
        assert result.failed_accounts == 0
        assert result.total_interest_applied == DAILY * 30
        assert store.count_eligible_for_accrual(self.day) == 0

    def test_stale_read_counted_as_failure_without_double_application(self):
        """A run that loses the race to another writer records a failure"""

        class RacingStore(InMemoryAccountStore):
            def page_eligible_for_accrual(self, for_date, page_size, after_id=None):
                page = super().page_eligible_for_accrual(for_date, page_size, after_id)
                if page and after_id is None:
                    # Another run accrues the first account right after our read
                    winner = AccrualWriter(self)
                    winner.write_mutation(
                        page[0].id, page[0].version,
                        add_daily_interest(DAILY, datetime(2024, 1, 15, 12, tzinfo=timezone.utc))
                    )
                return page

        store = RacingStore()
        seed_accounts(store, 3)

        result = make_runner(store, self.day).apply_daily_accrual(self.day)

        assert result.total_accounts_processed == 3
        assert result.failed_accounts == 1
        assert result.total_interest_applied == DAILY * 2

        contested = store.load("ACC0000")
        assert contested.accrued_interest == DAILY
        assert contested.version == 1
        # The winner already advanced last_applied_at, so it is not eligible again today
        assert store.count_eligible_for_accrual(self.day) == 0

    def test_overlapping_runs_with_row_locks(self):
        store = InMemoryAccountStore()
        seed_accounts(store, 50)
        writer = RecordingWriter(store)
        results = []
        start = threading.Barrier(2)

        def run():
            runner = make_runner(store, self.day, batch_size=5, writer=writer, use_row_locks=True)
            start.wait()
            results.append(runner.apply_daily_accrual(self.day))

        threads = [threading.Thread(target=run) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert len(results) == 2
        assert sum(r.total_accounts_processed for r in results) == 50
        assert sum(r.failed_accounts for r in results) == 0
        assert sum(r.total_interest_applied for r in results) == DAILY * 50
        assert set(writer.attempts.values()) == {1}
        for index in range(50):
            assert store.load(f"ACC{index:04d}").accrued_interest == DAILY

    def test_row_locks_ignored_when_store_lacks_them(self):
        store = SQLiteAccountStore(":memory:")
        seed_accounts(store, 3)
        runner = make_runner(store, self.day, use_row_locks=True)

        assert not runner.use_row_locks
        assert runner.apply_daily_accrual(self.day).total_accounts_processed == 3
        store.close()


class TestCancellation:

    def setup_method(self):
        self.day = date(2024, 1, 15)

    def test_cancelled_before_start(self):
        store = InMemoryAccountStore()
        seed_accounts(store, 5)
        cancel = threading.Event()
        cancel.set()

        result = make_runner(store, self.day).apply_daily_accrual(self.day, cancel_event=cancel)

        assert result.cancelled
        assert result.total_accounts_processed == 0
        assert store.count_eligible_for_accrual(self.day) == 5

    def test_cancelled_between_pages_returns_partial_result(self):
        store = InMemoryAccountStore()
        seed_accounts(store, 12)
        cancel = threading.Event()

        class CancellingWriter(AccrualWriter):
            def write_mutation(self, account_id, expected_version, mutation):
                outcome = super().write_mutation(account_id, expected_version, mutation)
                cancel.set()
                return outcome

        runner = make_runner(store, self.day, batch_size=5, writer=CancellingWriter(store))
        result = runner.apply_daily_accrual(self.day, cancel_event=cancel)

        assert result.cancelled
        assert result.total_accounts_processed == 5
        assert result.total_interest_applied == DAILY * 5
        assert store.count_eligible_for_accrual(self.day) == 7
