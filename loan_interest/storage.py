"""
Storage Backend Module

Provides the abstract account store interface and implementations for
in-memory (testing) and SQLite (persistence). All monetary values stored as
Decimal strings.

Every page query is keyset-paginated on the account id so that a caller which
mutates the rows it reads (and thereby changes whether they match the query)
never shifts later rows out of reach.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Any, Set, Union
from datetime import datetime, timezone, date, tzinfo
from dataclasses import replace
from pathlib import Path
from contextlib import contextmanager
import sqlite3
import heapq
import json
import threading

from .models import LoanAccount


class StorageError(Exception):
    """Raised when the account store cannot complete an operation"""


class VersionConflictError(StorageError):
    """Raised when a conditional write finds a different stored version"""

    def __init__(self, account_id: str, expected_version: int, actual_version: Optional[int] = None):
        self.account_id = account_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        message = f"Version conflict on account {account_id}: expected {expected_version}"
        if actual_version is not None:
            message += f", found {actual_version}"
        super().__init__(message)


class AccountNotFoundError(StorageError):
    """Raised when an account row does not exist"""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class AccountStore(ABC):
    """Abstract interface for loan account stores"""

    supports_row_locks = False

    def __init__(self, tz: Optional[tzinfo] = None):
        # Zone in which last_applied_at is turned into a calendar date
        self.tz = tz

    @abstractmethod
    def insert(self, account: LoanAccount) -> LoanAccount:
        """Insert a new account"""
        pass

    @abstractmethod
    def load(self, account_id: str) -> Optional[LoanAccount]:
        """Load an account by id"""
        pass

    @abstractmethod
    def list_accounts(self, limit: int = 20, offset: int = 0) -> List[LoanAccount]:
        """List accounts, newest first"""
        pass

    @abstractmethod
    def count(self) -> int:
        """Count all accounts"""
        pass

    @abstractmethod
    def count_eligible_for_accrual(self, for_date: date) -> int:
        """Count accounts needing interest for the given date"""
        pass

    @abstractmethod
    def page_eligible_for_accrual(self, for_date: date, page_size: int,
                                  after_id: Optional[str] = None) -> List[LoanAccount]:
        """Next page of accounts needing interest, ordered by id, after the cursor"""
        pass

    def locked_page_eligible_for_accrual(self, for_date: date, page_size: int,
                                         after_id: Optional[str] = None):
        """
        Like page_eligible_for_accrual, but returns a context manager whose
        rows stay exclusively locked until the context exits. Only available
        when supports_row_locks is True.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support row locks")

    @abstractmethod
    def page_all(self, page_size: int, after_id: Optional[str] = None) -> List[LoanAccount]:
        """Next page of all accounts, ordered by id, after the cursor"""
        pass

    @abstractmethod
    def compare_and_write(self, account_id: str, expected_version: int,
                          account: LoanAccount) -> LoanAccount:
        """
        Persist account state if the stored version still equals
        expected_version. The stored version becomes expected_version + 1.

        Raises:
            VersionConflictError: stored version moved since it was read
            AccountNotFoundError: row does not exist
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass


class InMemoryAccountStore(AccountStore):
    """In-memory account store for testing, with row-lock support"""

    supports_row_locks = True

    def __init__(self, tz: Optional[tzinfo] = None):
        super().__init__(tz)
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._row_locks_released = threading.Condition(self._lock)
        self._locked_ids: Set[str] = set()

    def _copy(self, record: Dict[str, Any]) -> LoanAccount:
        # Deep copy to prevent external mutation
        return LoanAccount.from_dict(json.loads(json.dumps(record)))

    def _is_eligible(self, record: Dict[str, Any], for_date: date) -> bool:
        applied = record['last_applied_at']
        if applied is None:
            return True
        applied_at = datetime.fromisoformat(applied)
        if self.tz is not None:
            applied_at = applied_at.astimezone(self.tz)
        return applied_at.date() < for_date

    def _page_ids(self, page_size: int, after_id: Optional[str] = None,
                  for_date: Optional[date] = None) -> List[str]:
        candidates = (
            account_id for account_id, record in self._data.items()
            if (after_id is None or account_id > after_id)
            and (for_date is None or self._is_eligible(record, for_date))
        )
        return heapq.nsmallest(page_size, candidates)

    def insert(self, account: LoanAccount) -> LoanAccount:
        with self._lock:
            if account.id in self._data:
                raise StorageError(f"Account {account.id} already exists")
            self._data[account.id] = json.loads(json.dumps(account.to_dict()))
            return self._copy(self._data[account.id])

    def load(self, account_id: str) -> Optional[LoanAccount]:
        with self._lock:
            record = self._data.get(account_id)
            if record:
                return self._copy(record)
            return None

    def list_accounts(self, limit: int = 20, offset: int = 0) -> List[LoanAccount]:
        with self._lock:
            accounts = sorted(
                (self._copy(record) for record in self._data.values()),
                key=lambda a: a.created_at,
                reverse=True
            )
            return accounts[offset:offset + limit]

    def count(self) -> int:
        with self._lock:
            return len(self._data)

    def count_eligible_for_accrual(self, for_date: date) -> int:
        with self._lock:
            return sum(1 for record in self._data.values() if self._is_eligible(record, for_date))

    def page_eligible_for_accrual(self, for_date: date, page_size: int,
                                  after_id: Optional[str] = None) -> List[LoanAccount]:
        with self._lock:
            return [self._copy(self._data[account_id])
                    for account_id in self._page_ids(page_size, after_id, for_date)]

    @contextmanager
    def locked_page_eligible_for_accrual(self, for_date: date, page_size: int,
                                         after_id: Optional[str] = None) -> Iterator[List[LoanAccount]]:
        with self._row_locks_released:
            # Wait for overlapping holders, then re-evaluate eligibility
            while True:
                ids = self._page_ids(page_size, after_id, for_date)
                if not self._locked_ids.intersection(ids):
                    break
                self._row_locks_released.wait()
            page_ids = set(ids)
            self._locked_ids.update(page_ids)
            page = [self._copy(self._data[account_id]) for account_id in ids]

        try:
            yield page
        finally:
            with self._row_locks_released:
                self._locked_ids.difference_update(page_ids)
                self._row_locks_released.notify_all()

    def page_all(self, page_size: int, after_id: Optional[str] = None) -> List[LoanAccount]:
        with self._lock:
            return [self._copy(self._data[account_id])
                    for account_id in self._page_ids(page_size, after_id)]

    def compare_and_write(self, account_id: str, expected_version: int,
                          account: LoanAccount) -> LoanAccount:
        with self._lock:
            current = self._data.get(account_id)
            if current is None:
                raise AccountNotFoundError(account_id)
            if current['version'] != expected_version:
                raise VersionConflictError(account_id, expected_version, current['version'])

            written = replace(
                account,
                id=account_id,
                version=expected_version + 1,
                updated_at=datetime.now(timezone.utc)
            )
            self._data[account_id] = json.loads(json.dumps(written.to_dict()))
            return self._copy(self._data[account_id])

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteAccountStore(AccountStore):
    """SQLite account store for persistence"""

    table = "loan_accounts"

    _columns = (
        "id", "account_holder_name", "principal_amount", "interest_rate",
        "accrued_interest", "date_of_disbursal", "last_applied_at",
        "version", "created_at", "updated_at"
    )

    def __init__(self, db_path: Union[str, Path] = ":memory:", tz: Optional[tzinfo] = None):
        super().__init__(tz)
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._ensure_table()

    def _ensure_table(self) -> None:
        """Ensure table exists with proper schema"""
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                id TEXT PRIMARY KEY,
                account_holder_name TEXT NOT NULL,
                principal_amount TEXT NOT NULL,
                interest_rate TEXT NOT NULL,
                accrued_interest TEXT NOT NULL,
                date_of_disbursal TEXT NOT NULL,
                last_applied_at TEXT,
                last_applied_date TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{self.table}_last_applied_date
            ON {self.table}(last_applied_date)
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{self.table}_created_at
            ON {self.table}(created_at)
        """)
        self._connection.commit()

    def _row_to_account(self, row: sqlite3.Row) -> LoanAccount:
        return LoanAccount.from_dict({column: row[column] for column in self._columns})

    def _applied_date(self, account: LoanAccount) -> Optional[str]:
        applied = account.last_applied_date(self.tz)
        return applied.isoformat() if applied else None

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._connection.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Query on {self.table} failed: {e}") from e

    def insert(self, account: LoanAccount) -> LoanAccount:
        data = account.to_dict()
        with self._lock:
            try:
                self._connection.execute(f"""
                    INSERT INTO {self.table} (
                        id, account_holder_name, principal_amount, interest_rate,
                        accrued_interest, date_of_disbursal, last_applied_at,
                        last_applied_date, version, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    data['id'], data['account_holder_name'], data['principal_amount'],
                    data['interest_rate'], data['accrued_interest'], data['date_of_disbursal'],
                    data['last_applied_at'], self._applied_date(account), data['version'],
                    data['created_at'], data['updated_at']
                ))
                self._connection.commit()
            except sqlite3.IntegrityError as e:
                self._connection.rollback()
                raise StorageError(f"Account {account.id} already exists") from e
            except sqlite3.Error as e:
                self._connection.rollback()
                raise StorageError(f"Insert into {self.table} failed: {e}") from e
        return account

    def load(self, account_id: str) -> Optional[LoanAccount]:
        rows = self._query(f"SELECT * FROM {self.table} WHERE id = ?", (account_id,))
        if rows:
            return self._row_to_account(rows[0])
        return None

    def list_accounts(self, limit: int = 20, offset: int = 0) -> List[LoanAccount]:
        rows = self._query(f"""
            SELECT * FROM {self.table} ORDER BY created_at DESC LIMIT ? OFFSET ?
        """, (limit, offset))
        return [self._row_to_account(row) for row in rows]

    def count(self) -> int:
        rows = self._query(f"SELECT COUNT(*) AS count FROM {self.table}")
        return rows[0]['count']

    def count_eligible_for_accrual(self, for_date: date) -> int:
        rows = self._query(f"""
            SELECT COUNT(*) AS count FROM {self.table}
            WHERE last_applied_date IS NULL OR last_applied_date < ?
        """, (for_date.isoformat(),))
        return rows[0]['count']

    def page_eligible_for_accrual(self, for_date: date, page_size: int,
                                  after_id: Optional[str] = None) -> List[LoanAccount]:
        rows = self._query(f"""
            SELECT * FROM {self.table}
            WHERE (last_applied_date IS NULL OR last_applied_date < ?)
              AND id > ?
            ORDER BY id
            LIMIT ?
        """, (for_date.isoformat(), after_id or "", page_size))
        return [self._row_to_account(row) for row in rows]

    def page_all(self, page_size: int, after_id: Optional[str] = None) -> List[LoanAccount]:
        rows = self._query(f"""
            SELECT * FROM {self.table} WHERE id > ? ORDER BY id LIMIT ?
        """, (after_id or "", page_size))
        return [self._row_to_account(row) for row in rows]

    def compare_and_write(self, account_id: str, expected_version: int,
                          account: LoanAccount) -> LoanAccount:
        data = account.to_dict()
        with self._lock:
            try:
                cursor = self._connection.execute(f"""
                    UPDATE {self.table} SET
                        account_holder_name = ?,
                        principal_amount = ?,
                        interest_rate = ?,
                        accrued_interest = ?,
                        last_applied_at = ?,
                        last_applied_date = ?,
                        version = version + 1,
                        updated_at = ?
                    WHERE id = ? AND version = ?
                """, (
                    data['account_holder_name'], data['principal_amount'],
                    data['interest_rate'], data['accrued_interest'],
                    data['last_applied_at'], self._applied_date(account),
                    datetime.now(timezone.utc).isoformat(),
                    account_id, expected_version
                ))
                self._connection.commit()
            except sqlite3.Error as e:
                self._connection.rollback()
                raise StorageError(f"Write to account {account_id} failed: {e}") from e

            if cursor.rowcount == 0:
                current = self.load(account_id)
                if current is None:
                    raise AccountNotFoundError(account_id)
                raise VersionConflictError(account_id, expected_version, current.version)

            return self.load(account_id)

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_account_store(database_url: str, tz: Optional[tzinfo] = None) -> AccountStore:
    """
    Build an account store from a database URL.

    Supported forms: "memory://" and "sqlite:///path/to/file.db"
    ("sqlite:///:memory:" for a throwaway SQLite database).
    """
    if database_url.startswith("memory://"):
        return InMemoryAccountStore(tz=tz)
    if database_url.startswith("sqlite:///"):
        return SQLiteAccountStore(database_url[len("sqlite:///"):], tz=tz)
    raise ValueError(f"Unsupported database URL: {database_url}")
