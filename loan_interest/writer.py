"""
Accrual Writer Module

Applies one account mutation as a read-modify-write conditioned on the
account version. This is the only place account rows change after creation.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from .logging_config import get_logger
from .models import LoanAccount, ZERO
from .storage import AccountStore, StorageError, VersionConflictError


logger = get_logger("loan_interest.writer")

Mutation = Callable[[LoanAccount], LoanAccount]


class WriteStatus(Enum):
    """Outcome of a conditional account write"""
    SUCCESS = "success"
    VERSION_CONFLICT = "version_conflict"
    PERSISTENCE_ERROR = "persistence_error"


@dataclass(frozen=True)
class WriteResult:
    status: WriteStatus
    account: Optional[LoanAccount] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == WriteStatus.SUCCESS


def add_daily_interest(amount: Decimal, applied_at: datetime) -> Mutation:
    """Mutation adding one day's interest and stamping the accrual time"""
    def mutate(account: LoanAccount) -> LoanAccount:
        return replace(
            account,
            accrued_interest=account.accrued_interest + amount,
            last_applied_at=applied_at
        )
    return mutate


def transfer_accrued_to_principal() -> Mutation:
    """Mutation compounding accrued interest into principal"""
    def mutate(account: LoanAccount) -> LoanAccount:
        return replace(
            account,
            principal_amount=account.principal_amount + account.accrued_interest,
            accrued_interest=ZERO
        )
    return mutate


class AccrualWriter:
    """Conditional single-account writer over an AccountStore"""

    def __init__(self, store: AccountStore):
        self.store = store

    def write_mutation(self, account_id: str, expected_version: int, mutation: Mutation) -> WriteResult:
        """
        Read the account, apply the mutation and write it back only if the
        stored version is still expected_version.

        Invariant violations raised by the mutated record (ValueError)
        propagate to the caller.
        """
        try:
            current = self.store.load(account_id)
        except StorageError as e:
            return WriteResult(WriteStatus.PERSISTENCE_ERROR, error=str(e))

        if current is None:
            return WriteResult(WriteStatus.PERSISTENCE_ERROR, error=f"Account {account_id} not found")

        if current.version != expected_version:
            logger.debug(
                f"Stale read for account {account_id}: expected version "
                f"{expected_version}, stored {current.version}"
            )
            return WriteResult(
                WriteStatus.VERSION_CONFLICT,
                error=str(VersionConflictError(account_id, expected_version, current.version))
            )

        mutated = mutation(current)

        try:
            written = self.store.compare_and_write(account_id, expected_version, mutated)
        except VersionConflictError as e:
            return WriteResult(WriteStatus.VERSION_CONFLICT, error=str(e))
        except StorageError as e:
            return WriteResult(WriteStatus.PERSISTENCE_ERROR, error=str(e))

        return WriteResult(WriteStatus.SUCCESS, account=written)
