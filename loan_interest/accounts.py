"""
Account Management Module

Opens loan accounts and reads them back. Accounts start with no accrued
interest and version 0; after creation they are only changed by the accrual
writer.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from typing import List, Optional, Union
import uuid

from .logging_config import get_logger
from .models import LoanAccount, ZERO, MAX_INTEREST_RATE
from .storage import AccountStore


MINIMUM_PRINCIPAL = Decimal('0.01')
AMOUNT_PLACES = Decimal('0.000001')


def _to_decimal(value: Union[Decimal, str, int], field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field_name} must be a decimal number")


class AccountManager:
    """Creates and retrieves loan accounts"""

    def __init__(self, store: AccountStore):
        self.store = store
        self.logger = get_logger("loan_interest.accounts")

    def create_account(
        self,
        account_holder_name: str,
        principal_amount: Union[Decimal, str],
        interest_rate: Union[Decimal, str],
        date_of_disbursal: date
    ) -> LoanAccount:
        """
        Open a new loan account

        Args:
            account_holder_name: Borrower name, must not be blank
            principal_amount: Disbursed amount, at least 0.01
            interest_rate: Annual rate in percent, 0 to 100 inclusive
            date_of_disbursal: Date the loan was disbursed

        Returns:
            The stored account
        """
        if not account_holder_name or not account_holder_name.strip():
            raise ValueError("Account holder name must not be blank")

        principal = _to_decimal(principal_amount, "Principal amount")
        if principal < MINIMUM_PRINCIPAL:
            raise ValueError("Principal amount must be greater than 0")

        rate = _to_decimal(interest_rate, "Interest rate")
        if rate < ZERO or rate > MAX_INTEREST_RATE:
            raise ValueError("Interest rate must be between 0 and 100")

        if date_of_disbursal is None:
            raise ValueError("Date of disbursal must not be null")

        now = datetime.now(timezone.utc)
        account = LoanAccount(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_holder_name=account_holder_name.strip(),
            principal_amount=principal.quantize(AMOUNT_PLACES),
            interest_rate=rate,
            date_of_disbursal=date_of_disbursal,
            accrued_interest=ZERO.quantize(AMOUNT_PLACES)
        )

        stored = self.store.insert(account)
        self.logger.info(f"Created loan account {stored.id} for {stored.account_holder_name}")
        return stored

    def get_account(self, account_id: str) -> Optional[LoanAccount]:
        """Get account by ID"""
        return self.store.load(account_id)

    def list_accounts(self, limit: int = 20, offset: int = 0) -> List[LoanAccount]:
        """List accounts, newest first"""
        if limit < 1:
            raise ValueError("Limit must be positive")
        if offset < 0:
            raise ValueError("Offset cannot be negative")
        return self.store.list_accounts(limit=limit, offset=offset)
