"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field

from ..models import LoanAccount
from ..results import AccrualResult


class CreateAccountRequest(BaseModel):
    account_holder_name: str = Field(..., min_length=1, description="Borrower name")
    principal_amount: Decimal = Field(..., ge=Decimal('0.01'), description="Disbursed principal")
    interest_rate: Decimal = Field(..., ge=Decimal('0'), le=Decimal('100'),
                                   description="Annual rate in percent")
    date_of_disbursal: date


class AccountResponse(BaseModel):
    id: str
    account_holder_name: str
    principal_amount: str = Field(..., description="Decimal amount as string")
    interest_rate: str
    accrued_interest: str = Field(..., description="Interest accrued since last compounding")
    date_of_disbursal: date
    last_applied_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: LoanAccount) -> 'AccountResponse':
        return cls(
            id=account.id,
            account_holder_name=account.account_holder_name,
            principal_amount=str(account.principal_amount),
            interest_rate=str(account.interest_rate),
            accrued_interest=str(account.accrued_interest),
            date_of_disbursal=account.date_of_disbursal,
            last_applied_at=account.last_applied_at,
            version=account.version,
            created_at=account.created_at,
            updated_at=account.updated_at
        )


class AccrualResultResponse(BaseModel):
    date: date
    total_accounts_processed: int
    failed_accounts: int
    total_interest_applied: str = Field(..., description="Decimal amount as string")
    duration_ms: int
    cancelled: bool = False

    @classmethod
    def from_result(cls, result: AccrualResult) -> 'AccrualResultResponse':
        return cls(
            date=result.date,
            total_accounts_processed=result.total_accounts_processed,
            failed_accounts=result.failed_accounts,
            total_interest_applied=str(result.total_interest_applied),
            duration_ms=result.duration_ms,
            cancelled=result.cancelled
        )
