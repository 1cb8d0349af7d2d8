"""
Loan Account Records

Record types persisted by the account stores. All monetary values are Decimal
and are serialized as strings; dates and timestamps as ISO-8601 strings.
"""

from decimal import Decimal
from datetime import datetime, date, tzinfo
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


ZERO = Decimal('0')
MAX_INTEREST_RATE = Decimal('100')


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


@dataclass
class LoanAccount(StorageRecord):
    """
    Interest-bearing loan account

    interest_rate is an annual nominal percentage (7.25 means 7.25%).
    accrued_interest holds interest accrued daily but not yet compounded
    into principal_amount. version is bumped by the store on every write.
    """
    account_holder_name: str
    principal_amount: Decimal
    interest_rate: Decimal
    date_of_disbursal: date
    accrued_interest: Decimal = ZERO
    last_applied_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        if self.principal_amount < ZERO:
            raise ValueError("Principal amount cannot be negative")

        if self.accrued_interest < ZERO:
            raise ValueError("Accrued interest cannot be negative")

        if self.interest_rate < ZERO or self.interest_rate > MAX_INTEREST_RATE:
            raise ValueError("Interest rate must be between 0 and 100")

        if self.version < 0:
            raise ValueError("Version cannot be negative")

    def last_applied_date(self, tz: Optional[tzinfo] = None) -> Optional[date]:
        """Calendar date of the last successful accrual, in the given zone"""
        if self.last_applied_at is None:
            return None
        if tz is not None:
            return self.last_applied_at.astimezone(tz).date()
        return self.last_applied_at.date()

    def needs_interest_for(self, for_date: date, tz: Optional[tzinfo] = None) -> bool:
        """Eligible when never accrued, or last accrued on an earlier date"""
        applied = self.last_applied_date(tz)
        return applied is None or applied < for_date

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['date_of_disbursal'] = self.date_of_disbursal.isoformat()
        result['last_applied_at'] = (
            self.last_applied_at.isoformat() if self.last_applied_at else None
        )
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanAccount':
        data = dict(data)
        data['principal_amount'] = Decimal(data['principal_amount'])
        data['interest_rate'] = Decimal(data['interest_rate'])
        data['accrued_interest'] = Decimal(data.get('accrued_interest', '0'))
        data['date_of_disbursal'] = date.fromisoformat(data['date_of_disbursal'])
        if data.get('last_applied_at'):
            data['last_applied_at'] = datetime.fromisoformat(data['last_applied_at'])
        else:
            data['last_applied_at'] = None
        data['version'] = int(data.get('version', 0))
        return super().from_dict(data)
