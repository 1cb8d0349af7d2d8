"""
Interest Calculation Module

Computes one day of simple interest for a loan account. All arithmetic is
fixed-point Decimal with explicit scales and ROUND_HALF_UP, so the same inputs
always produce the same amount.
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP, localcontext
from typing import Optional

from .logging_config import get_logger
from .models import LoanAccount


logger = get_logger("loan_interest.interest")

MONEY_SCALE = 6
RATE_SCALE = MONEY_SCALE + 2
SUPPORTED_DAY_COUNT_BASES = (365, 366)

# Enough digits that truncating an intermediate quotient can never move it
# across a half-up boundary at the target scale
_WORKING_PRECISION = 64

_HUNDRED = Decimal('100')
_ZERO = Decimal('0')


def _divide(numerator: Decimal, divisor: Decimal, scale: int) -> Decimal:
    """numerator / divisor rounded half-up to `scale` places, without double rounding"""
    with localcontext() as ctx:
        ctx.prec = _WORKING_PRECISION
        ctx.rounding = ROUND_DOWN
        quotient = numerator / divisor
        return quotient.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP)


def validate_day_count_basis(day_count_basis: int) -> int:
    if day_count_basis not in SUPPORTED_DAY_COUNT_BASES:
        raise ValueError(
            f"Day count basis must be one of {SUPPORTED_DAY_COUNT_BASES}, got {day_count_basis}"
        )
    return day_count_basis


def compute_daily_interest(
    principal: Optional[Decimal],
    annual_rate_percent: Optional[Decimal],
    day_count_basis: int
) -> Decimal:
    """
    Calculate one day's interest on a principal

    Args:
        principal: Outstanding principal amount
        annual_rate_percent: Annual nominal rate as a percentage (10 means 10%)
        day_count_basis: Days per year used as divisor (365 or 366)

    Returns:
        Daily interest rounded half-up to 6 decimal places. A missing
        principal or rate yields zero.
    """
    if principal is None or annual_rate_percent is None:
        logger.debug("Missing principal or rate, treating daily interest as zero")
        return _ZERO

    validate_day_count_basis(day_count_basis)

    rate_fraction = _divide(Decimal(annual_rate_percent), _HUNDRED, RATE_SCALE)

    with localcontext() as ctx:
        ctx.prec = _WORKING_PRECISION
        annual_interest = Decimal(principal) * rate_fraction

    return _divide(annual_interest, Decimal(day_count_basis), MONEY_SCALE)


class DailyInterestCalculator:
    """Daily interest calculator bound to a configured day count basis"""

    def __init__(self, day_count_basis: int = 365):
        self.day_count_basis = validate_day_count_basis(day_count_basis)

    def daily_interest(self, principal: Optional[Decimal], annual_rate_percent: Optional[Decimal]) -> Decimal:
        return compute_daily_interest(principal, annual_rate_percent, self.day_count_basis)

    def for_account(self, account: LoanAccount) -> Decimal:
        return self.daily_interest(account.principal_amount, account.interest_rate)
