"""
Test suite for the daily interest calculator

All amounts must match exact Decimal results at scale 6 with half-up rounding.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from loan_interest.interest import (
    compute_daily_interest, DailyInterestCalculator, MONEY_SCALE
)
from loan_interest.models import LoanAccount


class TestComputeDailyInterest:
    """Test the pure daily interest function"""

    def test_basic_calculation(self):
        """(100000 * 0.10) / 365 = 27.397260"""
        result = compute_daily_interest(Decimal('100000.00'), Decimal('10.00'), 365)
        assert result == Decimal('27.397260')

    def test_precision(self):
        """(123456.78 * 0.0725) / 365 = 24.522237"""
        result = compute_daily_interest(Decimal('123456.78'), Decimal('7.25'), 365)
        assert result == Decimal('24.522237')

    def test_result_has_money_scale(self):
        result = compute_daily_interest(Decimal('100000.00'), Decimal('10.00'), 365)
        assert result.as_tuple().exponent == -MONEY_SCALE
        assert str(result) == "27.397260"

    def test_leap_year_basis(self):
        """(5000 * 0.12) / 366 = 1.639344"""
        result = compute_daily_interest(Decimal('5000'), Decimal('12'), 366)
        assert result == Decimal('1.639344')

    def test_rate_fraction_rounded_to_eight_places(self):
        """7.123456789% becomes 0.07123457 before it is applied"""
        result = compute_daily_interest(Decimal('1000000'), Decimal('7.123456789'), 365)
        # 1000000 * 0.07123457 / 365 = 195.1632054...
        assert result == Decimal('195.163205')

    def test_half_up_on_exact_tie(self):
        """0.0000005 rounds up, not to even"""
        # 0.01825 * 0.01 / 365 = 0.0000005 exactly
        result = compute_daily_interest(Decimal('0.01825'), Decimal('1'), 365)
        assert result == Decimal('0.000001')

    def test_just_below_tie_rounds_down(self):
        result = compute_daily_interest(Decimal('0.01824'), Decimal('1'), 365)
        assert result == Decimal('0.000000')

    def test_zero_rate(self):
        assert compute_daily_interest(Decimal('100000'), Decimal('0'), 365) == Decimal('0')

    def test_zero_principal(self):
        assert compute_daily_interest(Decimal('0'), Decimal('10'), 365) == Decimal('0')

    def test_null_principal_returns_zero(self):
        assert compute_daily_interest(None, Decimal('10.00'), 365) == Decimal('0')

    def test_null_rate_returns_zero(self):
        assert compute_daily_interest(Decimal('100000.00'), None, 365) == Decimal('0')

    def test_matches_two_step_formula(self):
        """Daily interest equals round(round(R/100, 8) * P / basis, 6)"""
        cases = [
            (Decimal('250000.00'), Decimal('8.5')),
            (Decimal('999.99'), Decimal('99.99')),
            (Decimal('1.00'), Decimal('100')),
            (Decimal('75000.123456'), Decimal('3.333333')),
        ]
        for principal, rate in cases:
            rate_fraction = (rate / Decimal('100')).quantize(Decimal('0.00000001'))
            expected = (principal * rate_fraction / Decimal('365')).quantize(Decimal('0.000001'))
            assert compute_daily_interest(principal, rate, 365) == expected

    def test_deterministic(self):
        first = compute_daily_interest(Decimal('123456.78'), Decimal('7.25'), 365)
        for _ in range(10):
            assert compute_daily_interest(Decimal('123456.78'), Decimal('7.25'), 365) == first

    def test_unsupported_basis(self):
        with pytest.raises(ValueError, match="Day count basis"):
            compute_daily_interest(Decimal('100'), Decimal('10'), 360)


class TestDailyInterestCalculator:
    """Test the configured calculator"""

    def test_default_basis(self):
        calculator = DailyInterestCalculator()
        assert calculator.day_count_basis == 365
        assert calculator.daily_interest(Decimal('100000.00'), Decimal('10.00')) == Decimal('27.397260')

    def test_basis_is_configuration_not_calendar(self):
        """366 applies regardless of which date is being accrued"""
        calculator = DailyInterestCalculator(366)
        assert calculator.daily_interest(Decimal('5000'), Decimal('12')) == Decimal('1.639344')

    def test_invalid_basis_rejected_at_construction(self):
        with pytest.raises(ValueError):
            DailyInterestCalculator(360)

    def test_for_account(self):
        now = datetime.now(timezone.utc)
        account = LoanAccount(
            id="ACC001",
            created_at=now,
            updated_at=now,
            account_holder_name="Test User",
            principal_amount=Decimal('123456.78'),
            interest_rate=Decimal('7.25'),
            date_of_disbursal=date(2024, 1, 1)
        )
        assert DailyInterestCalculator(365).for_account(account) == Decimal('24.522237')
