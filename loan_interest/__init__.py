"""
Loan Interest Engine

Daily simple-interest accrual and month-end compounding for loan accounts,
using Decimal arithmetic and optimistic version control on every row write.
"""

__version__ = "1.0.0"
