"""
Microfinance Loan Engine

Repayment schedules (declining balance and flat rate), loan-type policy,
loan origination and repayment processing with interest distribution to
savings accounts. All financial calculations use Decimal precision.
"""

__version__ = "1.0.0"
