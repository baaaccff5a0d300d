"""
Private Lending

Tracks informal loans between two private parties: debt-acknowledgment
contracts, repayment status, late-payment penalties and borrower reminders.
All monetary values use Decimal.
"""

__version__ = "1.0.0"
