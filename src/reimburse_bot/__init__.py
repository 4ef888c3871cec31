"""
Slack → Receipt Extraction → Confirmation → Harvest Expense

A Slack bot that turns reimbursement requests (typed in a modal or read from a
receipt photo by a vision model) into Harvest expenses, with encrypted
per-user credentials and currency normalization to the ledger's base currency.
"""

__version__ = "0.1.0"
