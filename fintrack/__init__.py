"""
fintrack - Source Package

A personal and small-business finance tracker: accounts, transactions,
purchases, lend/borrow records, donations and savings, with a complete
activity history.

DESIGN PRINCIPLES:
1. Balances are derived from transactions, never edited by hand
2. Fail early, fail visibly
3. No silent corrections
4. Every mutation is recorded in the activity history
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "fintrack Team"
