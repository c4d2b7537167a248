"""
Personal Budget - Source Package

A personal budgeting application: a general limit split into
percentage groups, income and expense transactions recorded against
them, and balances derived on every read.

DESIGN PRINCIPLES:
1. Every row belongs to exactly one user
2. Balances are derived, never stored
3. Fail early, fail visibly
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Personal Budget Team"
