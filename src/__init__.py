"""
Family Expense Tracker - Source Package

The client-side core of a family expense tracker: parents and children
record expenses and budgets, a parent sees the whole family.

DESIGN PRINCIPLES:
1. Authorization is enforced in the core, not the screens
2. Fail early, fail visibly
3. The store owns the records; the core holds a session copy
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Family Expense Tracker Team"
