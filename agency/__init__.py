"""
Agency back-office — budgets, contracts, staged payments and projects.
"""

__version__ = "1.0.0"
