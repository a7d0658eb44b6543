"""
Churnflow: follow-up workflow engine for churned accounts.
"""

__version__ = "0.1.0"
