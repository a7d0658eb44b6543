"""
Background jobs for churnflow.
"""

from .auto_heal import ChurnAutoHealJob
from .scheduler import HealScheduler, get_heal_scheduler

__all__ = ["ChurnAutoHealJob", "HealScheduler", "get_heal_scheduler"]
