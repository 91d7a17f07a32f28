"""
Quota module for upstream call budgeting.

Provides the rolling-window governor that bounds how many upstream calls
the dispatcher may make per window.
"""

from quotagate.quota.governor import RateGovernor, RateWindowStatus

__all__ = [
    "RateGovernor",
    "RateWindowStatus",
]
