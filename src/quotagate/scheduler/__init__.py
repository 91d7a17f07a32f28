"""Recurring timers for the gateway."""

from quotagate.scheduler.service import SchedulerService

__all__ = ["SchedulerService"]
