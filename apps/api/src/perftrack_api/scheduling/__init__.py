"""Scheduling utilities for recurring housekeeping."""

from .config import JobDefinition, ScheduleConfig, load_schedule
from .runner import JobScheduler

__all__ = ["JobDefinition", "JobScheduler", "ScheduleConfig", "load_schedule"]
