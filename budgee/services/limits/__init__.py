"""Spending limit configuration, evaluation and monitoring."""

from budgee.services.limits.evaluator import (
    SpendingAlertTracker,
    SpendingLimitEvaluator,
    build_limit_state,
    classify,
)
from budgee.services.limits.monitor import SpendingLimitMonitor
from budgee.services.limits.store import SpendingLimitStore, period_elapsed

__all__ = [
    "SpendingAlertTracker",
    "SpendingLimitEvaluator",
    "SpendingLimitMonitor",
    "SpendingLimitStore",
    "build_limit_state",
    "classify",
    "period_elapsed",
]
