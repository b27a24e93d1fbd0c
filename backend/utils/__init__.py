"""Utilities Package"""
from .retry import with_retry, calculate_delay, is_retryable_error
from .polling import PeriodicWorker

__all__ = [
    "with_retry",
    "calculate_delay",
    "is_retryable_error",
    "PeriodicWorker",
]
