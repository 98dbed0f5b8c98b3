"""
Schedulers that start notification sends.

This module handles:
- Recurring notifications (daily, weekly, monthly schedules)
- RSS-triggered notifications with per-feed daily limits
"""

from .recurrence import RecurrenceClock, advance, state
from .rss_trigger import RssTrigger

__all__ = [
    'RecurrenceClock',
    'RssTrigger',
    'advance',
    'state',
]
