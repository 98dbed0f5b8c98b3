"""
Notification dispatch for the push platform.

This module handles:
- Planning one delivery job per subscriber for a notification send
- Delivering jobs through Web Push with bounded concurrency and rate limiting
- Recording delivery outcomes and the notification status machine
- The CLI for sends and recurring schedule ticks
"""

from .dispatcher import NotificationDispatcher, SendReport
from .executor import DeliveryExecutor, summarize_outcomes
from .planner import build_payload, plan

__all__ = [
    'NotificationDispatcher',
    'SendReport',
    'DeliveryExecutor',
    'summarize_outcomes',
    'build_payload',
    'plan',
]
