"""
Segment rule engine.

This module handles:
- Evaluating rule trees against subscribers
- Splitting rule trees into a storage filter and an in-memory residual
- Resolving and estimating segment audiences
"""

from .query_splitter import StorageFilter, split
from .rule_evaluator import MISSING, evaluate
from .segment_resolver import SegmentResolver

__all__ = [
    'MISSING',
    'SegmentResolver',
    'StorageFilter',
    'evaluate',
    'split',
]
