"""Shared type definitions for type checking.

Uses NewType for IDs to provide compile-time type safety - prevents mixing
different ID types (e.g., passing SubscriberID where NotificationID expected).

Uses TypeAlias for complex types that are purely structural.
"""

from typing import Any, NewType, TypeAlias

# ID types using NewType for type safety
SiteID = NewType("SiteID", str)
SubscriberID = NewType("SubscriberID", str)
SegmentID = NewType("SegmentID", str)
NotificationID = NewType("NotificationID", str)
FeedID = NewType("FeedID", str)

# Structural aliases using TypeAlias
TagMap: TypeAlias = dict[str, Any]
UtmParams: TypeAlias = dict[str, str]
RuleTreeData: TypeAlias = dict[str, Any]  # JSON form of a segment rule tree
