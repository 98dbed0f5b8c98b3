"""
Segment resolution: turn a site and a rule tree into the matching subscribers.

Resolution runs in two stages. The rule tree is split into a storage filter,
applied by the repository together with the base constraint (site match and
is_active = true), and a residual tree evaluated in memory against each
candidate. The output is exactly the set of active subscribers for which the
original tree evaluates true.
"""

from datetime import datetime
from typing import Any

from models.segment import Condition, Group, Segment, is_universal, parse_rule_tree
from models.subscriber import Subscriber
from models.types import SiteID
from segments.query_splitter import StorageFilter, split
from segments.repository import SubscriberRepository
from segments.rule_evaluator import filter_subscribers, find_rule_problems
from shared.utils import parse_timestamp, utc_now

RuleInput = Condition | Group | dict[str, Any] | None


class SegmentResolver:
    """Resolves segment audiences against a subscriber repository."""

    def __init__(self, repository: SubscriberRepository):
        self.repository = repository

    def _prepare(
        self, rules: RuleInput, now: datetime | None
    ) -> tuple[StorageFilter, Condition | Group | None, datetime]:
        tree = parse_rule_tree(rules)
        reference = parse_timestamp(now) or utc_now()

        for problem in find_rule_problems(tree):
            print(f"  ⚠️  Segment rule ignored (never matches): {problem}")

        # No rules and an empty AND/OR group both mean "every active subscriber"
        if is_universal(tree):
            storage_filter, residual = StorageFilter(), None
        else:
            storage_filter, residual = split(tree, reference)

        return storage_filter.with_predicate("is_active", "eq", True), residual, reference

    def resolve(
        self, site_id: SiteID, rules: RuleInput = None, now: datetime | None = None
    ) -> list[Subscriber]:
        """
        Find the active subscribers of a site that match a rule tree.

        Args:
            site_id: Site whose subscribers are considered
            rules: Rule tree (parsed or JSON); None targets all active subscribers
            now: Reference time for derived date fields

        Returns:
            Matching subscribers in repository order
        """
        storage_filter, residual, reference = self._prepare(rules, now)
        candidates = self.repository.find_by_site_with_filter(site_id, storage_filter)
        return filter_subscribers(candidates, residual, reference)

    def estimate(
        self, site_id: SiteID, rules: RuleInput = None, now: datetime | None = None
    ) -> int:
        """
        Count matching subscribers for display purposes.

        The count may be stale by the time a send resolves its audience.
        """
        storage_filter, residual, reference = self._prepare(rules, now)

        if residual is None:
            return self.repository.count_by_site_with_filter(site_id, storage_filter)

        candidates = self.repository.find_by_site_with_filter(site_id, storage_filter)
        return len(filter_subscribers(candidates, residual, reference))

    def refresh_estimate(self, segment: Segment, now: datetime | None = None) -> Segment:
        """Return a copy of the segment with a recomputed estimated_count."""
        count = self.estimate(segment.site_id, segment.rule_tree(), now)
        return segment.model_copy(update={"estimated_count": count})
