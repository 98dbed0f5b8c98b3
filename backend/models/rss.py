"""Pydantic models for RSS-triggered notifications."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from models.types import FeedID, SegmentID, SiteID, UtmParams


class RssFeed(BaseModel):
    """Feed whose new items become push notifications."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: FeedID
    site_id: SiteID
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    segment_id: SegmentID | None = None
    icon_url: str | None = None
    utm_params: UtmParams = Field(default_factory=dict)
    show_action_buttons: bool = False
    create_draft: bool = False
    max_pushes_per_day: int | None = Field(None, ge=0)
    last_item_guid: str | None = None
    last_fetched_at: datetime | None = None
    is_active: bool = True


class RssItem(BaseModel):
    """Normalized feed item supplied by the feed-polling collaborator."""

    guid: str = Field(..., min_length=1)
    title: str = "Untitled"
    link: str = ""
    description: str = ""
    image: str | None = None
    published_at: datetime | None = None


class RssCheck(BaseModel):
    """One poll result from the feed-polling collaborator: a feed and its current items."""

    feed: RssFeed
    items: list[RssItem] = Field(default_factory=list)
