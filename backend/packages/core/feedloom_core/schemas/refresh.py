"""
Feed refresh schemas.

Request and response models for the refresh operation. Responses
serialize with camelCase keys.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RefreshRequest(BaseModel):
    """Refresh request; omitting feed_ids refreshes every feed of the user."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    feed_ids: list[str] | None = None


class FeedRefreshResult(BaseModel):
    """Outcome of refreshing one feed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    feed_id: str
    feed_url: str
    new_item_count: int = 0
    status: Literal["success", "error"]
    fetch_state: Literal["updated", "not_modified"] | None = None
    error_code: str | None = None
    error_message: str | None = None


class RefreshResponse(BaseModel):
    """Aggregate refresh response: one result per requested feed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    results: list[FeedRefreshResult] = Field(default_factory=list)
    retention_deleted_count: int = 0
    message: str | None = None

    @property
    def total_new_items(self) -> int:
        """New items across successfully refreshed feeds."""
        return sum(r.new_item_count for r in self.results if r.status == "success")

    def to_payload(self) -> dict:
        """Serialize to the wire format."""
        return self.model_dump(by_alias=True, exclude_none=True)
