"""
Activity feeds scoped to a group, a user, or an expense.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field

from ..caching import KeyedResourceCache, LoadOptions
from .base import ApiModel, DomainCache, unwrap

DEFAULT_PAGE_SIZE = 50


class ActivityEntry(ApiModel):
    """One entry of an activity log."""
    id: int
    type: str = Field(default="", validation_alias=AliasChoices("type", "action"))
    description: Optional[str] = Field(default=None, validation_alias=AliasChoices("description", "details"))
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    group_id: Optional[int] = None
    group_name: Optional[str] = None
    expense_id: Optional[int] = None
    expense_description: Optional[str] = None
    amount: Optional[float] = None
    timestamp: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("timestamp", "createdAt", "created_at"),
    )
    metadata: Optional[Dict[str, Any]] = None


def transform_activities(payload: Any) -> List[ActivityEntry]:
    return [ActivityEntry.model_validate(row) for row in unwrap(payload, "activities")]


class ActivityFeed:
    """Paginated activity for one scope (group, user or expense)."""

    def __init__(self, cache: KeyedResourceCache[ActivityEntry], page_size: int = DEFAULT_PAGE_SIZE):
        self.cache = cache
        self.page_size = page_size

    async def load(self, key: int, limit: Optional[int] = None, offset: Optional[int] = None) -> List[ActivityEntry]:
        return await self.cache.load(key, LoadOptions(limit=limit, offset=offset))

    async def refresh(self, key: int, limit: Optional[int] = None) -> List[ActivityEntry]:
        return await self.cache.refresh(key, LoadOptions(limit=limit))

    async def load_more(self, key: int, limit: Optional[int] = None) -> List[ActivityEntry]:
        """Fetch the next page and append it to what is cached."""
        self.cache.validate_key(key)
        offset = self.cache.view(key).count
        return await self.cache.load(key, LoadOptions(limit=limit or self.page_size, offset=offset))

    def activities(self, key: int) -> List[ActivityEntry]:
        return self.cache.items(key)

    def by_type(self, key: int, activity_type: str) -> List[ActivityEntry]:
        return self.cache.view(key).where(lambda entry: entry.type == activity_type)

    def newest_first(self, key: int) -> List[ActivityEntry]:
        return self.cache.view(key).sorted_by("timestamp", reverse=True)

    def has_more(self, key: int) -> bool:
        return self.cache.view(key).has_more


class ActivityCache(DomainCache):
    """Activity feeds for the three scopes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.groups = ActivityFeed(self._cache(
            "group_activity",
            "/groups/{key}/activity",
            transform_activities,
            fallback_message="Unable to load group activities. Please try again.",
            key_label="group",
        ))
        self.users = ActivityFeed(self._cache(
            "user_activity",
            "/users/{key}/activity",
            transform_activities,
            fallback_message="Unable to load user activities. Please try again.",
            key_label="user",
        ))
        self.expenses = ActivityFeed(self._cache(
            "expense_activity",
            "/expenses/{key}/activity",
            transform_activities,
            fallback_message="Unable to load expense activities. Please try again.",
            key_label="expense",
        ))

    def feed(self, scope: str) -> ActivityFeed:
        """Feed for ``scope``: one of ``group``, ``user``, ``expense``."""
        feeds = {"group": self.groups, "user": self.users, "expense": self.expenses}
        try:
            return feeds[scope]
        except KeyError:
            raise ValueError(f"Unknown activity scope: {scope}")

    @property
    def error(self) -> Optional[str]:
        for feed in (self.groups, self.users, self.expenses):
            if feed.cache.error:
                return feed.cache.error
        return None

    def clear_error(self) -> None:
        for feed in (self.groups, self.users, self.expenses):
            feed.cache.clear_error()
