"""
User profiles keyed by user id.

The backend only lists users (`GET /users`), so each profile is picked out
of that listing by id.
"""

from typing import Any, List, Optional

from ..adapters import DirectoryTransport
from ..caching import KeyedResourceCache
from ..caching.views import sort_key
from .base import ApiModel, DomainCache


class User(ApiModel):
    id: int
    name: str
    is_admin: bool = False
    role: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def admin(self) -> bool:
        return self.is_admin or self.role == "admin"


def transform_user(payload: Any) -> List[User]:
    if not payload:
        return []
    return [User.model_validate(payload)]


class UserCache(DomainCache):
    """One profile per cached user id."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.profiles: KeyedResourceCache[User] = self._cache_over(
            "users",
            DirectoryTransport(self.client, "/users", missing_message="User not found"),
            transform_user,
            fallback_message="Unable to load user. Please try again.",
            not_found_message="User not found",
            key_label="user",
        )

    async def load_user(self, user_id: int) -> Optional[User]:
        users = await self.profiles.load(user_id)
        return users[0] if users else None

    async def refresh_user(self, user_id: int) -> Optional[User]:
        users = await self.profiles.refresh(user_id)
        return users[0] if users else None

    def user(self, user_id: int) -> Optional[User]:
        return self.profiles.find_by_id(user_id, user_id)

    def users_sorted_by_name(self) -> List[User]:
        return sorted(self.profiles.all_items(), key=lambda u: sort_key(u.name))

    def search(self, query: Optional[str]) -> List[User]:
        needle = (query or "").strip().casefold()
        users = self.profiles.all_items()
        if not needle:
            return users
        return [u for u in users if needle in u.name.casefold()]

    def admins(self) -> List[User]:
        return [u for u in self.profiles.all_items() if u.admin]

    @property
    def error(self) -> Optional[str]:
        return self.profiles.error

    def clear_error(self) -> None:
        self.profiles.clear_error()
