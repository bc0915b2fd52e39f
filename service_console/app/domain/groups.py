"""
Group details: each group record together with its members.
"""

from typing import Any, List, Optional

from ..caching import KeyedResourceCache, is_valid_key
from ..caching.views import sort_key
from .base import ApiModel, DomainCache


class GroupMember(ApiModel):
    id: int
    name: str
    group_id: int
    group_name: Optional[str] = None


class Group(ApiModel):
    """A group and the users that belong to it."""
    id: int
    name: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    members: List[GroupMember] = []


class AddMembersPayload(ApiModel):
    user_ids: List[int]


def transform_group(payload: Any) -> List[Group]:
    """``{id, name, ..., members: [...]}`` as a one-item list; members are tagged with their group."""
    if not payload:
        return []
    members = [
        {**member, "group_id": payload["id"], "group_name": payload.get("name")}
        for member in payload.get("members") or []
    ]
    return [Group.model_validate({**payload, "members": members})]


class GroupCache(DomainCache):
    """Groups keyed by group id."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.groups: KeyedResourceCache[Group] = self._cache(
            "groups",
            "/groups/{key}",
            transform_group,
            fallback_message="Unable to load group details. Please try again.",
            not_found_message="Group not found",
            key_label="group",
        )

    async def load_group(self, group_id: int) -> Optional[Group]:
        groups = await self.groups.load(group_id)
        return groups[0] if groups else None

    async def refresh_group(self, group_id: int) -> Optional[Group]:
        groups = await self.groups.refresh(group_id)
        return groups[0] if groups else None

    async def add_members(self, group_id: int, user_ids: List[int], raise_errors: bool = False) -> bool:
        """Add users to a group, then replace the cached group with the backend's copy."""
        self.groups.validate_key(group_id)
        if not user_ids:
            self.groups.reject("At least one user ID is required")
        if not all(is_valid_key(user_id) for user_id in user_ids):
            self.groups.reject("Invalid user ID")

        async def send() -> Any:
            await self.client.post(f"/groups/{group_id}/members", {"userIds": list(user_ids)})
            return await self.client.get(f"/groups/{group_id}")

        result = await self.groups.mutate(
            group_id, send, self._replace,
            fallback_message="Unable to add members to group. Please try again.",
            raise_errors=raise_errors,
        )
        return result is not None

    async def remove_member(self, group_id: int, user_id: int, raise_errors: bool = False) -> bool:
        """Remove one user from a group, then replace the cached group with the backend's copy."""
        self.groups.validate_key(group_id)
        if not is_valid_key(user_id):
            self.groups.reject("Invalid user ID")

        async def send() -> Any:
            await self.client.delete(f"/groups/{group_id}/members/{user_id}")
            return await self.client.get(f"/groups/{group_id}")

        result = await self.groups.mutate(
            group_id, send, self._replace,
            fallback_message="Unable to remove member from group. Please try again.",
            raise_errors=raise_errors,
        )
        return result is not None

    @staticmethod
    def _replace(_previous: List[Group], payload: Any) -> List[Group]:
        return transform_group(payload)

    def group(self, group_id: int) -> Optional[Group]:
        return self.groups.find_by_id(group_id, group_id)

    def members_of(self, group_id: int) -> List[GroupMember]:
        group = self.group(group_id)
        return list(group.members) if group else []

    def members_sorted_by_name(self, group_id: int) -> List[GroupMember]:
        return sorted(self.members_of(group_id), key=lambda m: sort_key(m.name))

    def search_members(self, group_id: int, query: Optional[str]) -> List[GroupMember]:
        needle = (query or "").strip().casefold()
        members = self.members_of(group_id)
        if not needle:
            return members
        return [m for m in members if needle in m.name.casefold()]

    def find_member(self, group_id: int, user_id: int) -> Optional[GroupMember]:
        for member in self.members_of(group_id):
            if member.id == user_id:
                return member
        return None

    def group_name(self, group_id: int) -> Optional[str]:
        group = self.group(group_id)
        return group.name if group else None

    @property
    def error(self) -> Optional[str]:
        return self.groups.error

    def clear_error(self) -> None:
        self.groups.clear_error()
