"""
Group and user balances.
"""

from typing import Any, List, Optional

from pydantic import field_validator

from ..caching import KeyedResourceCache
from .base import ApiModel, DomainCache, unwrap


class DebtRelationship(ApiModel):
    """One side of a debt between two members."""
    user_id: int
    user_name: Optional[str] = None
    amount: float


def _debts(value: Any) -> Any:
    # Accept {"<user id>": amount} maps as well as lists of relationships
    if not value:
        return []
    if isinstance(value, dict):
        return [{"user_id": int(user_id), "amount": amount} for user_id, amount in value.items()]
    return value


class GroupBalance(ApiModel):
    """A member's balance within one group."""
    user_id: int
    user_name: Optional[str] = None
    balance: float
    owes: List[DebtRelationship] = []
    owed_by: List[DebtRelationship] = []

    @field_validator("owes", "owed_by", mode="before")
    @classmethod
    def _normalize_debts(cls, value: Any) -> Any:
        return _debts(value)


class GroupBalanceSummary(ApiModel):
    group_id: int
    group_name: Optional[str] = None
    balance: float


class UserBalance(ApiModel):
    """A user's balance across every group they belong to."""
    user_id: int
    user_name: Optional[str] = None
    overall_balance: float
    group_balances: List[GroupBalanceSummary] = []

    @field_validator("group_balances", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return value or []


def transform_group_balances(payload: Any) -> List[GroupBalance]:
    return [GroupBalance.model_validate(row) for row in unwrap(payload, "balances")]


def transform_user_balance(payload: Any) -> List[UserBalance]:
    """The user balance endpoint returns one object; cache it as a one-item list."""
    if not payload:
        return []
    return [UserBalance.model_validate(payload)]


class BalanceCache(DomainCache):
    """Balances keyed by group id and by user id."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.group_balances: KeyedResourceCache[GroupBalance] = self._cache(
            "group_balances",
            "/groups/{key}/balances",
            transform_group_balances,
            fallback_message="Unable to load group balances. Please try again.",
            key_label="group",
            id_attr="user_id",
        )
        self.user_balances: KeyedResourceCache[UserBalance] = self._cache(
            "user_balances",
            "/users/{key}/balance",
            transform_user_balance,
            fallback_message="Unable to load user balance. Please try again.",
            key_label="user",
            id_attr="user_id",
        )

    async def load_group_balances(self, group_id: int) -> List[GroupBalance]:
        return await self.group_balances.load(group_id)

    async def refresh_group_balances(self, group_id: int) -> List[GroupBalance]:
        return await self.group_balances.refresh(group_id)

    async def load_user_balance(self, user_id: int) -> Optional[UserBalance]:
        balances = await self.user_balances.load(user_id)
        return balances[0] if balances else None

    async def refresh_user_balance(self, user_id: int) -> Optional[UserBalance]:
        balances = await self.user_balances.refresh(user_id)
        return balances[0] if balances else None

    def balances_for_group(self, group_id: int) -> List[GroupBalance]:
        return self.group_balances.items(group_id)

    def balance_for_user(self, user_id: int) -> Optional[UserBalance]:
        items = self.user_balances.items(user_id)
        return items[0] if items else None

    def find_user_balance_in_group(self, group_id: int, user_id: int) -> Optional[GroupBalance]:
        return self.group_balances.find_by_id(group_id, user_id)

    def net_total(self, group_id: int) -> float:
        """Sum of every member's balance in the group; 0 for a settled group."""
        return self.group_balances.view(group_id).total("balance")

    def total_cached_balances(self) -> int:
        return self.group_balances.total_items()

    def creditors(self, group_id: int) -> List[GroupBalance]:
        return self.group_balances.view(group_id).where(lambda b: b.balance > 0)

    def debtors(self, group_id: int) -> List[GroupBalance]:
        return self.group_balances.view(group_id).where(lambda b: b.balance < 0)

    @property
    def error(self) -> Optional[str]:
        return self.group_balances.error or self.user_balances.error

    def clear_error(self) -> None:
        self.group_balances.clear_error()
        self.user_balances.clear_error()
