"""
Domain caches of the console, all built on KeyedResourceCache.
"""

from typing import Dict, Optional

from shared.metrics import MetricsCollector
from ..adapters import BackendApiClient
from ..caching import DEFAULT_CAPACITY, KeyedResourceCache, Reporter
from .activity import ActivityCache, ActivityEntry, ActivityFeed
from .balances import BalanceCache, DebtRelationship, GroupBalance, GroupBalanceSummary, UserBalance
from .base import ApiModel
from .expenses import CreateExpensePayload, Expense, ExpenseCache, ExpenseSplit
from .groups import AddMembersPayload, Group, GroupCache, GroupMember
from .users import User, UserCache


class ConsoleCaches:
    """Every domain cache, sharing one backend client and one error reporter."""

    def __init__(
        self,
        client: BackendApiClient,
        reporter: Reporter,
        capacity: int = DEFAULT_CAPACITY,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.client = client
        self.reporter = reporter
        self.activity = ActivityCache(client, reporter, capacity, metrics)
        self.balances = BalanceCache(client, reporter, capacity, metrics)
        self.expenses = ExpenseCache(client, reporter, capacity, metrics)
        self.groups = GroupCache(client, reporter, capacity, metrics)
        self.users = UserCache(client, reporter, capacity, metrics)

    def all(self) -> Dict[str, KeyedResourceCache]:
        """Every underlying keyed cache by name."""
        caches = [
            self.activity.groups.cache,
            self.activity.users.cache,
            self.activity.expenses.cache,
            self.balances.group_balances,
            self.balances.user_balances,
            self.expenses.expenses,
            self.groups.groups,
            self.users.profiles,
        ]
        return {cache.name: cache for cache in caches}

    def clear_errors(self) -> None:
        for domain in (self.activity, self.balances, self.expenses, self.groups, self.users):
            domain.clear_error()


__all__ = [
    "ActivityCache",
    "ActivityEntry",
    "ActivityFeed",
    "AddMembersPayload",
    "ApiModel",
    "BalanceCache",
    "ConsoleCaches",
    "CreateExpensePayload",
    "DebtRelationship",
    "Expense",
    "ExpenseCache",
    "ExpenseSplit",
    "Group",
    "GroupBalance",
    "GroupBalanceSummary",
    "GroupCache",
    "GroupMember",
    "User",
    "UserBalance",
    "UserCache",
]
