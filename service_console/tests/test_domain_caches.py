"""
Tests for the domain caches (balances, expenses, activity, groups, users).
"""

import json

import httpx
import pytest

from shared.errors import NotFoundError, TransientError, ValidationError
from shared.retry import RetryConfig
from shared.test_helpers import RecordingReporter, TestDataFactory, json_backend
from service_console.app.adapters import BackendApiClient
from service_console.app.caching import CacheStatus
from service_console.app.domain import (
    ActivityEntry,
    ConsoleCaches,
    CreateExpensePayload,
    Expense,
    GroupBalance,
    UserBalance,
)


def make_caches(routes, calls=None, capacity=50):
    client = BackendApiClient(
        "http://backend.test/api",
        retry_config=RetryConfig(max_attempts=1),
        transport=json_backend(routes, calls),
    )
    reporter = RecordingReporter()
    return ConsoleCaches(client, reporter, capacity=capacity), reporter


def expense_payload(**overrides):
    fields = {"description": "Dinner", "amount": 60, "paid_by": 1, "participant_ids": [1, 2]}
    fields.update(overrides)
    return CreateExpensePayload(**fields)


class TestModels:
    """Backend payloads to domain models."""

    def test_group_balance_serializes_camel_case(self):
        balance = GroupBalance.model_validate({"user_id": 1, "user_name": "Alice", "balance": 50.0})

        assert balance.model_dump(by_alias=True, exclude_defaults=True) == {
            "userId": 1,
            "userName": "Alice",
            "balance": 50,
        }

    def test_group_balance_coerces_numbers_and_debts(self):
        balance = GroupBalance.model_validate(TestDataFactory.group_balances()[0])

        assert balance.balance == 50.0
        assert balance.owes == []
        assert balance.owed_by[0].user_id == 2
        assert balance.owed_by[0].amount == 50.0
        assert balance.to_api()["owedBy"] == [{"userId": 2, "userName": "Bob", "amount": 50.0}]

    def test_group_balance_accepts_debt_maps(self):
        balance = GroupBalance.model_validate(
            {"userId": 3, "userName": "Carol", "balance": -10, "owes": {"1": 10}, "owed": None}
        )

        assert balance.owes[0].user_id == 1
        assert balance.owes[0].amount == 10.0
        assert balance.owed_by == []

    def test_user_balance(self):
        balance = UserBalance.model_validate(TestDataFactory.user_balance(4))

        assert balance.user_id == 4
        assert balance.overall_balance == 75.5
        assert [g.group_name for g in balance.group_balances] == ["Trip", "Flat"]

    def test_expense_accepts_both_key_styles(self):
        snake = Expense.model_validate(TestDataFactory.expense(5))
        camel = Expense.model_validate(snake.to_api())

        assert camel == snake
        assert snake.to_api()["paidBy"] == 1
        assert snake.splits[0].amount == 15.0

    def test_activity_entry_accepts_log_rows(self):
        entry = ActivityEntry.model_validate(
            {"id": 1, "action": "expense_created", "details": "Dinner", "created_at": "2024-02-01T10:00:00Z"}
        )

        assert entry.type == "expense_created"
        assert entry.description == "Dinner"
        assert entry.timestamp == "2024-02-01T10:00:00Z"

    @pytest.mark.parametrize("overrides, problem", [
        ({"amount": 0}, "Amount must be greater than zero"),
        ({"amount": -5}, "Amount must be greater than zero"),
        ({"description": "   "}, "Description is required"),
        ({"paid_by": 0}, "Valid payer is required"),
        ({"participant_ids": []}, "At least one participant is required"),
        ({"participant_ids": [1, -2]}, "Participants must have valid IDs"),
    ])
    def test_create_payload_problems(self, overrides, problem):
        assert expense_payload(**overrides).problem() == problem

    def test_create_payload_request_body(self):
        payload = expense_payload(description="  Dinner  ")

        assert payload.problem() is None
        assert payload.request_body() == {
            "description": "Dinner",
            "amount": 60.0,
            "paidBy": 1,
            "participantIds": [1, 2],
        }


class TestBalanceCache:
    """Group and user balances."""

    @pytest.mark.asyncio
    async def test_group_balances(self):
        caches, _ = make_caches({"GET /api/groups/1/balances": TestDataFactory.group_balances()})
        balances = caches.balances

        result = await balances.load_group_balances(1)

        assert [b.user_name for b in result] == ["Alice", "Bob"]
        assert balances.net_total(1) == 0
        assert balances.find_user_balance_in_group(1, 2).balance == -50
        assert balances.find_user_balance_in_group(1, 9) is None
        assert balances.total_cached_balances() == 2
        assert [b.user_id for b in balances.creditors(1)] == [1]
        assert [b.user_id for b in balances.debtors(1)] == [2]

    @pytest.mark.asyncio
    async def test_user_balance(self):
        caches, _ = make_caches({"GET /api/users/1/balance": TestDataFactory.user_balance(1)})

        balance = await caches.balances.load_user_balance(1)

        assert balance.overall_balance == 75.5
        assert caches.balances.balance_for_user(1) == balance
        assert caches.balances.balance_for_user(2) is None

    @pytest.mark.asyncio
    async def test_server_error_keeps_balances(self):
        responses = [TestDataFactory.group_balances(), (500, {"error": "relation balances does not exist"})]

        def route(request):
            body = responses.pop(0)
            if isinstance(body, tuple):
                return httpx.Response(body[0], json=body[1])
            return httpx.Response(200, json=body)

        caches, reporter = make_caches({"GET /api/groups/1/balances": route})

        await caches.balances.load_group_balances(1)
        result = await caches.balances.refresh_group_balances(1)

        assert len(result) == 2
        assert caches.balances.group_balances.status(1) == CacheStatus.SUCCESS
        assert caches.balances.error == "Unable to load group balances. Please try again."
        assert reporter.messages == ["Unable to load group balances. Please try again."]

    @pytest.mark.asyncio
    async def test_invalid_ids(self):
        caches, reporter = make_caches({})

        with pytest.raises(ValidationError, match="Invalid group ID"):
            await caches.balances.load_group_balances(0)
        with pytest.raises(ValidationError, match="Invalid user ID"):
            await caches.balances.load_user_balance(-1)

        assert reporter.messages == ["Invalid group ID", "Invalid user ID"]

    @pytest.mark.asyncio
    async def test_clear_error(self):
        caches, _ = make_caches({})
        with pytest.raises(ValidationError):
            await caches.balances.load_group_balances(0)

        caches.balances.clear_error()
        assert caches.balances.error is None


class TestExpenseCache:
    """Expense lists and mutations."""

    @pytest.mark.asyncio
    async def test_load_and_projections(self):
        caches, _ = make_caches({
            "GET /api/groups/1/expenses": [TestDataFactory.expense(1, 1, 30), TestDataFactory.expense(2, 1, 12.5)],
            "GET /api/groups/2/expenses": [TestDataFactory.expense(3, 2, 7)],
        })
        expenses = caches.expenses

        await expenses.load_expenses(1)
        await expenses.load_expenses(2)

        assert expenses.total_amount(1) == 42.5
        assert expenses.has_expenses(1)
        assert not expenses.has_expenses(3)
        assert expenses.find_expense(2, group_id=1).amount == 12.5
        assert expenses.find_expense(3).group_id == 2
        assert expenses.find_expense(3, group_id=1) is None
        assert expenses.find_expense(0) is None
        assert [e.id for e in expenses.all_expenses()] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_create_expense_prepends(self):
        calls = []
        created = TestDataFactory.expense(10, 1, 60, description="Dinner")
        caches, reporter = make_caches({
            "GET /api/groups/1/expenses": [TestDataFactory.expense(1, 1, 30)],
            "POST /api/groups/1/expenses": (201, created),
        }, calls)
        expenses = caches.expenses
        await expenses.load_expenses(1)

        result = await expenses.create_expense(1, expense_payload(description=" Dinner "))

        assert result.id == 10
        assert [e.id for e in expenses.expenses_for_group(1)] == [10, 1]
        assert expenses.expenses.status(1) == CacheStatus.SUCCESS
        assert json.loads(calls[-1].content) == {
            "description": "Dinner",
            "amount": 60.0,
            "paidBy": 1,
            "participantIds": [1, 2],
        }
        assert reporter.clears == 2

    @pytest.mark.asyncio
    async def test_create_expense_rejects_bad_payload_before_sending(self):
        calls = []
        caches, reporter = make_caches({}, calls)

        with pytest.raises(ValidationError, match="Amount must be greater than zero"):
            await caches.expenses.create_expense(1, expense_payload(amount=0))

        assert calls == []
        assert caches.expenses.error == "Amount must be greater than zero"
        assert reporter.messages == ["Amount must be greater than zero"]

    @pytest.mark.asyncio
    async def test_create_expense_failure_restores_list(self):
        caches, _ = make_caches({
            "GET /api/groups/1/expenses": [TestDataFactory.expense(1, 1, 30)],
            "POST /api/groups/1/expenses": (500, {"error": "insert failed"}),
        })
        expenses = caches.expenses
        await expenses.load_expenses(1)
        before = expenses.expenses.store.get(1)

        result = await expenses.create_expense(1, expense_payload())

        assert result is None
        assert expenses.expenses.store.get(1) == before
        assert expenses.error == "Unable to create expense. Please try again."

    @pytest.mark.asyncio
    async def test_create_expense_can_raise_the_failure(self):
        caches, reporter = make_caches({
            "GET /api/groups/1/expenses": [TestDataFactory.expense(1, 1, 30)],
            "POST /api/groups/1/expenses": (502, {"error": "upstream"}),
        })
        expenses = caches.expenses
        await expenses.load_expenses(1)

        with pytest.raises(TransientError, match="Unable to create expense"):
            await expenses.create_expense(1, expense_payload(), raise_errors=True)

        assert [e.id for e in expenses.expenses_for_group(1)] == [1]
        assert reporter.messages == ["Unable to create expense. Please try again."]

    @pytest.mark.asyncio
    async def test_create_expense_client_error_message(self):
        caches, _ = make_caches({
            "POST /api/groups/4/expenses": (400, {"message": "Payer is not a member of this group"}),
        })

        result = await caches.expenses.create_expense(4, expense_payload())

        assert result is None
        assert caches.expenses.error == "Payer is not a member of this group"
        assert 4 not in caches.expenses.expenses.store
        assert caches.expenses.expenses.policy.access_order == []

    @pytest.mark.asyncio
    async def test_delete_expense(self):
        caches, _ = make_caches({
            "GET /api/groups/1/expenses": [TestDataFactory.expense(1), TestDataFactory.expense(2)],
            "DELETE /api/expenses/1": {"message": "Expense deleted"},
        })
        expenses = caches.expenses
        await expenses.load_expenses(1)

        assert await expenses.delete_expense(1, 1) is True
        assert [e.id for e in expenses.expenses_for_group(1)] == [2]

    @pytest.mark.asyncio
    async def test_delete_expense_failure(self):
        caches, _ = make_caches({
            "GET /api/groups/1/expenses": [TestDataFactory.expense(1)],
            "DELETE /api/expenses/1": (503, "unavailable"),
        })
        expenses = caches.expenses
        await expenses.load_expenses(1)

        assert await expenses.delete_expense(1, 1) is False
        assert [e.id for e in expenses.expenses_for_group(1)] == [1]
        assert expenses.error == "Unable to delete expense. Please try again."

    @pytest.mark.asyncio
    async def test_delete_expense_invalid_ids(self):
        caches, _ = make_caches({})

        with pytest.raises(ValidationError, match="Invalid expense ID"):
            await caches.expenses.delete_expense(0, 1)
        with pytest.raises(ValidationError, match="Invalid group ID"):
            await caches.expenses.delete_expense(1, -3)


class TestActivityCache:
    """Paginated activity feeds."""

    @pytest.mark.asyncio
    async def test_load_more_appends_next_page(self):
        calls = []
        pages = [TestDataFactory.activities(1, 2), TestDataFactory.activities(3, 1)]

        def route(request):
            return httpx.Response(200, json=pages.pop(0))

        caches, _ = make_caches({"GET /api/groups/5/activity": route}, calls)
        feed = caches.activity.groups

        first = await feed.load(5, limit=2)
        assert len(first) == 2
        assert feed.has_more(5) is True

        result = await feed.load_more(5, limit=2)

        assert [a.id for a in result] == [1, 2, 3]
        assert feed.has_more(5) is False
        assert dict(calls[1].url.params) == {"limit": "2", "offset": "2"}
        assert [a.id for a in feed.newest_first(5)] == [3, 2, 1]
        assert [a.id for a in feed.by_type(5, "expense_created")] == [1, 3]

    @pytest.mark.asyncio
    async def test_load_more_uses_default_page_size(self):
        calls = []
        caches, _ = make_caches({"GET /api/users/2/activity": TestDataFactory.activities(1, 1)}, calls)

        await caches.activity.users.load_more(2)

        assert dict(calls[0].url.params) == {"limit": "50", "offset": "0"}

    @pytest.mark.asyncio
    async def test_scopes_have_their_own_messages(self):
        caches, _ = make_caches({"GET /api/expenses/3/activity": (502, "bad gateway")})

        with pytest.raises(ValidationError, match="Invalid expense ID"):
            await caches.activity.expenses.load(0)

        await caches.activity.expenses.load(3)
        assert caches.activity.error == "Unable to load expense activities. Please try again."

        caches.activity.clear_error()
        assert caches.activity.error is None

    def test_feed_lookup(self):
        caches, _ = make_caches({})

        assert caches.activity.feed("group") is caches.activity.groups
        with pytest.raises(ValueError):
            caches.activity.feed("tenant")


class TestGroupCache:
    """Group records, their members, and member changes."""

    @pytest.mark.asyncio
    async def test_group_with_members(self):
        caches, _ = make_caches({"GET /api/groups/1": TestDataFactory.group(1, "Trip")})
        groups = caches.groups

        group = await groups.load_group(1)

        assert group.name == "Trip"
        assert group.created_at == "2024-01-01T09:00:00Z"
        assert {m.group_id for m in group.members} == {1}
        assert groups.group(1) == group
        assert groups.group_name(1) == "Trip"
        assert groups.group_name(2) is None
        assert [m.name for m in groups.members_sorted_by_name(1)] == ["Alice", "bob", "Carol"]
        assert [m.name for m in groups.search_members(1, "CAR")] == ["Carol"]
        assert len(groups.search_members(1, "  ")) == 3
        assert groups.find_member(1, 2).name == "bob"
        assert groups.find_member(1, 9) is None

    @pytest.mark.asyncio
    async def test_group_without_members_keeps_its_record(self):
        caches, _ = make_caches({"GET /api/groups/4": TestDataFactory.group(4, "Empty flat", members=[])})
        groups = caches.groups

        group = await groups.load_group(4)

        assert group.id == 4
        assert group.members == []
        assert groups.groups.status(4) == CacheStatus.SUCCESS
        assert groups.group_name(4) == "Empty flat"
        assert groups.members_of(4) == []
        assert group.to_api()["createdAt"] == "2024-01-01T09:00:00Z"

    @pytest.mark.asyncio
    async def test_missing_group(self):
        caches, _ = make_caches({"GET /api/groups/9": (404, {"error": "Group not found"})})

        assert await caches.groups.load_group(9) is None
        assert caches.groups.groups.status(9) == CacheStatus.ERROR
        assert caches.groups.error == "Group not found"

    @pytest.mark.asyncio
    async def test_add_members_replaces_group(self):
        calls = []
        after = TestDataFactory.group(1, "Trip", members=[{"id": 1, "name": "Alice"}, {"id": 5, "name": "Eve"}])
        responses = [TestDataFactory.group(1, "Trip", members=[{"id": 1, "name": "Alice"}]), after]
        caches, reporter = make_caches({
            "GET /api/groups/1": lambda request: httpx.Response(200, json=responses.pop(0)),
            "POST /api/groups/1/members": {"message": "Members added successfully"},
        }, calls)
        groups = caches.groups
        await groups.load_group(1)

        assert await groups.add_members(1, [5]) is True

        assert [m.name for m in groups.members_of(1)] == ["Alice", "Eve"]
        assert groups.find_member(1, 5).group_name == "Trip"
        assert json.loads(calls[1].content) == {"userIds": [5]}
        assert [(c.method, c.url.path) for c in calls] == [
            ("GET", "/api/groups/1"),
            ("POST", "/api/groups/1/members"),
            ("GET", "/api/groups/1"),
        ]
        assert reporter.clears == 2

    @pytest.mark.asyncio
    async def test_add_members_failure_restores_group(self):
        caches, reporter = make_caches({
            "GET /api/groups/1": TestDataFactory.group(1, "Trip"),
            "POST /api/groups/1/members": (500, {"error": "insert failed"}),
        })
        groups = caches.groups
        await groups.load_group(1)
        before = groups.groups.store.get(1)

        assert await groups.add_members(1, [5]) is False

        assert groups.groups.store.get(1) == before
        assert groups.error == "Unable to add members to group. Please try again."
        assert reporter.messages == ["Unable to add members to group. Please try again."]

    @pytest.mark.asyncio
    async def test_add_members_reports_backend_rejection(self):
        caches, _ = make_caches({
            "GET /api/groups/1": TestDataFactory.group(1, "Trip"),
            "POST /api/groups/1/members": (400, {"error": "Invalid user IDs: 99"}),
        })
        await caches.groups.load_group(1)

        with pytest.raises(ValidationError):
            await caches.groups.add_members(1, [0])
        with pytest.raises(NotFoundError, match="Invalid user IDs: 99"):
            await caches.groups.add_members(1, [99], raise_errors=True)

        assert len(caches.groups.members_of(1)) == 3

    @pytest.mark.asyncio
    async def test_add_members_validation(self):
        calls = []
        caches, reporter = make_caches({}, calls)

        with pytest.raises(ValidationError, match="Invalid group ID"):
            await caches.groups.add_members(0, [1])
        with pytest.raises(ValidationError, match="At least one user ID is required"):
            await caches.groups.add_members(1, [])
        with pytest.raises(ValidationError, match="Invalid user ID"):
            await caches.groups.add_members(1, [2, -1])

        assert calls == []
        assert reporter.messages == [
            "Invalid group ID",
            "At least one user ID is required",
            "Invalid user ID",
        ]

    @pytest.mark.asyncio
    async def test_remove_member(self):
        responses = [TestDataFactory.group(1, "Trip"), TestDataFactory.group(1, "Trip", members=[{"id": 1, "name": "Alice"}])]
        caches, _ = make_caches({
            "GET /api/groups/1": lambda request: httpx.Response(200, json=responses.pop(0)),
            "DELETE /api/groups/1/members/2": {"message": "Member removed successfully"},
        })
        groups = caches.groups
        await groups.load_group(1)

        assert await groups.remove_member(1, 2) is True

        assert [m.id for m in groups.members_of(1)] == [1]

    @pytest.mark.asyncio
    async def test_remove_member_failure_and_validation(self):
        caches, _ = make_caches({
            "GET /api/groups/1": TestDataFactory.group(1, "Trip"),
            "DELETE /api/groups/1/members/2": (503, "unavailable"),
        })
        groups = caches.groups
        await groups.load_group(1)

        assert await groups.remove_member(1, 2) is False
        assert len(groups.members_of(1)) == 3
        assert groups.error == "Unable to remove member from group. Please try again."

        with pytest.raises(ValidationError, match="Invalid user ID"):
            await groups.remove_member(1, 0)


class TestUserCache:
    """Profiles picked out of the user listing."""

    USERS = [
        TestDataFactory.user(1, "zoe"),
        TestDataFactory.user(2, "Adam", is_admin=True),
        dict(TestDataFactory.user(3, "Mia"), role="admin"),
    ]

    @pytest.mark.asyncio
    async def test_users(self):
        calls = []
        caches, _ = make_caches({"GET /api/users": self.USERS}, calls)
        users = caches.users

        for user_id in (1, 2, 3):
            await users.load_user(user_id)

        assert {c.url.path for c in calls} == {"/api/users"}
        assert users.user(2).name == "Adam"
        assert users.user(4) is None
        assert [u.name for u in users.users_sorted_by_name()] == ["Adam", "Mia", "zoe"]
        assert [u.id for u in users.search("ZO")] == [1]
        assert [u.id for u in users.admins()] == [2, 3]

    @pytest.mark.asyncio
    async def test_user_missing_from_listing(self):
        caches, reporter = make_caches({"GET /api/users": self.USERS})
        users = caches.users
        await users.load_user(2)

        assert await users.load_user(42) is None

        assert users.profiles.status(42) == CacheStatus.ERROR
        assert users.error == "User not found"
        assert reporter.messages == ["User not found"]
        assert users.user(2).name == "Adam"

    @pytest.mark.asyncio
    async def test_listing_outage_keeps_loaded_profile(self):
        responses = [(200, self.USERS), (500, {"error": "db down"})]

        def listing(request):
            status_code, body = responses.pop(0)
            return httpx.Response(status_code, json=body)

        caches, _ = make_caches({"GET /api/users": listing})
        users = caches.users
        await users.load_user(1)

        assert await users.refresh_user(1) == users.user(1)
        assert users.user(1).name == "zoe"
        assert users.error == "Unable to load user. Please try again."

    @pytest.mark.asyncio
    async def test_users_share_capacity(self):
        caches, _ = make_caches({"GET /api/users": self.USERS}, capacity=2)

        for user_id in (1, 2, 3):
            await caches.users.load_user(user_id)

        assert caches.users.profiles.cached_keys() == [2, 3]


class TestConsoleCaches:
    """The container wiring every cache."""

    def test_all_caches_registered(self):
        caches, _ = make_caches({}, capacity=7)

        registered = caches.all()
        assert sorted(registered) == [
            "expense_activity",
            "expenses",
            "group_activity",
            "group_balances",
            "groups",
            "user_activity",
            "user_balances",
            "users",
        ]
        assert {cache.capacity for cache in registered.values()} == {7}

    @pytest.mark.asyncio
    async def test_clear_errors(self):
        caches, _ = make_caches({})
        with pytest.raises(ValidationError):
            await caches.groups.load_group(0)
        with pytest.raises(ValidationError):
            await caches.users.load_user(0)

        caches.clear_errors()

        assert caches.groups.error is None
        assert caches.users.error is None
