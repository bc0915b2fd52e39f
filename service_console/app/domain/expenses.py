"""
Expenses per group, including create and delete.
"""

from typing import Any, List, Optional

from pydantic import field_validator

from ..caching import KeyedResourceCache, is_valid_key
from .base import ApiModel, DomainCache, unwrap


class ExpenseSplit(ApiModel):
    user_id: int
    amount: float
    percentage: Optional[float] = None
    user_name: Optional[str] = None


class Expense(ApiModel):
    """An expense paid by one member and split among participants."""
    id: int
    group_id: int
    description: str
    amount: float
    paid_by: int
    paid_by_name: Optional[str] = None
    created_at: Optional[str] = None
    splits: List[ExpenseSplit] = []
    participant_ids: List[int] = []
    participant_names: List[str] = []

    @field_validator("splits", "participant_ids", "participant_names", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return value or []


class CreateExpensePayload(ApiModel):
    """Body of a new expense; ``problem`` is checked before anything is sent."""
    description: str
    amount: float
    paid_by: int
    participant_ids: List[int] = []

    def problem(self) -> Optional[str]:
        """First reason the payload cannot be sent, or None."""
        if not self.amount > 0:
            return "Amount must be greater than zero"
        if not self.description.strip():
            return "Description is required"
        if not is_valid_key(self.paid_by):
            return "Valid payer is required"
        if not self.participant_ids:
            return "At least one participant is required"
        if not all(is_valid_key(pid) for pid in self.participant_ids):
            return "Participants must have valid IDs"
        return None

    def request_body(self) -> dict:
        body = self.to_api()
        body["description"] = self.description.strip()
        return body


def transform_expenses(payload: Any) -> List[Expense]:
    return [Expense.model_validate(row) for row in unwrap(payload, "expenses")]


class ExpenseCache(DomainCache):
    """Expenses keyed by group id."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.expenses: KeyedResourceCache[Expense] = self._cache(
            "expenses",
            "/groups/{key}/expenses",
            transform_expenses,
            fallback_message="Unable to load expenses. Please try again.",
            key_label="group",
        )

    async def load_expenses(self, group_id: int) -> List[Expense]:
        return await self.expenses.load(group_id)

    async def refresh(self, group_id: int) -> List[Expense]:
        return await self.expenses.refresh(group_id)

    async def create_expense(
        self, group_id: int, payload: CreateExpensePayload, raise_errors: bool = False,
    ) -> Optional[Expense]:
        """Create an expense and put it at the front of the group's list.

        Raises ValidationError for an invalid group or payload; backend
        failures leave the cached list untouched and return None (or raise
        the classified error when ``raise_errors`` is set).
        """
        self.expenses.validate_key(group_id)
        problem = payload.problem()
        if problem:
            self.expenses.reject(problem)

        def prepend(previous: List[Expense], created: Expense) -> List[Expense]:
            return [created] + [e for e in previous if e.id != created.id]

        async def send() -> Expense:
            raw = await self.client.post(f"/groups/{group_id}/expenses", payload.request_body())
            return Expense.model_validate(raw)

        return await self.expenses.mutate(
            group_id, send, prepend, fallback_message="Unable to create expense. Please try again.",
            raise_errors=raise_errors,
        )

    async def delete_expense(self, expense_id: int, group_id: int, raise_errors: bool = False) -> bool:
        """Delete an expense and drop it from the group's cached list."""
        if not is_valid_key(expense_id):
            self.expenses.reject("Invalid expense ID")
        self.expenses.validate_key(group_id)

        def remove(previous: List[Expense], _result: Any) -> List[Expense]:
            return [e for e in previous if e.id != expense_id]

        async def send() -> bool:
            await self.client.delete(f"/expenses/{expense_id}")
            return True

        result = await self.expenses.mutate(
            group_id, send, remove, fallback_message="Unable to delete expense. Please try again.",
            raise_errors=raise_errors,
        )
        return bool(result)

    def expenses_for_group(self, group_id: int) -> List[Expense]:
        return self.expenses.items(group_id)

    def total_amount(self, group_id: int) -> float:
        return self.expenses.view(group_id).total("amount")

    def has_expenses(self, group_id: int) -> bool:
        return not self.expenses.view(group_id).is_empty

    def find_expense(self, expense_id: int, group_id: Optional[int] = None) -> Optional[Expense]:
        """Find a cached expense in one group, or in every cached group."""
        if not is_valid_key(expense_id):
            return None
        if group_id is not None:
            return self.expenses.find_by_id(group_id, expense_id)
        for key in self.expenses.cached_keys():
            match = self.expenses.find_by_id(key, expense_id)
            if match is not None:
                return match
        return None

    def all_expenses(self) -> List[Expense]:
        return self.expenses.all_items()

    @property
    def error(self) -> Optional[str]:
        return self.expenses.error

    def clear_error(self) -> None:
        self.expenses.clear_error()
