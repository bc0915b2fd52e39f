"""
Console service for Splitledger: cached, read-mostly views of the expense backend.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi import Query

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import ServiceConfig
from shared.errors import BackendServerError, NetworkError, NotFoundError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig

from .adapters import BackendApiClient
from .caching import KeyedResourceCache
from .domain import ActivityFeed, AddMembersPayload, ConsoleCaches, CreateExpensePayload
from .error_reporter import ErrorReporter

ACTIVITY_SCOPES = {"groups": "group", "users": "user", "expenses": "expense"}


def entry_response(cache: KeyedResourceCache, key: int) -> Dict[str, Any]:
    """Serialize one cached key as ``{items, status, lastLoadedAt, hasMore, error}``."""
    view = cache.view(key)
    summary = view.as_dict()
    return {
        "items": [item.to_api() for item in view.items],
        "status": summary["status"],
        "lastLoadedAt": summary["lastLoadedAt"],
        "hasMore": summary["hasMore"],
        "error": cache.error,
    }


class ConsoleService(BaseService):
    """Console service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("console", 8020, config=config, metrics=metrics)

        self.reporter = ErrorReporter(metrics=self.metrics)
        self.client = BackendApiClient(
            self.config.backend_url,
            token=self.config.backend_token,
            timeout=self.config.request_timeout_seconds,
            retry_config=RetryConfig(
                max_attempts=self.config.retry_max_attempts,
                base_delay=self.config.retry_base_delay,
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=self.config.circuit_failure_threshold,
                recovery_timeout=self.config.circuit_recovery_timeout,
                expected_exception=(NetworkError, BackendServerError),
                name="backend",
            ),
            metrics=self.metrics,
            transport=transport,
        )
        self.caches = ConsoleCaches(
            self.client,
            self.reporter,
            capacity=self.config.cache_capacity,
            metrics=self.metrics,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.client.close()

        self._setup_console_routes()

        self.app.state.console_service = self

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {"backend": self.client.circuit_breaker.get_state()["state"]}

    def _activity_feed(self, resource: str) -> ActivityFeed:
        scope = ACTIVITY_SCOPES.get(resource)
        if scope is None:
            raise NotFoundError(f"No activity feed for {resource}")
        return self.caches.activity.feed(scope)

    def _setup_console_routes(self):
        """Set up console-specific routes."""
        caches = self.caches

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "console",
                "message": "Splitledger Console",
                "version": "1.0.0",
                "capabilities": ["activity", "balances", "expenses", "groups", "users"],
            }

        # Balances

        @self.app.get("/groups/{group_id}/balances")
        async def group_balances(group_id: int, refresh: bool = False):
            if refresh:
                await caches.balances.refresh_group_balances(group_id)
            else:
                await caches.balances.load_group_balances(group_id)
            response = entry_response(caches.balances.group_balances, group_id)
            response["netTotal"] = caches.balances.net_total(group_id)
            return response

        @self.app.get("/users/{user_id}/balance")
        async def user_balance(user_id: int, refresh: bool = False):
            if refresh:
                await caches.balances.refresh_user_balance(user_id)
            else:
                await caches.balances.load_user_balance(user_id)
            return entry_response(caches.balances.user_balances, user_id)

        # Expenses

        @self.app.get("/groups/{group_id}/expenses")
        async def group_expenses(group_id: int, refresh: bool = False):
            if refresh:
                await caches.expenses.refresh(group_id)
            else:
                await caches.expenses.load_expenses(group_id)
            response = entry_response(caches.expenses.expenses, group_id)
            response["totalAmount"] = caches.expenses.total_amount(group_id)
            return response

        @self.app.post("/groups/{group_id}/expenses", status_code=201)
        async def create_expense(group_id: int, payload: CreateExpensePayload):
            created = await caches.expenses.create_expense(group_id, payload, raise_errors=True)
            response = entry_response(caches.expenses.expenses, group_id)
            response["created"] = created.to_api()
            return response

        @self.app.delete("/expenses/{expense_id}")
        async def delete_expense(expense_id: int, group_id: int = Query(...)):
            await caches.expenses.delete_expense(expense_id, group_id, raise_errors=True)
            response = entry_response(caches.expenses.expenses, group_id)
            response["deleted"] = True
            return response

        # Groups and users

        def group_response(group_id: int, query: Optional[str] = None) -> Dict[str, Any]:
            response = entry_response(caches.groups.groups, group_id)
            response["groupName"] = caches.groups.group_name(group_id)
            response["members"] = [m.to_api() for m in caches.groups.search_members(group_id, query)]
            return response

        @self.app.get("/groups/{group_id}")
        async def group_detail(group_id: int, refresh: bool = False, q: Optional[str] = None):
            if refresh:
                await caches.groups.refresh_group(group_id)
            else:
                await caches.groups.load_group(group_id)
            return group_response(group_id, q)

        @self.app.post("/groups/{group_id}/members")
        async def add_group_members(group_id: int, payload: AddMembersPayload):
            await caches.groups.add_members(group_id, payload.user_ids, raise_errors=True)
            return group_response(group_id)

        @self.app.delete("/groups/{group_id}/members/{user_id}")
        async def remove_group_member(group_id: int, user_id: int):
            await caches.groups.remove_member(group_id, user_id, raise_errors=True)
            return group_response(group_id)

        @self.app.get("/users/{user_id}")
        async def user_profile(user_id: int, refresh: bool = False):
            if refresh:
                await caches.users.refresh_user(user_id)
            else:
                await caches.users.load_user(user_id)
            return entry_response(caches.users.profiles, user_id)

        # Activity

        @self.app.get("/{resource}/{key}/activity")
        async def activity(
            resource: str,
            key: int,
            limit: Optional[int] = Query(None, ge=1),
            offset: Optional[int] = Query(None, ge=0),
        ):
            feed = self._activity_feed(resource)
            await feed.load(key, limit=limit, offset=offset)
            return entry_response(feed.cache, key)

        @self.app.post("/{resource}/{key}/activity/more")
        async def more_activity(resource: str, key: int, limit: Optional[int] = Query(None, ge=1)):
            feed = self._activity_feed(resource)
            await feed.load_more(key, limit=limit)
            return entry_response(feed.cache, key)

        # Introspection

        @self.app.get("/caches")
        async def cache_stats():
            return {name: cache.stats() for name, cache in caches.all().items()}

        @self.app.get("/errors")
        async def last_error():
            error = self.reporter.last_error
            return {
                "error": error.to_dict() if error else None,
                "history": [e.to_dict() for e in self.reporter.history],
            }

        @self.app.delete("/errors")
        async def clear_errors():
            caches.clear_errors()
            self.reporter.clear_error()
            return {"cleared": True}


def create_app(**kwargs):
    """Build the FastAPI app; keyword arguments go to ConsoleService."""
    return ConsoleService(**kwargs).app


if __name__ == "__main__":
    service = ConsoleService()
    service.run()
