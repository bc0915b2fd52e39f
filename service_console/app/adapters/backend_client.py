"""
HTTP client for the expense-splitting backend.
"""

import time
from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.errors import BackendServerError, HttpStatusError, NetworkError, NotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, retry_on_exception
from ..caching import LoadOptions


class BackendApiClient:
    """Thin async wrapper around the backend REST API.

    Non-2xx responses raise HttpStatusError (BackendServerError for 5xx) with
    the decoded body attached; connection problems and timeouts raise
    NetworkError after the configured retries.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("console.backend_client")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=(NetworkError, BackendServerError),
            name="backend",
        )
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)
        self._send_with_retry = retry_on_exception((NetworkError,), config=self.retry_config)(self._send)

    def _get_client(self) -> httpx.AsyncClient:
        """Get (or lazily create) the shared HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any) -> Any:
        return await self.request("POST", path, json=body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        """Issue a request through the circuit breaker and retry policy."""
        normalized = path if path.startswith('/') else f"/{path}"
        return await self.circuit_breaker.call(self._send_with_retry, method, normalized, params, json)

    async def _send(self, method: str, path: str, params: Optional[Dict[str, Any]], json: Any) -> Any:
        client = self._get_client()
        url = f"{self.base_url}{path}"
        start_time = time.time()

        try:
            response = await client.request(method, path, params=params or None, json=json)
        except httpx.TimeoutException as e:
            self.logger.error("Backend request timed out", method=method, url=url, error=str(e))
            raise NetworkError(f"Request timed out: {e}", url=url) from e
        except httpx.TransportError as e:
            self.logger.error("Backend unreachable", method=method, url=url, error=str(e))
            raise NetworkError(str(e) or e.__class__.__name__, url=url) from e

        if self.metrics:
            self.metrics.observe_histogram(
                "backend_request_duration_seconds",
                time.time() - start_time,
                method=method,
                status_code=str(response.status_code),
            )

        if response.is_success:
            self.logger.debug("Backend request succeeded", method=method, url=url, status_code=response.status_code)
            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        body = self._decode_body(response)
        self.logger.warning(
            "Backend request failed",
            method=method,
            url=url,
            status_code=response.status_code,
        )
        error_cls = BackendServerError if response.status_code >= 500 else HttpStatusError
        raise error_cls(
            response.status_code,
            body=body,
            reason=response.reason_phrase,
            url=url,
        )

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text


class EndpointTransport:
    """Fetches one key from a templated backend path such as ``/groups/{key}/balances``."""

    def __init__(self, client: BackendApiClient, path_template: str):
        self.client = client
        self.path_template = path_template

    def path_for(self, key: int) -> str:
        return self.path_template.format(key=key)

    async def fetch(self, key: int, options: LoadOptions) -> Any:
        return await self.client.get(self.path_for(key), params=options.as_params())


class DirectoryTransport:
    """Fetches one key by picking its row out of a list endpoint such as ``/users``.

    For backends that list a resource but have no per-id route. A key with
    no matching row raises NotFoundError.
    """

    def __init__(self, client: BackendApiClient, path: str, missing_message: str, id_field: str = "id"):
        self.client = client
        self.path = path
        self.missing_message = missing_message
        self.id_field = id_field

    async def fetch(self, key: int, options: LoadOptions) -> Any:
        rows = await self.client.get(self.path)
        for row in rows or []:
            if isinstance(row, dict) and row.get(self.id_field) == key:
                return row
        raise NotFoundError(self.missing_message, {"key": key, "path": self.path})
