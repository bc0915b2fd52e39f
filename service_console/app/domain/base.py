"""
Common pieces of the domain caches.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from shared.metrics import MetricsCollector
from ..adapters import BackendApiClient, EndpointTransport
from ..caching import DEFAULT_CAPACITY, KeyedResourceCache, Reporter, Transport


class ApiModel(BaseModel):
    """Backend record.

    Accepts either snake_case or camelCase keys and always serializes to
    camelCase, which is what the console API hands out.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def unwrap(payload: Any, envelope: str) -> List[Any]:
    """Rows of a list payload, or of ``payload[envelope]`` when wrapped."""
    if payload is None:
        return []
    if isinstance(payload, dict):
        return list(payload.get(envelope) or [])
    return list(payload)


class DomainCache:
    """Wiring shared by every domain cache."""

    def __init__(
        self,
        client: BackendApiClient,
        reporter: Reporter,
        capacity: int = DEFAULT_CAPACITY,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.client = client
        self.reporter = reporter
        self.capacity = capacity
        self.metrics = metrics

    def _cache(self, name: str, path_template: str, transform, **kwargs) -> KeyedResourceCache:
        return self._cache_over(name, EndpointTransport(self.client, path_template), transform, **kwargs)

    def _cache_over(self, name: str, transport: Transport, transform, **kwargs) -> KeyedResourceCache:
        return KeyedResourceCache(
            name,
            transport,
            transform,
            self.reporter,
            capacity=self.capacity,
            metrics=self.metrics,
            **kwargs,
        )
