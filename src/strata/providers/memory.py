"""
In-process cloud provider.

Simulates a provider closely enough to drive the engine end to end without a
cloud account: a seeded read-only inventory (subnets, unsupported zones),
resources that can take a few reads to become visible and ACTIVE, and
injectable failures. Optionally persisted to a YAML file between runs.
"""

from __future__ import annotations

import copy
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

from strata.catalog.kinds import get_kind
from strata.core.errors import ProviderError, ProviderErrorKind
from strata.providers.registry import register_provider

logger = structlog.get_logger()

ACCOUNT_ID = "000000000000"


def _matches(item: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = item.get(key, item.get(key.replace("-", "_")))
        if isinstance(expected, (list, tuple)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class MemoryProvider:
    """Provider backed by a dict, with failure injection for tests and demos."""

    name = "memory"

    def __init__(
        self,
        inventory: Mapping[str, list[dict[str, Any]]] | None = None,
        *,
        path: Path | None = None,
        pending_reads: int = 0,
    ) -> None:
        self._inventory: dict[str, list[dict[str, Any]]] = {
            kind: [dict(item) for item in items] for kind, items in (inventory or {}).items()
        }
        self._resources: dict[str, dict[str, Any]] = {}
        self._pending: dict[str, int] = {}
        self._failures: dict[tuple[str, str], deque[ProviderError]] = defaultdict(deque)
        self._counter = 0
        self._path = path
        self.pending_reads = pending_reads
        self.calls: list[tuple[str, str]] = []

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> "MemoryProvider":
        """Load inventory and previously created resources from ``path``."""
        path = Path(path)
        data: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        provider = cls(data.get("inventory") or {}, path=path, **kwargs)
        provider._resources = dict(data.get("resources") or {})
        provider._counter = int(data.get("counter", len(provider._resources)))
        return provider

    def inject_failures(self, operation: str, kind: str, *errors: ProviderError) -> None:
        """Make the next ``len(errors)`` calls of ``operation`` on ``kind`` raise."""
        self._failures[(operation, kind)].extend(errors)

    def resources(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._resources)

    def count(self, operation: str, kind: str | None = None) -> int:
        return sum(1 for op, k in self.calls if op == operation and (kind is None or k == kind))

    def _record(self, operation: str, kind: str) -> None:
        self.calls.append((operation, kind))
        queue = self._failures.get((operation, kind))
        if queue:
            error = queue.popleft()
            logger.debug("memory_provider_injected_failure", operation=operation, kind=kind)
            raise error

    def _get(self, provider_id: str) -> dict[str, Any]:
        resource = self._resources.get(provider_id)
        if resource is None:
            raise ProviderError(
                ProviderErrorKind.NOT_FOUND, f"Resource {provider_id} not found"
            )
        return resource

    async def create(self, kind: str, attributes: dict[str, Any]) -> str:
        self._record("create", kind)
        self._counter += 1
        provider_id = f"{kind}-{self._counter:04d}"
        schema = get_kind(kind)
        outputs: dict[str, Any] = {
            "arn": f"arn:strata:{kind}:{ACCOUNT_ID}:{provider_id}",
        }
        if schema is not None and schema.ready_status:
            outputs["status"] = schema.ready_status if self.pending_reads == 0 else "CREATING"
            if self.pending_reads:
                self._pending[provider_id] = self.pending_reads
        self._resources[provider_id] = {
            "kind": kind,
            "attributes": copy.deepcopy(attributes),
            "outputs": outputs,
        }
        self._save()
        return provider_id

    async def read(self, provider_id: str) -> dict[str, Any]:
        resource = self._get(provider_id)
        self._record("read", resource["kind"])
        remaining = self._pending.get(provider_id)
        if remaining is not None:
            if remaining > 0:
                self._pending[provider_id] = remaining - 1
            else:
                self._pending.pop(provider_id)
                schema = get_kind(resource["kind"])
                if schema is not None and schema.ready_status:
                    resource["outputs"]["status"] = schema.ready_status
                self._save()
        return {**copy.deepcopy(resource["attributes"]), **copy.deepcopy(resource["outputs"])}

    async def update(self, provider_id: str, kind: str, attributes: dict[str, Any]) -> None:
        resource = self._get(provider_id)
        self._record("update", kind)
        resource["attributes"] = copy.deepcopy(attributes)
        self._save()

    async def delete(self, provider_id: str) -> None:
        resource = self._get(provider_id)
        self._record("delete", resource["kind"])
        del self._resources[provider_id]
        self._pending.pop(provider_id, None)
        self._save()

    async def list(self, query_kind: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        self._record("list", query_kind)
        items = self._inventory.get(query_kind, [])
        return [copy.deepcopy(item) for item in items if _matches(item, filters)]

    def _save(self) -> None:
        if self._path is None:
            return
        payload = {
            "inventory": self._inventory,
            "resources": self._resources,
            "counter": self._counter,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w") as f:
            yaml.safe_dump(payload, f, default_flow_style=False, sort_keys=True)


def create_memory_provider(*, inventory_path: str | None = None, **_: Any) -> MemoryProvider:
    if inventory_path:
        return MemoryProvider.from_file(inventory_path)
    return MemoryProvider()


register_provider(
    "memory",
    create_memory_provider,
    description="In-process simulated provider (optionally persisted to a YAML file)",
)
