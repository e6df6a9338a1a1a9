from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CloudProvider(Protocol):
    """The only I/O boundary of the engine.

    Implementations raise ``ProviderError`` with the matching
    ``ProviderErrorKind`` on failure; ``read`` raises ``NOT_FOUND`` for
    resources that do not exist (or are not yet visible).
    """

    name: str

    async def create(self, kind: str, attributes: dict[str, Any]) -> str:
        """Create a resource and return its provider-assigned id."""
        ...

    async def read(self, provider_id: str) -> dict[str, Any]:
        ...

    async def update(self, provider_id: str, kind: str, attributes: dict[str, Any]) -> None:
        ...

    async def delete(self, provider_id: str) -> None:
        ...

    async def list(self, query_kind: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        """Read-only inventory query; must never mutate provider state."""
        ...
