from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from strata.providers.base import CloudProvider

ProviderFactory = Callable[..., CloudProvider]


@dataclass(frozen=True)
class ProviderSpec:
    """Metadata describing a registered provider."""

    name: str
    factory: ProviderFactory
    description: str | None = None


class ProviderRegistry:
    """Simple in-memory registry for cloud providers."""

    def __init__(self) -> None:
        self._providers: Dict[str, ProviderSpec] = {}

    def register(
        self,
        name: str,
        factory: ProviderFactory,
        *,
        description: str | None = None,
    ) -> None:
        if not name:
            raise ValueError("Provider name is required")
        self._providers[name] = ProviderSpec(name=name, factory=factory, description=description)

    def create(self, name: str, **kwargs: Any) -> CloudProvider:
        spec = self._providers.get(name)
        if spec is None:
            raise KeyError(f"Provider '{name}' is not registered")
        return spec.factory(**kwargs)

    def list(self) -> List[ProviderSpec]:
        return list(self._providers.values())


provider_registry = ProviderRegistry()


def register_provider(
    name: str,
    factory: ProviderFactory,
    *,
    description: str | None = None,
) -> None:
    provider_registry.register(name, factory, description=description)


def create_provider(name: str, **kwargs: Any) -> CloudProvider:
    return provider_registry.create(name, **kwargs)


def list_providers() -> List[ProviderSpec]:
    return provider_registry.list()
