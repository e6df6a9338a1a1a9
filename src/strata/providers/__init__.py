"""Cloud providers and built-in registrations."""

# Import built-in providers for side effects (registration)
from strata.providers import aws as _aws  # noqa: F401
from strata.providers import memory as _memory  # noqa: F401
from strata.providers.base import CloudProvider
from strata.providers.memory import MemoryProvider
from strata.providers.registry import (
    create_provider,
    list_providers,
    register_provider,
)

__all__ = [
    "CloudProvider",
    "MemoryProvider",
    "create_provider",
    "list_providers",
    "register_provider",
]
