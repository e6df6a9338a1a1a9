"""Tests for the in-memory provider and the provider registry."""

import pytest
from strata.core.errors import ProviderError, ProviderErrorKind
from strata.providers import CloudProvider, MemoryProvider, create_provider, list_providers
from strata.providers.registry import ProviderRegistry


class TestMemoryProvider:
    """Tests for MemoryProvider."""

    def test_satisfies_protocol(self, provider):
        assert isinstance(provider, CloudProvider)

    @pytest.mark.asyncio
    async def test_create_and_read(self, provider):
        provider_id = await provider.create("role", {"name": "r", "service": "eks.amazonaws.com"})
        observed = await provider.read(provider_id)

        assert provider_id == "role-0001"
        assert observed["name"] == "r"
        assert observed["arn"] == "arn:strata:role:000000000000:role-0001"

    @pytest.mark.asyncio
    async def test_ready_kinds_report_status(self, provider):
        provider_id = await provider.create("cluster", {"name": "c"})
        assert (await provider.read(provider_id))["status"] == "ACTIVE"

    @pytest.mark.asyncio
    async def test_pending_reads(self, inventory):
        provider = MemoryProvider(inventory, pending_reads=2)
        provider_id = await provider.create("cluster", {"name": "c"})

        statuses = [(await provider.read(provider_id))["status"] for _ in range(3)]

        assert statuses == ["CREATING", "CREATING", "ACTIVE"]

    @pytest.mark.asyncio
    async def test_read_missing(self, provider):
        with pytest.raises(ProviderError) as exc_info:
            await provider.read("role-9999")
        assert exc_info.value.kind == ProviderErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_update_replaces_attributes(self, provider):
        provider_id = await provider.create("cluster", {"name": "c", "version": "1.28"})
        await provider.update(provider_id, "cluster", {"name": "c", "version": "1.29"})

        assert (await provider.read(provider_id))["version"] == "1.29"

    @pytest.mark.asyncio
    async def test_delete(self, provider):
        provider_id = await provider.create("role", {"name": "r"})
        await provider.delete(provider_id)

        assert provider.resources() == {}
        with pytest.raises(ProviderError):
            await provider.delete(provider_id)

    @pytest.mark.asyncio
    async def test_injected_failures_are_consumed_in_order(self, provider):
        provider.inject_failures(
            "create",
            "cluster",
            ProviderError(ProviderErrorKind.TRANSIENT, "throttled"),
            ProviderError(ProviderErrorKind.QUOTA, "limit"),
        )

        with pytest.raises(ProviderError) as first:
            await provider.create("cluster", {})
        with pytest.raises(ProviderError) as second:
            await provider.create("cluster", {})
        provider_id = await provider.create("cluster", {})

        assert first.value.kind == ProviderErrorKind.TRANSIENT
        assert second.value.kind == ProviderErrorKind.QUOTA
        assert provider_id == "cluster-0001"
        assert provider.count("create", "cluster") == 3

    @pytest.mark.asyncio
    async def test_list_filters_with_dash_or_underscore_keys(self, provider):
        items = await provider.list("subnets", {"vpc-id": "vpc-1"})
        assert [item["id"] for item in items] == ["subnet-a", "subnet-b", "subnet-c", "subnet-e"]

        items = await provider.list("subnets", {"availability_zone": ["us-east-1a", "us-east-1c"]})
        assert [item["id"] for item in items] == ["subnet-a", "subnet-c"]

    @pytest.mark.asyncio
    async def test_list_unknown_kind_is_empty(self, provider):
        assert await provider.list("vpcs", {}) == []

    @pytest.mark.asyncio
    async def test_persists_to_file(self, tmp_path, inventory):
        path = tmp_path / "inventory.yaml"
        provider = MemoryProvider(inventory, path=path)
        provider_id = await provider.create("role", {"name": "r"})

        reloaded = MemoryProvider.from_file(path)

        assert provider_id in reloaded.resources()
        assert len(await reloaded.list("subnets", {})) == 4
        assert await reloaded.create("role", {"name": "s"}) == "role-0002"


class TestProviderRegistry:
    """Tests for provider registration."""

    def test_builtin_providers_registered(self):
        names = {spec.name for spec in list_providers()}
        assert {"memory", "aws"} <= names

    def test_create_memory_provider(self, tmp_path):
        provider = create_provider("memory", inventory_path=str(tmp_path / "inv.yaml"))
        assert isinstance(provider, MemoryProvider)

    def test_create_unknown(self):
        with pytest.raises(KeyError):
            create_provider("gcp")

    def test_register_requires_name(self):
        with pytest.raises(ValueError):
            ProviderRegistry().register("", MemoryProvider)

    def test_separate_registry(self):
        registry = ProviderRegistry()
        registry.register("fake", lambda **_: MemoryProvider(), description="test double")

        assert [spec.name for spec in registry.list()] == ["fake"]
        assert isinstance(registry.create("fake"), MemoryProvider)
