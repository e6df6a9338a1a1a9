"""
AWS provider backed by aioboto3.

Covers the kinds the catalog knows: IAM roles and role policy attachments,
EKS clusters and managed node groups, plus subnet and availability-zone
discovery through EC2.

Provider ids are ``<kind>:<identifier>`` so ``read``/``delete`` can dispatch
without a lookup table.

Unsupported zones: every target loses zones that are not ``available`` or not
opted in. The ``control-plane`` target also loses the zone ids EKS documents
as unable to host a control plane; AWS has no API for that list, so it is kept
static in ``CONTROL_PLANE_UNSUPPORTED_ZONE_IDS``. Other targets get no
service-specific exclusions.
"""

from __future__ import annotations

import json
from typing import Any

import aioboto3
import structlog
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from strata.core.errors import ProviderError, ProviderErrorKind
from strata.discovery.models import UNSUPPORTED_ZONES_QUERY
from strata.providers.registry import register_provider

logger = structlog.get_logger()

TRANSIENT_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "ServerException",
        "InternalFailure",
        "InternalError",
        "RequestTimeout",
    }
)
PERMISSION_CODES = frozenset(
    {"AccessDenied", "AccessDeniedException", "UnauthorizedOperation", "UnrecognizedClientException"}
)
QUOTA_CODES = frozenset(
    {
        "LimitExceeded",
        "LimitExceededException",
        "ResourceLimitExceededException",
        "ServiceQuotaExceededException",
    }
)
NOT_FOUND_CODES = frozenset({"NoSuchEntity", "ResourceNotFoundException", "NotFoundException"})
# Deleting or updating something still in use is refused until the user acts.
IN_USE_CODES = frozenset({"ResourceInUseException", "DeleteConflict"})

CONTROL_PLANE_TARGET = "control-plane"
CONTROL_PLANE_UNSUPPORTED_ZONE_IDS = frozenset({"use1-az3", "usw1-az2", "cac1-az3"})

# EKS reports a freshly created IAM role it cannot see yet this way.
NOT_YET_VISIBLE_MARKERS = ("cannot be assumed", "does not exist", "not authorized to perform: sts")


def classify_client_error(exc: ClientError) -> ProviderErrorKind:
    """Map a botocore ClientError to the engine's error taxonomy."""
    error = exc.response.get("Error", {})
    code = error.get("Code", "")
    message = error.get("Message", "").lower()
    if code in TRANSIENT_CODES:
        return ProviderErrorKind.TRANSIENT
    if code == "InvalidParameterException" and any(m in message for m in NOT_YET_VISIBLE_MARKERS):
        return ProviderErrorKind.TRANSIENT
    if code in PERMISSION_CODES:
        return ProviderErrorKind.PERMISSION
    if code in QUOTA_CODES:
        return ProviderErrorKind.QUOTA
    if code in NOT_FOUND_CODES:
        return ProviderErrorKind.NOT_FOUND
    if code in IN_USE_CODES:
        return ProviderErrorKind.REJECTED
    return ProviderErrorKind.REJECTED


def to_provider_error(exc: Exception, operation: str) -> ProviderError:
    if isinstance(exc, ClientError):
        kind = classify_client_error(exc)
        code = exc.response.get("Error", {}).get("Code", "")
        return ProviderError(kind, f"{operation} failed: {exc}", {"code": code})
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return ProviderError(ProviderErrorKind.TRANSIENT, f"{operation} failed: {exc}")
    raise exc


def _trust_policy(service: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": service},
                    "Action": "sts:AssumeRole",
                }
            ],
        }
    )


def _split(provider_id: str) -> tuple[str, str]:
    kind, sep, identifier = provider_id.partition(":")
    if not sep:
        raise ProviderError(ProviderErrorKind.NOT_FOUND, f"Malformed provider id '{provider_id}'")
    return kind, identifier


def _tag_changes(current: dict[str, str], desired: dict[str, str]) -> tuple[list[str], dict[str, str]]:
    """Keys to remove and tags to set; ``aws:`` tags belong to AWS and are left alone."""
    stale = sorted(k for k in current if k not in desired and not k.startswith("aws:"))
    changed = {k: v for k, v in sorted(desired.items()) if current.get(k) != v}
    return stale, changed


async def _sync_eks_tags(
    eks: Any, arn: str, current: dict[str, str], desired: dict[str, str]
) -> None:
    stale, changed = _tag_changes(current, desired)
    if stale:
        await eks.untag_resource(resourceArn=arn, tagKeys=stale)
    if changed:
        await eks.tag_resource(resourceArn=arn, tags=changed)


def _zone_unsupported(zone: dict[str, Any], target: str | None) -> bool:
    if zone.get("State") != "available" or zone.get("OptInStatus") == "not-opted-in":
        return True
    return target == CONTROL_PLANE_TARGET and zone.get("ZoneId") in CONTROL_PLANE_UNSUPPORTED_ZONE_IDS


class AwsProvider:
    """CloudProvider for IAM, EKS and EC2."""

    name = "aws"

    def __init__(self, region: str = "us-east-1", session: Any | None = None) -> None:
        self._region = region
        self._session = session or aioboto3.Session(region_name=region)

    async def create(self, kind: str, attributes: dict[str, Any]) -> str:
        try:
            if kind == "role":
                async with self._session.client("iam") as iam:
                    await iam.create_role(
                        RoleName=attributes["name"],
                        AssumeRolePolicyDocument=_trust_policy(attributes["service"]),
                        Description=attributes.get("description", ""),
                        Tags=[{"Key": k, "Value": str(v)} for k, v in attributes.get("tags", {}).items()],
                    )
                return f"role:{attributes['name']}"
            if kind == "policy-attachment":
                async with self._session.client("iam") as iam:
                    await iam.attach_role_policy(
                        RoleName=attributes["role"], PolicyArn=attributes["policy_arn"]
                    )
                return f"policy-attachment:{attributes['role']}|{attributes['policy_arn']}"
            if kind == "cluster":
                params: dict[str, Any] = {
                    "name": attributes["name"],
                    "roleArn": attributes["role_arn"],
                    "resourcesVpcConfig": {"subnetIds": list(attributes["subnet_ids"])},
                    "tags": {k: str(v) for k, v in attributes.get("tags", {}).items()},
                }
                if attributes.get("version"):
                    params["version"] = attributes["version"]
                async with self._session.client("eks") as eks:
                    await eks.create_cluster(**params)
                return f"cluster:{attributes['name']}"
            if kind == "node-group":
                scaling = attributes["scaling"]
                async with self._session.client("eks") as eks:
                    await eks.create_nodegroup(
                        clusterName=attributes["cluster"],
                        nodegroupName=attributes["name"],
                        nodeRole=attributes["node_role_arn"],
                        subnets=list(attributes["subnet_ids"]),
                        scalingConfig={
                            "minSize": scaling["min_size"],
                            "desiredSize": scaling["desired_size"],
                            "maxSize": scaling["max_size"],
                        },
                        instanceTypes=list(attributes.get("instance_types", [])) or ["t3.medium"],
                        tags={k: str(v) for k, v in attributes.get("tags", {}).items()},
                    )
                return f"node-group:{attributes['cluster']}/{attributes['name']}"
        except (ClientError, EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as exc:
            raise to_provider_error(exc, f"create {kind}") from exc
        raise ProviderError(ProviderErrorKind.REJECTED, f"Unsupported kind '{kind}'")

    async def read(self, provider_id: str) -> dict[str, Any]:
        kind, identifier = _split(provider_id)
        try:
            if kind == "role":
                async with self._session.client("iam") as iam:
                    role = (await iam.get_role(RoleName=identifier))["Role"]
                return {"name": role["RoleName"], "arn": role["Arn"]}
            if kind == "policy-attachment":
                role_name, _, policy_arn = identifier.partition("|")
                async with self._session.client("iam") as iam:
                    response = await iam.list_attached_role_policies(RoleName=role_name)
                attached = {p["PolicyArn"] for p in response.get("AttachedPolicies", [])}
                if policy_arn not in attached:
                    raise ProviderError(
                        ProviderErrorKind.NOT_FOUND, f"{policy_arn} is not attached to {role_name}"
                    )
                return {"role": role_name, "policy_arn": policy_arn}
            if kind == "cluster":
                async with self._session.client("eks") as eks:
                    cluster = (await eks.describe_cluster(name=identifier))["cluster"]
                return {
                    "name": cluster["name"],
                    "arn": cluster["arn"],
                    "status": cluster["status"],
                    "endpoint": cluster.get("endpoint"),
                    "version": cluster.get("version"),
                }
            if kind == "node-group":
                cluster_name, _, name = identifier.partition("/")
                async with self._session.client("eks") as eks:
                    group = (
                        await eks.describe_nodegroup(clusterName=cluster_name, nodegroupName=name)
                    )["nodegroup"]
                return {"name": group["nodegroupName"], "arn": group["nodegroupArn"], "status": group["status"]}
        except (ClientError, EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as exc:
            raise to_provider_error(exc, f"read {provider_id}") from exc
        raise ProviderError(ProviderErrorKind.NOT_FOUND, f"Unsupported provider id '{provider_id}'")

    async def update(self, provider_id: str, kind: str, attributes: dict[str, Any]) -> None:
        """
        Apply in-place changes: role description, cluster version, node group
        scaling, and tags on all three. Every other attribute of these kinds
        forces a replacement, so nothing desired is left behind.
        """
        _, identifier = _split(provider_id)
        desired_tags = {k: str(v) for k, v in attributes.get("tags", {}).items()}
        try:
            if kind == "role":
                async with self._session.client("iam") as iam:
                    await iam.update_role(
                        RoleName=identifier, Description=attributes.get("description", "")
                    )
                    response = await iam.list_role_tags(RoleName=identifier)
                    current = {t["Key"]: t["Value"] for t in response.get("Tags", [])}
                    stale, changed = _tag_changes(current, desired_tags)
                    if stale:
                        await iam.untag_role(RoleName=identifier, TagKeys=stale)
                    if changed:
                        await iam.tag_role(
                            RoleName=identifier,
                            Tags=[{"Key": k, "Value": v} for k, v in changed.items()],
                        )
                return
            if kind == "cluster":
                async with self._session.client("eks") as eks:
                    cluster = (await eks.describe_cluster(name=identifier))["cluster"]
                    version = attributes.get("version")
                    if version and version != cluster.get("version"):
                        await eks.update_cluster_version(name=identifier, version=version)
                    await _sync_eks_tags(eks, cluster["arn"], cluster.get("tags", {}), desired_tags)
                return
            if kind == "node-group":
                cluster_name, _, name = identifier.partition("/")
                scaling = attributes["scaling"]
                async with self._session.client("eks") as eks:
                    group = (
                        await eks.describe_nodegroup(clusterName=cluster_name, nodegroupName=name)
                    )["nodegroup"]
                    await eks.update_nodegroup_config(
                        clusterName=cluster_name,
                        nodegroupName=name,
                        scalingConfig={
                            "minSize": scaling["min_size"],
                            "desiredSize": scaling["desired_size"],
                            "maxSize": scaling["max_size"],
                        },
                    )
                    await _sync_eks_tags(
                        eks, group["nodegroupArn"], group.get("tags", {}), desired_tags
                    )
                return
        except (ClientError, EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as exc:
            raise to_provider_error(exc, f"update {provider_id}") from exc
        raise ProviderError(ProviderErrorKind.REJECTED, f"Kind '{kind}' cannot be updated in place")

    async def delete(self, provider_id: str) -> None:
        kind, identifier = _split(provider_id)
        try:
            if kind == "role":
                async with self._session.client("iam") as iam:
                    await iam.delete_role(RoleName=identifier)
            elif kind == "policy-attachment":
                role_name, _, policy_arn = identifier.partition("|")
                async with self._session.client("iam") as iam:
                    await iam.detach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
            elif kind == "cluster":
                async with self._session.client("eks") as eks:
                    await eks.delete_cluster(name=identifier)
            elif kind == "node-group":
                cluster_name, _, name = identifier.partition("/")
                async with self._session.client("eks") as eks:
                    await eks.delete_nodegroup(clusterName=cluster_name, nodegroupName=name)
            else:
                raise ProviderError(ProviderErrorKind.REJECTED, f"Unsupported provider id '{provider_id}'")
        except (ClientError, EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as exc:
            raise to_provider_error(exc, f"delete {provider_id}") from exc

    async def list(self, query_kind: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            if query_kind == "subnets":
                async with self._session.client("ec2") as ec2:
                    response = await ec2.describe_subnets(
                        Filters=[
                            {"Name": name, "Values": value if isinstance(value, list) else [str(value)]}
                            for name, value in sorted(filters.items())
                        ]
                    )
                return [
                    {
                        "id": subnet["SubnetId"],
                        "availability_zone": subnet["AvailabilityZone"],
                        "vpc_id": subnet["VpcId"],
                        "cidr_block": subnet.get("CidrBlock"),
                    }
                    for subnet in response.get("Subnets", [])
                ]
            if query_kind == UNSUPPORTED_ZONES_QUERY:
                async with self._session.client("ec2") as ec2:
                    response = await ec2.describe_availability_zones(AllAvailabilityZones=True)
                target = filters.get("target")
                return [
                    {"zone": zone["ZoneName"], "target": target}
                    for zone in response.get("AvailabilityZones", [])
                    if _zone_unsupported(zone, target)
                ]
        except (ClientError, EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as exc:
            raise to_provider_error(exc, f"list {query_kind}") from exc
        raise ProviderError(ProviderErrorKind.REJECTED, f"Unsupported discovery query '{query_kind}'")


def create_aws_provider(*, region: str = "us-east-1", **_: Any) -> AwsProvider:
    return AwsProvider(region=region)


register_provider("aws", create_aws_provider, description="AWS (IAM, EKS, EC2) via aioboto3")
