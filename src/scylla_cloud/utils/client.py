# ABOUTME: Scylla Cloud API client exposing typed endpoint methods over the Transport
# ABOUTME: Handles account discovery and maps JSON payloads to model dataclasses

"""
Scylla Cloud API client.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

One method per REST endpoint the provisioning flows use. Each method builds
the path, hands it to the Transport, and turns the envelope's ``data`` into
model dataclasses. Retries, error classification and envelope decoding all
happen in the Transport; nothing here catches errors.

=============================================================================
SCYLLA CLOUD REST API OVERVIEW
=============================================================================

    GET  /deployment/cloud-providers
    GET  /deployment/cloud-provider/{provider}/regions?defaults=true
    GET  /deployment/cloud-provider/{provider}/region/{region}
    GET  /deployment/scylla-versions?defaults=true
    GET  /account/default
    POST /account/{account}/cluster                       -> {"requestId": N}
    GET  /account/{account}/cluster/{id}?enriched=true
    GET  /account/{account}/clusters?enriched=true
    POST /account/{account}/cluster/{id}/resize
    POST /account/{account}/cluster/{id}/delete           {"clusterName": ...}
    GET  /account/{account}/cluster/request/{request}
    GET  /account/{account}/cluster/{id}/request?type=&status=
    ...  /account/{account}/cluster/{id}/network/firewall/allowed[/{rule}]
    ...  /account/{account}/cluster/{id}/network/vpc/peer[/{peer}]
    ...  /account/{account}/cluster/{id}/network/vpc/connection[/{conn}]   (PATCH updates)

Every account-scoped path needs the numeric account id. When it is not
configured, ``__aenter__`` discovers it with ``GET /account/default``.

=============================================================================
USAGE
=============================================================================

    async with ScyllaCloudClient(instance) as client:
        cluster = await client.get_cluster(42)
        print(cluster.name, cluster.node_count)
"""

from __future__ import annotations

import asyncio
import copy
from typing import TYPE_CHECKING, Any

import structlog

from scylla_cloud.config import DEFAULT_USER_AGENT
from scylla_cloud.models import (
    AllowedIP,
    CloudProvider,
    Cluster,
    ClusterConnection,
    ClusterConnectionCreateRequest,
    ClusterConnectionUpdateRequest,
    ClusterCreateRequest,
    ClusterRequest,
    ConnectionInfo,
    Datacenter,
    InstanceType,
    Node,
    RegionCatalog,
    VersionCatalog,
    VPCPeering,
    VPCPeeringRequest,
)
from scylla_cloud.utils.transport import RetryPolicy, Transport

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from scylla_cloud.config import ClientSettings, CloudInstance

STACK_FLAVOR_HEADER = "X-Scylla-Cloud-Stack-Flavor"
STACK_FLAVOR = "tf"


class ScyllaCloudClient:
    """
    Async Scylla Cloud API client.

    ALWAYS use the context manager pattern:
        async with ScyllaCloudClient(instance) as client:
            providers = await client.list_cloud_providers()

    ``with_logger`` returns a view of the same client (same connection pool,
    same account) whose calls log through a different bound logger. The
    reconciler uses it to tag every request of one reconciliation with its
    correlation id.
    """

    def __init__(
        self,
        instance: CloudInstance,
        *,
        timeout: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        mask_secrets: bool = True,
        logger: structlog.typing.FilteringBoundLogger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._instance = instance
        self._account_id = instance.account_id
        self._logger = logger or structlog.get_logger(__name__)
        self._transport = Transport(
            instance,
            retry_policy=retry_policy,
            timeout=timeout,
            user_agent=user_agent,
            mask_secrets=mask_secrets,
            logger=self._logger,
            sleep=sleep,
        )

    @classmethod
    def from_settings(cls, settings: ClientSettings, **kwargs: Any) -> ScyllaCloudClient:
        """
        Build a client from loaded settings.

        Raises:
            ValueError: If no API token is configured.
        """
        instance = settings.instance
        if instance is None:
            raise ValueError("Scylla Cloud API token is not configured (SCYLLA_CLOUD_TOKEN)")
        kwargs.setdefault("timeout", settings.timeout)
        kwargs.setdefault("retry_policy", RetryPolicy.from_settings(settings.retry))
        kwargs.setdefault("user_agent", settings.user_agent)
        kwargs.setdefault("mask_secrets", settings.security.mask_secrets)
        return cls(instance, **kwargs)

    async def __aenter__(self) -> ScyllaCloudClient:
        await self._transport.__aenter__()
        try:
            if self._account_id is None:
                self._account_id = await self.discover_account_id()
        except BaseException:
            await self._transport.__aexit__(None, None, None)
            raise
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._transport.__aexit__(*args)

    def with_logger(self, logger: structlog.typing.FilteringBoundLogger) -> ScyllaCloudClient:
        """Return a view of this client logging through ``logger``."""
        view = copy.copy(self)
        view._logger = logger
        return view

    @property
    def account_id(self) -> int:
        if self._account_id is None:
            raise RuntimeError("Account id unknown. Use 'async with' context manager.")
        return self._account_id

    @property
    def transport(self) -> Transport:
        return self._transport

    def _account_path(self, suffix: str) -> str:
        return f"/account/{self.account_id}{suffix}"

    async def _get(self, path: str, parse: Callable[[Any], Any], **kwargs: Any) -> Any:
        return await self._transport.call("GET", path, parse=parse, logger=self._logger, **kwargs)

    async def _post(self, path: str, body: Any, parse: Callable[[Any], Any] | None = None) -> Any:
        return await self._transport.call("POST", path, body=body, parse=parse, logger=self._logger)

    async def _delete(self, path: str) -> None:
        await self._transport.call("DELETE", path, logger=self._logger)

    # =========================================================================
    # ACCOUNT
    # =========================================================================

    async def discover_account_id(self) -> int:
        """Resolve the default account of the token's user."""
        account_id = await self._get("/account/default", lambda d: int(d["accountId"]))
        self._logger.debug("Discovered Scylla Cloud account", account_id=account_id)
        return account_id

    # =========================================================================
    # CATALOG
    # =========================================================================

    async def list_cloud_providers(self) -> list[CloudProvider]:
        return await self._get(
            "/deployment/cloud-providers",
            lambda d: [CloudProvider.from_api_response(p) for p in d.get("cloudProviders") or []],
        )

    async def list_cloud_provider_regions(self, provider_id: int) -> RegionCatalog:
        """Regions of a provider plus its provider-wide instance types."""
        return await self._get(
            f"/deployment/cloud-provider/{provider_id}/regions",
            RegionCatalog.from_api_response,
            params={"defaults": "true"},
        )

    async def list_region_instances(self, provider_id: int, region_id: int) -> list[InstanceType]:
        """Instance types available in one region."""
        return await self._get(
            f"/deployment/cloud-provider/{provider_id}/region/{region_id}",
            lambda d: [InstanceType.from_api_response(i) for i in d.get("instances") or []],
        )

    async def list_scylla_versions(self) -> VersionCatalog:
        return await self._get(
            "/deployment/scylla-versions",
            VersionCatalog.from_api_response,
            params={"defaults": "true"},
        )

    # =========================================================================
    # CLUSTERS
    # =========================================================================

    async def create_cluster(self, request: ClusterCreateRequest) -> int:
        """
        Submit a cluster creation.

        Returns:
            The id of the cluster request tracking the creation.
        """
        return await self._post(
            self._account_path("/cluster"),
            request.to_api_request(),
            lambda d: int(d["requestId"]),
        )

    async def get_cluster(self, cluster_id: int) -> Cluster:
        return await self._get(
            self._account_path(f"/cluster/{cluster_id}"),
            lambda d: Cluster.from_api_response(d["cluster"]),
            params={"enriched": "true"},
        )

    async def list_clusters(self) -> list[Cluster]:
        return await self._get(
            self._account_path("/clusters"),
            lambda d: [Cluster.from_api_response(c) for c in d.get("clusters") or []],
            params={"enriched": "true"},
        )

    async def resize_cluster(
        self,
        cluster_id: int,
        datacenter_id: int,
        instance_id: int,
        wanted_size: int,
    ) -> ClusterRequest:
        body = {
            "dcNodes": [
                {
                    "dcId": datacenter_id,
                    "wantedSize": wanted_size,
                    "instanceTypeId": instance_id,
                }
            ]
        }
        return await self._post(
            self._account_path(f"/cluster/{cluster_id}/resize"),
            body,
            ClusterRequest.from_api_response,
        )

    async def delete_cluster(self, cluster_id: int, cluster_name: str) -> ClusterRequest:
        """Submit a deletion; the backend checks ``cluster_name`` matches."""
        return await self._post(
            self._account_path(f"/cluster/{cluster_id}/delete"),
            {"clusterName": cluster_name},
            ClusterRequest.from_api_response,
        )

    async def list_datacenters(self, cluster_id: int) -> list[Datacenter]:
        return await self._get(
            self._account_path(f"/cluster/{cluster_id}/dcs"),
            lambda d: [Datacenter.from_api_response(dc) for dc in d.get("dataCenters") or []],
            params={"enriched": "true"},
        )

    async def list_nodes(self, cluster_id: int) -> list[Node]:
        return await self._get(
            self._account_path(f"/cluster/{cluster_id}/nodes"),
            lambda d: [Node.from_api_response(n) for n in d.get("nodes") or []],
            params={"enriched": "true"},
        )

    async def get_connection_info(self, cluster_id: int) -> ConnectionInfo:
        return await self._get(
            self._account_path("/cluster/connect"),
            ConnectionInfo.from_api_response,
            params={"clusterId": str(cluster_id)},
        )

    async def get_bundle(self, cluster_id: int) -> bytes:
        """Download the connection bundle as raw bytes."""
        return await self._transport.call_raw(
            "GET",
            self._account_path(f"/cluster/{cluster_id}/bundle"),
            logger=self._logger,
        )

    # =========================================================================
    # CLUSTER REQUESTS
    # =========================================================================

    async def get_cluster_request(self, request_id: int) -> ClusterRequest:
        return await self._get(
            self._account_path(f"/cluster/request/{request_id}"),
            ClusterRequest.from_api_response,
            retry_policy=self._transport.poll_retry_policy,
        )

    async def list_cluster_requests(
        self,
        cluster_id: int,
        *,
        type: str | None = None,  # noqa: A002 - mirrors the query parameter
        status: str | None = None,
    ) -> list[ClusterRequest]:
        params = {k: v for k, v in (("type", type), ("status", status)) if v}
        return await self._get(
            self._account_path(f"/cluster/{cluster_id}/request"),
            lambda d: [ClusterRequest.from_api_response(r) for r in d or []],
            params=params or None,
            retry_policy=self._transport.poll_retry_policy,
        )

    # =========================================================================
    # ALLOWLIST RULES
    # =========================================================================

    async def list_allowlist_rules(self, cluster_id: int) -> list[AllowedIP]:
        return await self._get(
            self._account_path(f"/cluster/{cluster_id}/network/firewall/allowed"),
            lambda d: [AllowedIP.from_api_response(r) for r in d or []],
        )

    async def create_allowlist_rule(self, cluster_id: int, address: str) -> list[AllowedIP]:
        """Add a CIDR to the allowlist; returns the rules created."""
        return await self._post(
            self._account_path(f"/cluster/{cluster_id}/network/firewall/allowed"),
            {"ipAddress": address},
            lambda d: [AllowedIP.from_api_response(r) for r in d or []],
        )

    async def delete_allowlist_rule(self, cluster_id: int, rule_id: int) -> None:
        await self._delete(self._account_path(f"/cluster/{cluster_id}/network/firewall/allowed/{rule_id}"))

    # =========================================================================
    # VPC PEERING
    # =========================================================================

    async def list_vpc_peerings(self, cluster_id: int) -> list[VPCPeering]:
        return await self._get(
            self._account_path(f"/cluster/{cluster_id}/network/vpc/peer"),
            lambda d: [VPCPeering.from_api_response(p) for p in d or []],
        )

    async def create_vpc_peering(self, cluster_id: int, request: VPCPeeringRequest) -> VPCPeering:
        """Create a peering and read it back for the full record."""
        peer_id = await self._post(
            self._account_path(f"/cluster/{cluster_id}/network/vpc/peer"),
            request.to_api_request(),
            lambda d: int(d["id"]),
        )
        return await self.get_vpc_peering(cluster_id, peer_id)

    async def get_vpc_peering(self, cluster_id: int, peer_id: int) -> VPCPeering:
        return await self._get(
            self._account_path(f"/cluster/{cluster_id}/network/vpc/peer/{peer_id}"),
            VPCPeering.from_api_response,
        )

    async def delete_vpc_peering(self, cluster_id: int, peer_id: int) -> None:
        await self._delete(self._account_path(f"/cluster/{cluster_id}/network/vpc/peer/{peer_id}"))

    # =========================================================================
    # CLUSTER CONNECTIONS
    # =========================================================================

    async def create_cluster_connection(
        self, cluster_id: int, request: ClusterConnectionCreateRequest
    ) -> ClusterConnection:
        """Create a connection and read it back for the full record."""
        connection_id = await self._post(
            self._account_path(f"/cluster/{cluster_id}/network/vpc/connection"),
            request.to_api_request(),
            lambda d: int(d["connectionID"]),
        )
        return await self.get_cluster_connection(cluster_id, connection_id)

    async def get_cluster_connection(self, cluster_id: int, connection_id: int) -> ClusterConnection:
        return await self._get(
            self._account_path(f"/cluster/{cluster_id}/network/vpc/connection/{connection_id}"),
            ClusterConnection.from_api_response,
        )

    async def list_cluster_connections(self, cluster_id: int) -> list[ClusterConnection]:
        def parse(data: Any) -> list[ClusterConnection]:
            data = data or {}
            items = data.get("connections") or data.get("Connections") or []
            return [ClusterConnection.from_api_response(c) for c in items]

        return await self._get(self._account_path(f"/cluster/{cluster_id}/network/vpc/connection"), parse)

    async def update_cluster_connection(
        self, cluster_id: int, connection_id: int, request: ClusterConnectionUpdateRequest
    ) -> None:
        await self._transport.call(
            "PATCH",
            self._account_path(f"/cluster/{cluster_id}/network/vpc/connection/{connection_id}"),
            body=request.to_api_request(),
            logger=self._logger,
        )

    async def delete_cluster_connection(self, cluster_id: int, connection_id: int) -> None:
        await self._delete(self._account_path(f"/cluster/{cluster_id}/network/vpc/connection/{connection_id}"))

    # =========================================================================
    # STACK MANAGEMENT
    # =========================================================================

    async def send_stack(
        self,
        request_type: str,
        properties: dict[str, Any],
        request_id: str = "",
    ) -> str:
        """
        Send a stack lifecycle event using the signed request mode.

        The API token must have the form ``<user>:<secret>``; the secret signs
        the body and the user is the stack id.

        Returns:
            The stack id.

        Raises:
            ValueError: If the token is not in ``user:secret`` form.
        """
        user, sep, secret = self._instance.token.get_secret_value().partition(":")
        if not sep or not user or not secret or ":" in secret:
            raise ValueError("invalid token format")

        body = {
            "RequestType": request_type,
            "RequestId": request_id,
            "ResourceProperties": properties,
        }
        await self._transport.call_signed(
            "POST",
            "/",
            body,
            user=user,
            secret=secret,
            headers={STACK_FLAVOR_HEADER: STACK_FLAVOR},
            logger=self._logger,
        )
        return user
