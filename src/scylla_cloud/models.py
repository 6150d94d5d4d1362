# ABOUTME: Typed views of Scylla Cloud API payloads
# ABOUTME: Dataclasses built from JSON responses via from_api_response factories

"""
Scylla Cloud API data classes.

The API returns camelCase JSON with many fields this client never reads.
Each dataclass below keeps only the fields the metadata cache, poller and
reconciler need, and is built with ``from_api_response``. A field that is
missing or JSON ``null`` decodes to its zero value ("" / 0 / False).

Cluster request statuses
------------------------

    QUEUED, IN_PROGRESS   still running
    COMPLETED, FAILED     terminal
    DELETED               synthesized client-side when the target is gone
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

STATUS_QUEUED = "QUEUED"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
STATUS_DELETED = "DELETED"

PENDING_STATUSES = frozenset([STATUS_QUEUED, STATUS_IN_PROGRESS])

NODE_STATUS_ACTIVE = "ACTIVE"

CONNECTION_STATUS_ACTIVE = "ACTIVE"
CONNECTION_STATUS_INACTIVE = "INACTIVE"
CONNECTION_STATUS_DELETED = "DELETED"

CONNECTION_PENDING_STATUSES = frozenset(["PENDING", "INIT", "DELETING"])


# =============================================================================
# CATALOG
# =============================================================================


@dataclass(frozen=True)
class CloudProvider:
    """A cloud provider, e.g. AWS or GCP."""

    id: int
    name: str
    root_account_id: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> CloudProvider:
        return cls(
            id=int(data.get("id") or 0),
            name=data.get("name") or "",
            root_account_id=str(data.get("rootAccountID") or ""),
        )


@dataclass(frozen=True)
class Region:
    """
    A provider region.

    ``external_id`` is the provider's own name ("us-east-1") and is what
    users type; ``id`` is the backend identifier sent in requests.
    """

    id: int
    external_id: str
    cloud_provider_id: int = 0
    name: str = ""
    dc_name: str = ""
    full_name: str = ""
    continent: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Region:
        return cls(
            id=int(data.get("id") or 0),
            external_id=data.get("externalId") or "",
            cloud_provider_id=int(data.get("cloudProviderId") or 0),
            name=data.get("name") or "",
            dc_name=data.get("dcName") or "",
            full_name=data.get("fullName") or "",
            continent=data.get("continent") or "",
        )


@dataclass(frozen=True)
class InstanceType:
    """A machine type such as "i3.large"; ``total_storage`` is in GB."""

    id: int
    external_id: str
    cloud_provider_id: int = 0
    group_default: bool = False
    display_order: int = 0
    memory: int = 0
    local_disk_count: int = 0
    total_storage: int = 0
    cpu_count: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> InstanceType:
        return cls(
            id=int(data.get("id") or 0),
            external_id=data.get("externalId") or "",
            cloud_provider_id=int(data.get("cloudProviderId") or 0),
            group_default=bool(data.get("groupDefault")),
            display_order=int(data.get("displayOrder") or 0),
            memory=int(data.get("memory") or 0),
            local_disk_count=int(data.get("localDiskCount") or 0),
            total_storage=int(data.get("totalStorage") or 0),
            cpu_count=int(data.get("cpuCount") or 0),
        )


@dataclass(frozen=True)
class ScyllaVersion:
    id: int
    version: str
    description: str = ""
    new_cluster: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ScyllaVersion:
        return cls(
            id=int(data.get("id") or 0),
            version=data.get("version") or "",
            description=data.get("description") or "",
            new_cluster=str(data.get("newCluster") or ""),
        )


@dataclass(frozen=True)
class RegionCatalog:
    """Regions and instance types offered by one provider."""

    regions: tuple[Region, ...] = ()
    instances: tuple[InstanceType, ...] = ()
    default_region_id: int = 0
    default_instance_id: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> RegionCatalog:
        return cls(
            regions=tuple(Region.from_api_response(r) for r in data.get("regions") or []),
            instances=tuple(InstanceType.from_api_response(i) for i in data.get("instances") or []),
            default_region_id=int(data.get("defaultRegionId") or 0),
            default_instance_id=int(data.get("defaultInstanceId") or 0),
        )


@dataclass(frozen=True)
class VersionCatalog:
    versions: tuple[ScyllaVersion, ...] = ()
    default_version_id: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> VersionCatalog:
        return cls(
            versions=tuple(ScyllaVersion.from_api_response(v) for v in data.get("scyllaVersions") or []),
            default_version_id=int(data.get("defaultScyllaVersionId") or 0),
        )


# =============================================================================
# CLUSTER REQUESTS
# =============================================================================


@dataclass(frozen=True)
class ClusterRequest:
    """
    A backend-tracked asynchronous operation on a cluster.

    Only the backend changes ``status``; the client reads it until it is
    terminal. ``progress_description`` carries the backend's text, which for
    a FAILED request is the failure reason.
    """

    id: int
    request_type: str = ""
    cluster_id: int = 0
    status: str = ""
    progress_percent: int = 0
    progress_description: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ClusterRequest:
        return cls(
            id=int(data.get("id") or 0),
            request_type=data.get("requestType") or "",
            cluster_id=int(data.get("clusterID") or data.get("clusterId") or 0),
            status=data.get("status") or "",
            progress_percent=int(data.get("progressPercent") or 0),
            progress_description=data.get("progressDescription") or "",
        )

    @property
    def is_pending(self) -> bool:
        return self.status.upper() in PENDING_STATUSES


# =============================================================================
# CLUSTERS
# =============================================================================


@dataclass(frozen=True)
class Node:
    id: int
    status: str = ""
    dns: str = ""
    private_ip: str = ""
    public_ip: str = ""
    datacenter_id: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Node:
        return cls(
            id=int(data.get("id") or 0),
            status=data.get("status") or "",
            dns=data.get("dns") or "",
            private_ip=data.get("privateIP") or "",
            public_ip=data.get("publicIP") or "",
            datacenter_id=int(data.get("dcID") or 0),
        )


@dataclass(frozen=True)
class Datacenter:
    id: int
    name: str = ""
    status: str = ""
    cloud_provider_id: int = 0
    region_id: int = 0
    instance_id: int = 0
    cidr_block: str = ""
    credential_id: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Datacenter:
        return cls(
            id=int(data.get("id") or 0),
            name=data.get("Name") or data.get("name") or "",
            status=data.get("Status") or data.get("status") or "",
            cloud_provider_id=int(data.get("CloudProviderID") or data.get("cloudProviderId") or 0),
            region_id=int(data.get("regionID") or 0),
            instance_id=int(data.get("instanceId") or 0),
            cidr_block=data.get("cidrBlock") or "",
            credential_id=int(data.get("accountCloudProviderCredentialsId") or 0),
        )


@dataclass(frozen=True)
class AllowedIP:
    """An allowlist (firewall) rule on a cluster."""

    id: int
    cluster_id: int = 0
    address: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> AllowedIP:
        return cls(
            id=int(data.get("id") or 0),
            cluster_id=int(data.get("clusterId") or 0),
            address=data.get("address") or "",
        )


@dataclass(frozen=True)
class VPCPeering:
    id: int
    external_id: str = ""
    vpc_id: str = ""
    owner_id: str = ""
    region_id: int = 0
    cidr_list: tuple[str, ...] = ()
    status: str = ""
    network_name: str = ""
    project_id: str = ""
    allow_cql: bool = False

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> VPCPeering:
        return cls(
            id=int(data.get("id") or 0),
            external_id=data.get("externalId") or "",
            vpc_id=data.get("vpcId") or "",
            owner_id=data.get("ownerId") or "",
            region_id=int(data.get("regionId") or 0),
            cidr_list=tuple(data.get("cidrList") or ()),
            status=data.get("status") or "",
            network_name=data.get("networkName") or "",
            project_id=data.get("projectID") or "",
            allow_cql=bool(data.get("allowCql")),
        )

    @property
    def network_link(self) -> str:
        """GCP network self-link of the peered network."""
        return f"projects/{self.project_id}/global/networks/{self.network_name}"


@dataclass(frozen=True)
class ClusterConnection:
    """
    A cluster connection (for example an AWS Transit Gateway attachment).

    ``status`` moves through PENDING / INIT to ACTIVE or INACTIVE, and through
    DELETING once removed. ``data`` carries the provider-specific settings.
    """

    id: int
    name: str = ""
    type: str = ""
    status: str = ""
    external_id: str = ""
    cluster_id: int = 0
    cluster_dc_id: int = 0
    cluster_vpc_id: int = 0
    cidr_list: tuple[str, ...] = ()
    data: dict[str, str] = field(default_factory=dict, hash=False)
    stage: str = ""
    stage_message: str = ""
    awaiting_for_client: bool = False

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ClusterConnection:
        return cls(
            id=int(data.get("id") or 0),
            name=data.get("name") or "",
            type=data.get("type") or "",
            status=data.get("status") or "",
            external_id=data.get("externalId") or "",
            cluster_id=int(data.get("clusterId") or 0),
            cluster_dc_id=int(data.get("clusterDCID") or 0),
            cluster_vpc_id=int(data.get("clusterVPCID") or 0),
            cidr_list=tuple(data.get("cidrList") or ()),
            data=dict(data.get("data") or {}),
            stage=data.get("stage") or "",
            stage_message=data.get("stageMessage") or "",
            awaiting_for_client=bool(data.get("awaitingForClient")),
        )


@dataclass(frozen=True)
class Cluster:
    """
    A provisioned cluster as returned by ``GET .../cluster/{id}?enriched=true``.

    ``node_count`` counts ACTIVE nodes only; it is the observed size used by
    the resize logic.
    """

    id: int
    name: str
    status: str = ""
    cloud_provider_id: int = 0
    user_api_interface: str = ""
    broadcast_type: str = ""
    dns: bool = False
    replication_factor: int = 0
    region_id: int = 0
    region_external_id: str = ""
    instance_external_id: str = ""
    instance_total_storage: int = 0
    scylla_version: str = ""
    alternator_write_isolation: str = ""
    datacenter: Datacenter | None = None
    datacenters: tuple[Datacenter, ...] = ()
    nodes: tuple[Node, ...] = ()
    vpc_peerings: tuple[VPCPeering, ...] = ()

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Cluster:
        region = data.get("region") or {}
        instance = data.get("instance") or {}
        version = data.get("scyllaVersion") or {}
        dc = data.get("dc")

        return cls(
            id=int(data.get("id") or 0),
            name=data.get("clusterName") or "",
            status=data.get("status") or "",
            cloud_provider_id=int(data.get("cloudProviderID") or data.get("cloudProviderId") or 0),
            user_api_interface=data.get("userApiInterface") or "",
            broadcast_type=data.get("broadcastType") or "",
            dns=bool(data.get("dns")),
            replication_factor=int(data.get("replicationFactor") or 0),
            region_id=int(region.get("id") or 0),
            region_external_id=region.get("externalId") or "",
            instance_external_id=instance.get("externalId") or "",
            instance_total_storage=int(instance.get("totalStorage") or 0),
            scylla_version=version.get("version") or "",
            alternator_write_isolation=data.get("alternatorWriteIsolation") or "",
            datacenter=Datacenter.from_api_response(dc) if dc else None,
            datacenters=tuple(Datacenter.from_api_response(d) for d in data.get("dataCenters") or []),
            nodes=tuple(Node.from_api_response(n) for n in data.get("nodes") or []),
            vpc_peerings=tuple(VPCPeering.from_api_response(p) for p in data.get("vpcPeeringList") or []),
        )

    @property
    def active_nodes(self) -> tuple[Node, ...]:
        return tuple(n for n in self.nodes if n.status.upper() == NODE_STATUS_ACTIVE)

    @property
    def node_count(self) -> int:
        return len(self.active_nodes)


@dataclass(frozen=True)
class DatacenterConnection:
    name: str
    public_ips: tuple[str, ...] = ()
    private_ips: tuple[str, ...] = ()
    dns: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConnectionInfo:
    """CQL connection details. Empty address entries are dropped."""

    broadcast_type: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    datacenters: tuple[DatacenterConnection, ...] = ()

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ConnectionInfo:
        credentials = data.get("credentials") or {}

        def nonempty(values: list[str] | None) -> tuple[str, ...]:
            return tuple(v for v in values or () if v)

        return cls(
            broadcast_type=data.get("broadcastType") or "",
            username=credentials.get("username") or "",
            password=credentials.get("password") or "",
            datacenters=tuple(
                DatacenterConnection(
                    name=dc.get("dcName") or "",
                    public_ips=nonempty(dc.get("publicIPs")),
                    private_ips=nonempty(dc.get("privateIPs")),
                    dns=nonempty(dc.get("dns")),
                )
                for dc in data.get("connectDataCenters") or []
            ),
        )


# =============================================================================
# REQUEST PAYLOADS
# =============================================================================


@dataclass
class ClusterCreateRequest:
    """Body of ``POST /account/{id}/cluster``. Zero ids are omitted."""

    cluster_name: str
    number_of_nodes: int
    cloud_provider_id: int
    region_id: int
    instance_id: int
    replication_factor: int = 3
    broadcast_type: str = "PUBLIC"
    user_api_interface: str = "CQL"
    enable_dns_association: bool = True
    cidr_block: str = ""
    scylla_version_id: int = 0
    account_credential_id: int = 0
    alternator_write_isolation: str = ""
    allowed_ips: list[str] = field(default_factory=list)

    def to_api_request(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "clusterName": self.cluster_name,
            "numberOfNodes": self.number_of_nodes,
            "replicationFactor": self.replication_factor,
            "broadcastType": self.broadcast_type,
            "userApiInterface": self.user_api_interface,
            "enableDnsAssociation": self.enable_dns_association,
            "cloudProviderId": self.cloud_provider_id,
            "regionId": self.region_id,
            "instanceId": self.instance_id,
            "freeTier": False,
            "jumpStart": False,
            "promProxy": False,
        }
        optional = {
            "cidrBlock": self.cidr_block,
            "scyllaVersionId": self.scylla_version_id,
            "accountCredentialId": self.account_credential_id,
            "alternatorWriteIsolation": self.alternator_write_isolation,
            "allowedIPs": self.allowed_ips,
        }
        body.update({k: v for k, v in optional.items() if v})
        return body


@dataclass
class VPCPeeringRequest:
    datacenter_id: int
    vpc_id: str
    cidr_block: str
    owner_id: str
    region_id: int
    allow_cql: bool = True

    def to_api_request(self) -> dict[str, Any]:
        return {
            "dcId": self.datacenter_id,
            "vpcId": self.vpc_id,
            "cidrBlock": self.cidr_block,
            "ownerId": self.owner_id,
            "regionId": self.region_id,
            "allowCql": self.allow_cql,
        }


@dataclass
class ClusterConnectionCreateRequest:
    """Body of ``POST .../cluster/{id}/network/vpc/connection``."""

    name: str
    type: str
    datacenter_id: int
    cidr_list: list[str]
    data: dict[str, str] = field(default_factory=dict)

    def to_api_request(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "cidrList": list(self.cidr_list),
            "clusterDCID": self.datacenter_id,
            "data": dict(self.data),
            "type": self.type,
        }


@dataclass
class ClusterConnectionUpdateRequest:
    """Body of ``PATCH .../network/vpc/connection/{id}``; ``status`` is ACTIVE or INACTIVE."""

    name: str
    cidr_list: list[str]
    status: str = CONNECTION_STATUS_ACTIVE

    def to_api_request(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "cidrList": list(self.cidr_list),
            "status": self.status,
        }
