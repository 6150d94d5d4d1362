# ABOUTME: Cluster lifecycle orchestration: create, resize, delete and read back Scylla Cloud clusters
# ABOUTME: Drives submit-then-poll cycles, guards resizes against in-flight requests, adopts scale-out drift

"""
Cluster reconciler.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The reconciler turns a declared cluster (ClusterSpec) into backend calls and
reads the result back as a ClusterState. Every mutation is a
submit-then-poll cycle: submit through the client, hand the returned request
id to the OperationPoller, then re-read the cluster.

=============================================================================
RESIZE
=============================================================================

    desired == observed ACTIVE nodes   no-op, no network calls
    otherwise                          wait until no request is IN_PROGRESS
                                       submit resize
                                       wait for the resize request
                                       re-read the cluster

A FAILED resize (for example not enough disk space left after a scale-in)
raises OperationFailedError with the backend's reason. The state passed in is
never modified, so the caller still holds the last observed size.

=============================================================================
DRIFT
=============================================================================

Reads compute ``min_nodes`` from the declared value and the observed ACTIVE
node count:

    declared unknown               min_nodes = observed
    observed > declared            min_nodes = observed   (adopt scale-out)
    otherwise                      min_nodes = declared

Out-of-band scale-outs become the new baseline instead of being reverted.
Out-of-band scale-ins are not adopted; the next resize restores the
declared size.

A read first looks up the cluster's CREATE_CLUSTER request and waits for it
when it is still QUEUED or IN_PROGRESS.

=============================================================================
CLUSTER CONNECTIONS
=============================================================================

Connections have no request id. Create, update and delete wait on the
connection's own status instead: ACTIVE after create, the requested ACTIVE
or INACTIVE after update, DELETED (or gone) after delete.

=============================================================================
ERRORS
=============================================================================

Transient failures were already retried by the transport. Everything that
reaches this module is surfaced unchanged, except Resource-Gone on read and
delete paths, which means "already gone" there.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import structlog

from scylla_cloud.models import (
    CONNECTION_STATUS_ACTIVE,
    CONNECTION_STATUS_DELETED,
    CONNECTION_STATUS_INACTIVE,
    PENDING_STATUSES,
    STATUS_COMPLETED,
    STATUS_DELETED,
    AllowedIP,
    Cluster,
    ClusterConnection,
    ClusterConnectionCreateRequest,
    ClusterConnectionUpdateRequest,
    ClusterCreateRequest,
    ClusterRequest,
    VPCPeering,
    VPCPeeringRequest,
)
from scylla_cloud.utils.errors import (
    FailureKind,
    OperationBlockedError,
    ResolutionError,
    ScyllaCloudError,
    is_not_found_error,
)
from scylla_cloud.utils.logging import new_correlation_id

if TYPE_CHECKING:
    from scylla_cloud.metadata import MetadataCache
    from scylla_cloud.poller import OperationPoller
    from scylla_cloud.utils.client import ScyllaCloudClient
    from scylla_cloud.utils.logging import AuditLogger
    from scylla_cloud.utils.safety import SafetyGuard

DEFAULT_CIDR_BLOCK = "172.31.0.0/16"

DEFAULT_REPLICATION_FACTOR = 3

# Credential ids below this are the service's own accounts, not BYOA.
MIN_BYOA_ID = 1000

CREATE_CLUSTER = "CREATE_CLUSTER"
RESIZE_CLUSTER = "RESIZE_CLUSTER"
DELETE_CLUSTER = "DELETE_CLUSTER"

DELETE_ACCEPTED_STATUSES = PENDING_STATUSES | {STATUS_COMPLETED}


# =============================================================================
# DECLARED AND OBSERVED STATE
# =============================================================================


@dataclass
class ClusterSpec:
    """Declared cluster, with user-facing names."""

    name: str
    cloud: str
    region: str
    node_type: str
    min_nodes: int
    node_disk_size: int | None = None
    scylla_version: str | None = None
    user_api_interface: str = "CQL"
    alternator_write_isolation: str = "only_rmw_uses_lwt"
    enable_vpc_peering: bool = True
    enable_dns: bool = True
    cidr_block: str | None = None
    byoa_id: int | None = None
    allowed_ips: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ClusterState:
    """
    Observed cluster.

    ``node_count`` is the number of ACTIVE nodes; ``min_nodes`` is the size
    the caller should keep declaring (see DRIFT in the module docstring).
    """

    cluster_id: int
    name: str
    cloud: str
    region: str
    node_type: str
    node_count: int
    min_nodes: int
    status: str
    user_api_interface: str = ""
    datacenter: str = ""
    datacenter_id: int = 0
    instance_id: int = 0
    cidr_block: str = ""
    scylla_version: str = ""
    enable_vpc_peering: bool = False
    enable_dns: bool = False
    node_dns_names: tuple[str, ...] = ()
    node_private_ips: tuple[str, ...] = ()
    alternator_write_isolation: str = ""
    byoa_id: int | None = None
    node_disk_size: int | None = None
    request_id: int | None = None


def reconcile_min_nodes(declared: int | None, observed: int) -> int:
    """Apply the drift rule: keep the larger of declared and observed."""
    if declared is None:
        return observed
    return max(declared, observed)


# =============================================================================
# RECONCILER
# =============================================================================


class ClusterReconciler:
    """
    Create, resize, delete and read clusters.

    Example:
        async with ScyllaCloudClient(instance) as client:
            metadata = await MetadataCache.build(client)
            reconciler = ClusterReconciler(client, metadata, OperationPoller(client))
            state = await reconciler.create(ClusterSpec(...))
            state = await reconciler.resize(state, 6)
            await reconciler.delete(state.cluster_id, state.name)
    """

    def __init__(
        self,
        client: ScyllaCloudClient,
        metadata: MetadataCache,
        poller: OperationPoller,
        *,
        safety: SafetyGuard | None = None,
        audit: AuditLogger | None = None,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> None:
        self._client = client
        self._metadata = metadata
        self._poller = poller
        self._safety = safety
        self._audit = audit
        self._logger = logger or structlog.get_logger(__name__)

    def _begin(self, operation: str, **fields: Any) -> tuple[Any, ScyllaCloudClient, str]:
        """Bind a fresh correlation id for one reconciliation."""
        correlation_id = new_correlation_id()
        log = self._logger.bind(correlation_id=correlation_id, operation=operation, **fields)
        return log, self._client.with_logger(log), correlation_id

    # =========================================================================
    # AUDIT AND SAFETY
    # =========================================================================

    def _check_write(self, action: str, target: str, correlation_id: str) -> None:
        if self._safety is None:
            return
        blocked = self._safety.check_write_operation(action)
        if blocked:
            self._record_blocked(action, target, blocked.reason, correlation_id)
            raise OperationBlockedError(blocked.format_message())

    def _check_destructive(self, action: str, target: str, confirm_name: str, correlation_id: str) -> None:
        if self._safety is None:
            if not confirm_name:
                raise OperationBlockedError(f"Deleting {target} requires the object name as confirmation")
            return
        blocked = self._safety.check_destructive_operation(action, target, confirm_name)
        if blocked:
            self._record_blocked(action, target, blocked.reason, correlation_id)
            raise OperationBlockedError(blocked.format_message())

    def _record_blocked(self, action: str, target: str, reason: str, correlation_id: str) -> None:
        if self._audit:
            self._audit.log_blocked(action, target, reason, correlation_id=correlation_id)

    def _record_success(
        self, action: str, target: str, correlation_id: str, details: dict[str, Any] | None = None
    ) -> None:
        if self._audit:
            self._audit.log_success(action, target, details, correlation_id=correlation_id)

    def _record_error(self, action: str, target: str, error: Exception, correlation_id: str) -> None:
        if self._audit:
            self._audit.log_error(action, target, str(error), correlation_id=correlation_id)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def build_create_request(
        self,
        spec: ClusterSpec,
        client: ScyllaCloudClient | None = None,
    ) -> ClusterCreateRequest:
        """
        Resolve the declared cluster's names against the catalog into a create payload.

        The region's own instance list is fetched so that node types the
        region does not offer are rejected before submission.

        Raises:
            ResolutionError: Unknown cloud, region, node type or version.
        """
        client = client or self._client

        provider = self._metadata.resolve_provider(spec.cloud)
        region = self._metadata.resolve_region(provider, spec.region)
        instances = await client.list_region_instances(provider.id, region.id)
        instance = self._metadata.resolve_instance_type(
            provider, region, spec.node_type, spec.node_disk_size, instances
        )
        version = self._metadata.resolve_version(spec.scylla_version)

        return ClusterCreateRequest(
            cluster_name=spec.name,
            number_of_nodes=spec.min_nodes,
            cloud_provider_id=provider.id,
            region_id=region.id,
            instance_id=instance.id,
            replication_factor=DEFAULT_REPLICATION_FACTOR,
            broadcast_type="PRIVATE" if spec.enable_vpc_peering else "PUBLIC",
            user_api_interface=spec.user_api_interface,
            enable_dns_association=spec.enable_dns,
            cidr_block=spec.cidr_block or DEFAULT_CIDR_BLOCK,
            scylla_version_id=version.id,
            account_credential_id=spec.byoa_id or 0,
            alternator_write_isolation=(
                spec.alternator_write_isolation if spec.user_api_interface == "ALTERNATOR" else ""
            ),
            allowed_ips=list(spec.allowed_ips),
        )

    async def submit_create(self, spec: ClusterSpec) -> int:
        """Submit a creation and return its cluster request id."""
        log, client, correlation_id = self._begin(CREATE_CLUSTER, cluster_name=spec.name)
        self._check_write("create_cluster", spec.name, correlation_id)
        return await self._submit_create(spec, client, log)

    async def _submit_create(self, spec: ClusterSpec, client: ScyllaCloudClient, log: Any) -> int:
        request = await self.build_create_request(spec, client)
        request_id = await client.create_cluster(request)
        log.info("Cluster creation submitted", request_id=request_id)
        return request_id

    async def create(self, spec: ClusterSpec) -> ClusterState:
        """Create a cluster and wait until it is ready."""
        log, client, correlation_id = self._begin(CREATE_CLUSTER, cluster_name=spec.name)
        self._check_write("create_cluster", spec.name, correlation_id)

        try:
            request_id = await self._submit_create(spec, client, log)
            request = await self._poller.await_completion(request_id, kind=CREATE_CLUSTER, logger=log)
            state = await self._read(request.cluster_id, spec.min_nodes, client)
        except ScyllaCloudError as e:
            self._record_error("create_cluster", spec.name, e, correlation_id)
            raise

        state = _with_request_id(state, request_id)
        self._record_success(
            "create_cluster",
            spec.name,
            correlation_id,
            {"cluster_id": state.cluster_id, "request_id": request_id, "nodes": state.node_count},
        )
        return state

    # =========================================================================
    # READ
    # =========================================================================

    async def read(self, cluster_id: int, min_nodes: int | None = None) -> ClusterState | None:
        """
        Read the observed state of a cluster.

        The cluster's CREATE_CLUSTER request is looked up first. A creation
        that is still queued or running is waited out before the cluster is
        read, so a read that follows an interrupted create resumes the wait
        instead of reporting a half-built cluster.

        Returns:
            The state, or None when the cluster no longer exists.
        """
        log, client, _ = self._begin("read_cluster", cluster_id=cluster_id)
        try:
            requests = await client.list_cluster_requests(cluster_id, type=CREATE_CLUSTER)
            if len(requests) != 1:
                raise ScyllaCloudError(
                    f"unexpected number of cluster requests, expected 1, got {len(requests)}",
                    FailureKind.PROTOCOL,
                )
            creation = requests[0]
            if creation.status.upper() != STATUS_COMPLETED:
                log.info("Waiting for cluster creation", request_id=creation.id, status=creation.status)
                await self._poller.await_completion(creation.id, kind=CREATE_CLUSTER, logger=log)
            state = await self._read(cluster_id, min_nodes, client)
        except ScyllaCloudError as e:
            if e.is_deleted:
                log.info("Cluster is gone")
                return None
            raise
        return _with_request_id(state, creation.id)

    async def get_resource(self, cluster_id: int) -> Cluster:
        """Raw cluster record, without catalog translation."""
        _, client, _ = self._begin("get_cluster", cluster_id=cluster_id)
        return await client.get_cluster(cluster_id)

    async def list_resources(self) -> list[Cluster]:
        _, client, _ = self._begin("list_clusters")
        return await client.list_clusters()

    async def _read(self, cluster_id: int, min_nodes: int | None, client: ScyllaCloudClient) -> ClusterState:
        cluster = await client.get_cluster(cluster_id)
        return await self._observe(cluster, min_nodes, client)

    async def _observe(
        self,
        cluster: Cluster,
        min_nodes: int | None,
        client: ScyllaCloudClient,
    ) -> ClusterState:
        _reject_multi_datacenter(cluster)

        provider = self._metadata.provider_by_id(cluster.cloud_provider_id)
        if provider is None:
            raise ScyllaCloudError(
                f"unexpected cloud provider id: {cluster.cloud_provider_id}",
                FailureKind.PROTOCOL,
            )

        dc = cluster.datacenter
        node_type = ""
        if dc is not None and dc.instance_id:
            instances = await client.list_region_instances(provider.id, cluster.region_id)
            instance = self._metadata.instance_by_id(provider.id, dc.instance_id, instances)
            if instance is None:
                raise ScyllaCloudError(f"unexpected instance id: {dc.instance_id}", FailureKind.PROTOCOL)
            node_type = instance.external_id

        observed = cluster.node_count
        byoa_id = dc.credential_id if dc is not None and dc.credential_id >= MIN_BYOA_ID else None

        return ClusterState(
            cluster_id=cluster.id,
            name=cluster.name,
            cloud=provider.name,
            region=cluster.region_external_id,
            node_type=node_type,
            node_count=observed,
            min_nodes=reconcile_min_nodes(min_nodes, observed),
            status=cluster.status,
            user_api_interface=cluster.user_api_interface,
            datacenter=dc.name if dc else "",
            datacenter_id=dc.id if dc else 0,
            instance_id=dc.instance_id if dc else 0,
            cidr_block=dc.cidr_block if dc else "",
            scylla_version=cluster.scylla_version,
            enable_vpc_peering=cluster.broadcast_type.upper() != "PUBLIC",
            enable_dns=cluster.dns,
            node_dns_names=tuple(n.dns for n in cluster.nodes),
            node_private_ips=tuple(n.private_ip for n in cluster.nodes),
            alternator_write_isolation=(
                cluster.alternator_write_isolation if cluster.user_api_interface == "ALTERNATOR" else ""
            ),
            byoa_id=byoa_id,
            node_disk_size=cluster.instance_total_storage or None,
        )

    # =========================================================================
    # RESIZE
    # =========================================================================

    async def submit_resize(
        self,
        cluster_id: int,
        desired: int,
        *,
        datacenter_id: int | None = None,
        instance_id: int | None = None,
    ) -> ClusterRequest:
        """
        Submit a resize without waiting for it.

        When the datacenter or instance id is not given the cluster is read
        to find them.
        """
        log, client, correlation_id = self._begin(RESIZE_CLUSTER, cluster_id=cluster_id, desired=desired)
        self._check_write("resize_cluster", f"cluster={cluster_id}", correlation_id)
        return await self._submit_resize(cluster_id, desired, datacenter_id, instance_id, client, log)

    async def _submit_resize(
        self,
        cluster_id: int,
        desired: int,
        datacenter_id: int | None,
        instance_id: int | None,
        client: ScyllaCloudClient,
        log: Any,
    ) -> ClusterRequest:
        if not datacenter_id or not instance_id:
            cluster = await client.get_cluster(cluster_id)
            _reject_multi_datacenter(cluster)
            if cluster.datacenter is None:
                raise ScyllaCloudError(f"cluster {cluster_id} has no datacenter", FailureKind.PROTOCOL)
            datacenter_id = datacenter_id or cluster.datacenter.id
            instance_id = instance_id or cluster.datacenter.instance_id

        request = await client.resize_cluster(cluster_id, datacenter_id, instance_id, desired)
        log.info("Cluster resize submitted", request_id=request.id, status=request.status)
        return request

    async def resize(self, state: ClusterState, desired: int) -> ClusterState:
        """
        Resize a cluster to ``desired`` ACTIVE nodes.

        Returns:
            The re-read state. When ``desired`` already matches the observed
            node count, ``state`` itself is returned without any call.

        Raises:
            OperationFailedError: The backend refused the resize; ``state``
                still describes the cluster.
        """
        target = f"cluster={state.cluster_id}"
        log, client, correlation_id = self._begin(
            RESIZE_CLUSTER,
            cluster_id=state.cluster_id,
            current=state.node_count,
            desired=desired,
        )

        if desired == state.node_count:
            log.debug("Node count already matches; nothing to do")
            if self._audit:
                self._audit.log_noop(
                    "resize_cluster", target, f"already {desired} nodes", correlation_id=correlation_id
                )
            return state

        self._check_write("resize_cluster", target, correlation_id)
        _reject_unknown_datacenter(state)

        try:
            await self._poller.await_no_conflicting(state.cluster_id, logger=log)
            request = await self._submit_resize(
                state.cluster_id, desired, state.datacenter_id, state.instance_id, client, log
            )
            await self._poller.await_completion(request.id, kind=request.request_type or RESIZE_CLUSTER, logger=log)
            new_state = await self._read(state.cluster_id, desired, client)
        except ScyllaCloudError as e:
            self._record_error("resize_cluster", target, e, correlation_id)
            raise

        self._record_success(
            "resize_cluster",
            target,
            correlation_id,
            {"from": state.node_count, "to": new_state.node_count, "request_id": request.id},
        )
        return new_state

    # =========================================================================
    # DELETE
    # =========================================================================

    async def submit_delete(self, cluster_id: int, confirm_name: str) -> ClusterRequest:
        """
        Submit a deletion without waiting for it.

        An already deleted cluster yields a synthesized DELETED request.

        Raises:
            ScyllaCloudError: The backend answered with a status other than
                QUEUED, IN_PROGRESS or COMPLETED.
        """
        log, client, correlation_id = self._begin(DELETE_CLUSTER, cluster_id=cluster_id)
        self._check_destructive("delete_cluster", f"cluster={cluster_id}", confirm_name, correlation_id)
        return await self._submit_delete(cluster_id, confirm_name, client, log)

    async def _submit_delete(
        self,
        cluster_id: int,
        confirm_name: str,
        client: ScyllaCloudClient,
        log: Any,
    ) -> ClusterRequest:
        try:
            request = await client.delete_cluster(cluster_id, confirm_name)
        except ScyllaCloudError as e:
            if e.is_deleted:
                log.info("Cluster was already deleted")
                return ClusterRequest(id=0, request_type=DELETE_CLUSTER, cluster_id=cluster_id, status=STATUS_DELETED)
            raise

        if request.status.upper() not in DELETE_ACCEPTED_STATUSES:
            raise ScyllaCloudError(
                f"delete request failure, cluster request id: {request.id} (status {request.status!r})",
                FailureKind.APPLICATION,
            )

        log.info("Cluster deletion submitted", request_id=request.id, status=request.status)
        return request

    async def delete(self, cluster_id: int, confirm_name: str) -> ClusterRequest:
        """
        Delete a cluster and wait until the deletion finishes.

        Deleting a cluster that is already gone succeeds.
        """
        target = f"cluster={cluster_id}"
        log, client, correlation_id = self._begin(DELETE_CLUSTER, cluster_id=cluster_id)
        self._check_destructive("delete_cluster", target, confirm_name, correlation_id)

        try:
            request = await self._submit_delete(cluster_id, confirm_name, client, log)
            if request.is_pending:
                request = await self._poller.await_completion(
                    request.id, kind=request.request_type or DELETE_CLUSTER, logger=log
                )
        except ScyllaCloudError as e:
            self._record_error("delete_cluster", target, e, correlation_id)
            raise

        self._record_success("delete_cluster", target, correlation_id, {"status": request.status})
        return request

    # =========================================================================
    # ALLOWLIST RULES
    # =========================================================================

    async def create_allowlist_rule(self, cluster_id: int, cidr_block: str) -> AllowedIP:
        """Allow ``cidr_block`` to reach the cluster and return the new rule."""
        target = f"cluster={cluster_id}"
        log, client, correlation_id = self._begin("create_allowlist_rule", cluster_id=cluster_id)
        self._check_write("create_allowlist_rule", target, correlation_id)

        try:
            rules = await client.create_allowlist_rule(cluster_id, cidr_block)
            rule = next((r for r in rules if r.address.casefold() == cidr_block.casefold()), None)
            if rule is None:
                raise ScyllaCloudError(
                    f"unable to find allowlist rule for {cidr_block!r} cidr block",
                    FailureKind.PROTOCOL,
                )
        except ScyllaCloudError as e:
            self._record_error("create_allowlist_rule", target, e, correlation_id)
            raise

        log.info("Allowlist rule created", rule_id=rule.id)
        self._record_success("create_allowlist_rule", target, correlation_id, {"rule_id": rule.id})
        return rule

    async def delete_allowlist_rule(self, cluster_id: int, rule_id: int) -> None:
        """Remove an allowlist rule; a rule or cluster that is already gone is fine."""
        target = f"cluster={cluster_id} rule={rule_id}"
        log, client, correlation_id = self._begin("delete_allowlist_rule", cluster_id=cluster_id)
        self._check_destructive("delete_allowlist_rule", target, str(rule_id), correlation_id)

        try:
            await client.delete_allowlist_rule(cluster_id, rule_id)
        except ScyllaCloudError as e:
            if not e.is_deleted:
                self._record_error("delete_allowlist_rule", target, e, correlation_id)
                raise
            log.info("Allowlist rule was already deleted")

        self._record_success("delete_allowlist_rule", target, correlation_id)

    # =========================================================================
    # VPC PEERING
    # =========================================================================

    async def create_vpc_peering(
        self,
        cluster_id: int,
        *,
        datacenter: str,
        peer_region: str,
        peer_vpc_id: str,
        peer_account_id: str,
        peer_cidr_blocks: list[str],
        allow_cql: bool = True,
    ) -> VPCPeering:
        """
        Peer the cluster's datacenter with a VPC in the caller's account.

        Raises:
            ResolutionError: Unknown datacenter or peer region.
            ValueError: No peer CIDR block given.
        """
        if not peer_cidr_blocks:
            raise ValueError("at least one peer CIDR block is required")

        target = f"cluster={cluster_id}"
        log, client, correlation_id = self._begin("create_vpc_peering", cluster_id=cluster_id)
        self._check_write("create_vpc_peering", target, correlation_id)

        try:
            dcs = await client.list_datacenters(cluster_id)
            dc = next((d for d in dcs if d.name.casefold() == datacenter.casefold()), None)
            if dc is None:
                raise ResolutionError("datacenter", datacenter)

            provider = self._metadata.provider_by_id(dc.cloud_provider_id)
            if provider is None:
                raise ResolutionError("cloud", dc.cloud_provider_id, "(unknown provider id)")
            region = self._metadata.resolve_region(provider, peer_region)

            request = VPCPeeringRequest(
                datacenter_id=dc.id,
                vpc_id=peer_vpc_id,
                cidr_block=",".join(peer_cidr_blocks),
                owner_id=peer_account_id,
                region_id=region.id,
                allow_cql=allow_cql,
            )
            peering = await client.create_vpc_peering(cluster_id, request)
        except ScyllaCloudError as e:
            self._record_error("create_vpc_peering", target, e, correlation_id)
            raise

        log.info("VPC peering created", peer_id=peering.id, external_id=peering.external_id)
        self._record_success("create_vpc_peering", target, correlation_id, {"peer_id": peering.id})
        return peering

    async def delete_vpc_peering(self, cluster_id: int, peer_id: int) -> None:
        """Remove a VPC peering; one that is already gone is fine."""
        target = f"cluster={cluster_id} peer={peer_id}"
        log, client, correlation_id = self._begin("delete_vpc_peering", cluster_id=cluster_id)
        self._check_destructive("delete_vpc_peering", target, str(peer_id), correlation_id)

        try:
            await client.delete_vpc_peering(cluster_id, peer_id)
        except ScyllaCloudError as e:
            if not e.is_deleted:
                self._record_error("delete_vpc_peering", target, e, correlation_id)
                raise
            log.info("VPC peering was already deleted")

        self._record_success("delete_vpc_peering", target, correlation_id)

    # =========================================================================
    # CLUSTER CONNECTIONS
    # =========================================================================

    async def create_connection(
        self,
        cluster_id: int,
        *,
        datacenter: str,
        type: str,
        cidr_list: list[str],
        data: dict[str, str],
        name: str = "",
    ) -> ClusterConnection:
        """
        Attach a cluster connection to one datacenter and wait until it is ACTIVE.

        Raises:
            ResolutionError: Unknown datacenter.
            ValueError: Empty CIDR list, or ``data`` keys that are not lowercase.
        """
        if not cidr_list:
            raise ValueError("cidr list cannot be empty")
        _reject_mixed_case_keys(data)

        target = f"cluster={cluster_id}"
        log, client, correlation_id = self._begin("create_cluster_connection", cluster_id=cluster_id)
        self._check_write("create_cluster_connection", target, correlation_id)

        try:
            dcs = await client.list_datacenters(cluster_id)
            dc = next((d for d in dcs if d.name.casefold() == datacenter.casefold()), None)
            if dc is None:
                raise ResolutionError("datacenter", datacenter)
            if self._metadata.provider_by_id(dc.cloud_provider_id) is None:
                raise ResolutionError("cloud", dc.cloud_provider_id, "(unknown provider id)")

            request = ClusterConnectionCreateRequest(
                name=name,
                type=type,
                datacenter_id=dc.id,
                cidr_list=list(cidr_list),
                data=dict(data),
            )
            created = await client.create_cluster_connection(cluster_id, request)
            log.info("Cluster connection created", connection_id=created.id, status=created.status)
            connection = await self._poller.await_connection_status(
                cluster_id, created.id, CONNECTION_STATUS_ACTIVE, logger=log
            )
        except ScyllaCloudError as e:
            self._record_error("create_cluster_connection", target, e, correlation_id)
            raise

        self._record_success(
            "create_cluster_connection", target, correlation_id, {"connection_id": connection.id}
        )
        return connection

    async def update_connection(
        self,
        cluster_id: int,
        connection_id: int,
        *,
        cidr_list: list[str],
        name: str = "",
        status: str = CONNECTION_STATUS_ACTIVE,
    ) -> ClusterConnection:
        """
        Change a connection's name, CIDR list or status and wait for the status.

        Raises:
            ValueError: ``status`` is neither ACTIVE nor INACTIVE.
        """
        status = status.upper()
        if status not in (CONNECTION_STATUS_ACTIVE, CONNECTION_STATUS_INACTIVE):
            raise ValueError("status must be one of: ACTIVE or INACTIVE")

        target = f"cluster={cluster_id} connection={connection_id}"
        log, client, correlation_id = self._begin(
            "update_cluster_connection", cluster_id=cluster_id, connection_id=connection_id
        )
        self._check_write("update_cluster_connection", target, correlation_id)

        try:
            request = ClusterConnectionUpdateRequest(name=name, cidr_list=list(cidr_list), status=status)
            await client.update_cluster_connection(cluster_id, connection_id, request)
            connection = await self._poller.await_connection_status(cluster_id, connection_id, status, logger=log)
        except ScyllaCloudError as e:
            self._record_error("update_cluster_connection", target, e, correlation_id)
            raise

        self._record_success("update_cluster_connection", target, correlation_id, {"status": status})
        return connection

    async def delete_connection(self, cluster_id: int, connection_id: int) -> None:
        """Remove a cluster connection and wait until it is gone; one that is already gone is fine."""
        target = f"cluster={cluster_id} connection={connection_id}"
        log, client, correlation_id = self._begin(
            "delete_cluster_connection", cluster_id=cluster_id, connection_id=connection_id
        )
        self._check_destructive("delete_cluster_connection", target, str(connection_id), correlation_id)

        try:
            try:
                await client.delete_cluster_connection(cluster_id, connection_id)
            except ScyllaCloudError as e:
                if not is_not_found_error(e):
                    raise
                log.info("Cluster connection was already deleted")
                self._record_success("delete_cluster_connection", target, correlation_id)
                return

            await self._poller.await_connection_status(
                cluster_id, connection_id, CONNECTION_STATUS_DELETED, logger=log
            )
        except ScyllaCloudError as e:
            self._record_error("delete_cluster_connection", target, e, correlation_id)
            raise

        self._record_success("delete_cluster_connection", target, correlation_id)


def _reject_multi_datacenter(cluster: Cluster) -> None:
    if len(cluster.datacenters) > 1:
        raise ScyllaCloudError(
            f"multi-datacenter clusters are not currently supported: {len(cluster.datacenters)}",
            FailureKind.APPLICATION,
        )


def _reject_unknown_datacenter(state: ClusterState) -> None:
    if not state.datacenter_id or not state.instance_id:
        raise ScyllaCloudError(
            f"cluster {state.cluster_id} state has no datacenter or instance id",
            FailureKind.APPLICATION,
        )


def _with_request_id(state: ClusterState, request_id: int) -> ClusterState:
    return replace(state, request_id=request_id)


def _reject_mixed_case_keys(data: dict[str, str]) -> None:
    upper = sorted(k for k in data if k != k.lower())
    if upper:
        raise ValueError(f"data keys must be lowercase: {','.join(upper)}")
