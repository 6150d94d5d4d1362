# ABOUTME: Waits for asynchronous Scylla Cloud cluster requests to reach a terminal status
# ABOUTME: Maps QUEUED/IN_PROGRESS/COMPLETED/FAILED and deleted targets to outcomes

"""
Operation poller.

=============================================================================
STATE MACHINE (one poll)
=============================================================================

    QUEUED / IN_PROGRESS   sleep for the interval, poll again
    COMPLETED              return the request
    FAILED                 raise OperationFailedError with the backend's text
    anything else          raise UnrecognizedStatusError (PROTOCOL)
    read says "deleted"    delete-type request: return a DELETED request
                           any other request: re-raise

Statuses compare case-insensitively. The first read happens immediately;
the interval sleep only separates consecutive reads.

Cluster connections have no request id; ``await_connection_status`` polls
the connection itself until it reaches a target status. PENDING, INIT and
DELETING keep polling, and a connection that is gone reads as DELETED.

There is no internal time limit. Provisioning can take tens of minutes; the
caller bounds the wait with ``asyncio.timeout`` or by cancelling the task,
which interrupts the pending read or sleep right away.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from scylla_cloud.models import (
    CONNECTION_PENDING_STATUSES,
    CONNECTION_STATUS_DELETED,
    STATUS_COMPLETED,
    STATUS_DELETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    PENDING_STATUSES,
    ClusterConnection,
    ClusterRequest,
)
from scylla_cloud.utils.errors import (
    FailureKind,
    OperationFailedError,
    ScyllaCloudError,
    UnrecognizedStatusError,
    is_not_found_error,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from scylla_cloud.utils.client import ScyllaCloudClient

DEFAULT_POLL_INTERVAL = 10.0


def is_delete_kind(kind: str | None) -> bool:
    """True for request types that remove their target, e.g. DELETE_CLUSTER."""
    return bool(kind) and kind.upper().startswith("DELETE")


class OperationPoller:
    """
    Blocks until cluster requests finish.

    Example:
        poller = OperationPoller(client, interval=settings.poll_interval)
        request = await poller.await_completion(request_id, kind="CREATE_CLUSTER")
    """

    def __init__(
        self,
        client: ScyllaCloudClient,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> None:
        self._client = client
        self._interval = interval
        self._sleep = sleep
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def interval(self) -> float:
        return self._interval

    async def await_completion(
        self,
        request_id: int,
        *,
        kind: str | None = None,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> ClusterRequest:
        """
        Poll a cluster request until it is terminal.

        Args:
            request_id: Id returned when the operation was submitted.
            kind: Request type when known up front (e.g. "DELETE_CLUSTER");
                otherwise taken from the first successful read.
            logger: Logger carrying the caller's bound fields.

        Returns:
            The COMPLETED request, or a synthesized DELETED one when the
            target of a delete-type request is already gone.

        Raises:
            OperationFailedError: The request reached FAILED.
            UnrecognizedStatusError: The request reported an unknown status.
            ScyllaCloudError: The read failed after transport retries.
        """
        log = (logger or self._logger).bind(request_id=request_id)
        client = self._client.with_logger(log)

        while True:
            try:
                request = await client.get_cluster_request(request_id)
            except ScyllaCloudError as e:
                if e.is_deleted and is_delete_kind(kind):
                    log.info("Cluster request target already deleted", kind=kind)
                    return ClusterRequest(id=request_id, request_type=kind or "", status=STATUS_DELETED)
                raise

            kind = kind or request.request_type
            status = request.status.upper()

            if status in PENDING_STATUSES:
                log.debug(
                    "Cluster request in progress",
                    status=status,
                    progress=request.progress_percent,
                    description=request.progress_description,
                )
                await self._sleep(self._interval)
                continue

            if status == STATUS_COMPLETED:
                log.info("Cluster request completed", kind=kind, cluster_id=request.cluster_id)
                return request

            if status == STATUS_FAILED:
                log.warning(
                    "Cluster request failed",
                    kind=kind,
                    reason=request.progress_description,
                )
                raise OperationFailedError(request.id or request_id, kind or "", request.progress_description)

            raise UnrecognizedStatusError(request.id or request_id, request.status)

    async def await_no_conflicting(
        self,
        cluster_id: int,
        *,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> None:
        """
        Wait until the cluster has no in-progress requests.

        Used before a resize, which the backend rejects while another request
        is running. This is a best-effort quiescence check, not a lock.
        """
        log = (logger or self._logger).bind(cluster_id=cluster_id)
        client = self._client.with_logger(log)

        while True:
            requests = await client.list_cluster_requests(cluster_id, status=STATUS_IN_PROGRESS)
            pending = [r for r in requests if r.is_pending]
            if not pending:
                return

            log.info(
                "Waiting for in-progress cluster requests",
                pending=[(r.id, r.request_type) for r in pending],
            )
            await self._sleep(self._interval)

    async def await_connection_status(
        self,
        cluster_id: int,
        connection_id: int,
        target: str,
        *,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> ClusterConnection | None:
        """
        Poll a cluster connection until it reaches ``target``.

        PENDING, INIT and DELETING keep polling. A connection the backend no
        longer knows (Resource-Gone or HTTP 404) counts as DELETED.

        Returns:
            The connection, or None when ``target`` is DELETED and it is gone.

        Raises:
            ScyllaCloudError: The connection settled in another status (PROTOCOL).
        """
        log = (logger or self._logger).bind(cluster_id=cluster_id, connection_id=connection_id)
        client = self._client.with_logger(log)
        target = target.upper()

        while True:
            try:
                connection = await client.get_cluster_connection(cluster_id, connection_id)
            except ScyllaCloudError as e:
                if not is_not_found_error(e):
                    raise
                connection = None

            status = connection.status.upper() if connection is not None else CONNECTION_STATUS_DELETED

            if status == target:
                log.info("Cluster connection reached status", status=status)
                return connection

            if status in CONNECTION_PENDING_STATUSES:
                log.debug("Cluster connection in progress", status=status, target=target)
                await self._sleep(self._interval)
                continue

            raise ScyllaCloudError(
                f"cluster connection {connection_id} is {status!r}, expected {target!r}",
                FailureKind.PROTOCOL,
            )
