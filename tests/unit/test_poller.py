# ABOUTME: Unit tests for the operation poller
# ABOUTME: Tests terminal status mapping, delete handling, conflict waiting and cancellation

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from scylla_cloud.models import ClusterConnection, ClusterRequest
from scylla_cloud.poller import OperationPoller, is_delete_kind
from scylla_cloud.utils.client import ScyllaCloudClient
from scylla_cloud.utils.errors import (
    APIError,
    FailureKind,
    OperationFailedError,
    ScyllaCloudError,
    UnrecognizedStatusError,
)

from conftest import ACCOUNT_URL, envelope


def request(status: str, request_id: int = 9, request_type: str = "CREATE_CLUSTER", **kwargs) -> ClusterRequest:
    return ClusterRequest(id=request_id, request_type=request_type, cluster_id=42, status=status, **kwargs)


def gone() -> APIError:
    return APIError(kind=FailureKind.RESOURCE_GONE, message="Resource has been deleted", code="040001")


@pytest.mark.unit
class TestIsDeleteKind:
    """Tests for is_delete_kind."""

    @pytest.mark.parametrize("kind", ["DELETE_CLUSTER", "delete_cluster", "DELETE"])
    def test_delete_kinds(self, kind: str):
        assert is_delete_kind(kind) is True

    @pytest.mark.parametrize("kind", ["CREATE_CLUSTER", "RESIZE_CLUSTER", "", None])
    def test_other_kinds(self, kind):
        assert is_delete_kind(kind) is False


@pytest.mark.unit
class TestAwaitCompletion:
    """Tests for OperationPoller.await_completion."""

    async def test_polls_until_completed(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.side_effect = [
            request("QUEUED"),
            request("IN_PROGRESS", progress_percent=50),
            request("COMPLETED", progress_percent=100),
        ]
        poller = OperationPoller(mock_client, interval=10.0, sleep=sleep)

        result = await poller.await_completion(9)

        assert result.status == "COMPLETED"
        assert mock_client.get_cluster_request.await_count == 3
        assert sleep.calls == [10.0, 10.0]

    async def test_already_completed_does_not_sleep(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.return_value = request("COMPLETED")
        poller = OperationPoller(mock_client, sleep=sleep)

        await poller.await_completion(9)

        assert sleep.calls == []

    async def test_status_is_case_insensitive(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.side_effect = [request("in_progress"), request("completed")]
        poller = OperationPoller(mock_client, sleep=sleep)

        result = await poller.await_completion(9)

        assert result.status == "completed"

    async def test_failed_raises_with_reason(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.side_effect = [
            request("IN_PROGRESS", request_type="RESIZE_CLUSTER"),
            request("FAILED", request_type="RESIZE_CLUSTER", progress_description="INSUFFICIENT_CAPACITY"),
        ]
        poller = OperationPoller(mock_client, sleep=sleep)

        with pytest.raises(OperationFailedError) as exc_info:
            await poller.await_completion(9)

        assert exc_info.value.kind is FailureKind.OPERATION_FAILED
        assert exc_info.value.reason == "INSUFFICIENT_CAPACITY"
        assert exc_info.value.request_type == "RESIZE_CLUSTER"

    async def test_unknown_status_is_protocol(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.return_value = request("BOGUS")
        poller = OperationPoller(mock_client, sleep=sleep)

        with pytest.raises(UnrecognizedStatusError) as exc_info:
            await poller.await_completion(9)

        assert exc_info.value.kind is FailureKind.PROTOCOL
        assert exc_info.value.status == "BOGUS"

    async def test_deleted_target_of_delete_request(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.side_effect = [request("IN_PROGRESS", request_type="DELETE_CLUSTER"), gone()]
        poller = OperationPoller(mock_client, sleep=sleep)

        result = await poller.await_completion(9)

        assert result.status == "DELETED"
        assert result.request_type == "DELETE_CLUSTER"

    async def test_deleted_with_declared_delete_kind(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.side_effect = gone()
        poller = OperationPoller(mock_client, sleep=sleep)

        result = await poller.await_completion(9, kind="DELETE_CLUSTER")

        assert result.status == "DELETED"

    async def test_deleted_target_of_other_request_raises(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.side_effect = gone()
        poller = OperationPoller(mock_client, sleep=sleep)

        with pytest.raises(APIError) as exc_info:
            await poller.await_completion(9, kind="RESIZE_CLUSTER")

        assert exc_info.value.is_deleted

    async def test_read_errors_propagate(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_request.side_effect = APIError(
            kind=FailureKind.TRANSIENT_SERVER, message="Service Unavailable", status_code=503
        )
        poller = OperationPoller(mock_client, sleep=sleep)

        with pytest.raises(APIError):
            await poller.await_completion(9)

    async def test_cancelled_during_poll_sleep(self, mock_client: AsyncMock):
        """Test a caller timeout interrupts the interval sleep right away."""
        mock_client.get_cluster_request.return_value = request("IN_PROGRESS")
        poller = OperationPoller(mock_client, interval=3600.0)

        with pytest.raises(TimeoutError):
            async with asyncio.timeout(0.2):
                await poller.await_completion(9)

        assert mock_client.get_cluster_request.await_count == 1


@pytest.mark.unit
class TestAwaitNoConflicting:
    """Tests for OperationPoller.await_no_conflicting."""

    async def test_returns_immediately_when_idle(self, mock_client: AsyncMock, sleep):
        mock_client.list_cluster_requests.return_value = []
        poller = OperationPoller(mock_client, sleep=sleep)

        await poller.await_no_conflicting(42)

        mock_client.list_cluster_requests.assert_awaited_once_with(42, status="IN_PROGRESS")
        assert sleep.calls == []

    async def test_waits_for_in_progress_requests(self, mock_client: AsyncMock, sleep):
        mock_client.list_cluster_requests.side_effect = [
            [request("IN_PROGRESS", request_id=3, request_type="ADD_ALLOWLIST")],
            [request("IN_PROGRESS", request_id=3, request_type="ADD_ALLOWLIST")],
            [],
        ]
        poller = OperationPoller(mock_client, interval=5.0, sleep=sleep)

        await poller.await_no_conflicting(42)

        assert mock_client.list_cluster_requests.await_count == 3
        assert sleep.calls == [5.0, 5.0]

    async def test_ignores_finished_requests(self, mock_client: AsyncMock, sleep):
        mock_client.list_cluster_requests.return_value = [request("COMPLETED")]
        poller = OperationPoller(mock_client, sleep=sleep)

        await poller.await_no_conflicting(42)

        assert sleep.calls == []


@pytest.mark.unit
class TestAwaitConnectionStatus:
    """Tests for OperationPoller.await_connection_status."""

    async def test_polls_until_target(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_connection.side_effect = [
            ClusterConnection(id=11, status="PENDING"),
            ClusterConnection(id=11, status="INIT"),
            ClusterConnection(id=11, status="ACTIVE", external_id="tgw-attach-1"),
        ]
        poller = OperationPoller(mock_client, interval=10.0, sleep=sleep)

        result = await poller.await_connection_status(42, 11, "ACTIVE")

        assert result is not None
        assert result.external_id == "tgw-attach-1"
        assert sleep.calls == [10.0, 10.0]
        mock_client.get_cluster_connection.assert_awaited_with(42, 11)

    async def test_gone_connection_reaches_deleted(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_connection.side_effect = [
            ClusterConnection(id=11, status="DELETING"),
            APIError(kind=FailureKind.APPLICATION, message="Not Found", status_code=404),
        ]
        poller = OperationPoller(mock_client, sleep=sleep)

        assert await poller.await_connection_status(42, 11, "DELETED") is None
        assert len(sleep.calls) == 1

    async def test_deleted_code_reaches_deleted(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_connection.side_effect = gone()
        poller = OperationPoller(mock_client, sleep=sleep)

        assert await poller.await_connection_status(42, 11, "deleted") is None
        assert sleep.calls == []

    async def test_gone_while_waiting_for_active_raises(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_connection.side_effect = gone()
        poller = OperationPoller(mock_client, sleep=sleep)

        with pytest.raises(ScyllaCloudError) as exc_info:
            await poller.await_connection_status(42, 11, "ACTIVE")

        assert exc_info.value.kind is FailureKind.PROTOCOL
        assert "DELETED" in str(exc_info.value)

    async def test_unexpected_status_is_protocol(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_connection.return_value = ClusterConnection(id=11, status="ERROR")
        poller = OperationPoller(mock_client, sleep=sleep)

        with pytest.raises(ScyllaCloudError) as exc_info:
            await poller.await_connection_status(42, 11, "ACTIVE")

        assert exc_info.value.kind is FailureKind.PROTOCOL
        assert sleep.calls == []

    async def test_other_read_errors_propagate(self, mock_client: AsyncMock, sleep):
        mock_client.get_cluster_connection.side_effect = APIError(
            kind=FailureKind.APPLICATION, message="Forbidden", status_code=403
        )
        poller = OperationPoller(mock_client, sleep=sleep)

        with pytest.raises(APIError):
            await poller.await_connection_status(42, 11, "ACTIVE")


@pytest.mark.unit
class TestAwaitCompletionNullFields:
    """Tests for request reads whose JSON fields are null."""

    @respx.mock
    async def test_null_status_is_protocol(self, client: ScyllaCloudClient, sleep):
        respx.get(f"{ACCOUNT_URL}/cluster/request/5").mock(
            return_value=httpx.Response(200, json=envelope({"id": 5, "status": None}))
        )
        poller = OperationPoller(client, sleep=sleep)

        with pytest.raises(UnrecognizedStatusError) as exc_info:
            await poller.await_completion(5)

        assert exc_info.value.kind is FailureKind.PROTOCOL

    @respx.mock
    async def test_null_progress_on_completed_request(self, client: ScyllaCloudClient, sleep):
        respx.get(f"{ACCOUNT_URL}/cluster/request/5").mock(
            return_value=httpx.Response(
                200,
                json=envelope(
                    {
                        "id": 5,
                        "requestType": "CREATE_CLUSTER",
                        "clusterId": 42,
                        "status": "COMPLETED",
                        "progressPercent": None,
                        "progressDescription": None,
                    }
                ),
            )
        )
        poller = OperationPoller(client, sleep=sleep)

        result = await poller.await_completion(5)

        assert result.status == "COMPLETED"
        assert result.cluster_id == 42
        assert result.progress_percent == 0
