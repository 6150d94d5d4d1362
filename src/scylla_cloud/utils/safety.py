# ABOUTME: Safety guards for mutating Scylla Cloud operations
# ABOUTME: Enforces read-only mode, destructive-operation blocking and delete name confirmation

"""Safety checks applied before any mutating cluster operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from scylla_cloud.config import SecuritySettings

logger = structlog.get_logger(__name__)


@dataclass
class OperationBlocked:
    """Result indicating an operation is refused by the security settings."""

    operation: str
    reason: str
    setting: str

    def format_message(self) -> str:
        """Format blocked message for the caller."""
        text = f"OPERATION BLOCKED: {self.operation}\nReason: {self.reason}"
        if self.setting:
            text += f"\nSetting: {self.setting}\nTo enable: Set {self.setting}=false"
        return text


class SafetyGuard:
    """Checks mutating operations against SecuritySettings."""

    def __init__(self, settings: SecuritySettings) -> None:
        self._settings = settings

    @property
    def mask_secrets(self) -> bool:
        return self._settings.mask_secrets

    def check_write_operation(self, operation: str) -> OperationBlocked | None:
        """Check if a mutating operation is allowed.

        Args:
            operation: Operation name

        Returns:
            OperationBlocked if blocked, None if allowed
        """
        if self._settings.read_only:
            logger.warning("Write operation blocked", operation=operation)
            return OperationBlocked(
                operation=operation,
                reason="Client is running in read-only mode",
                setting="SCYLLA_CLOUD_SECURITY_READ_ONLY",
            )
        return None

    def check_destructive_operation(
        self,
        operation: str,
        target: str,
        confirm_name: str | None = None,
    ) -> OperationBlocked | None:
        """Check if a destructive operation is allowed.

        Deletes must carry the name of the object being deleted; the backend
        compares it with the actual cluster name.

        Args:
            operation: Operation name
            target: Target resource identifier
            confirm_name: Name confirmation sent with the delete

        Returns:
            OperationBlocked if blocked, None if allowed
        """
        write_check = self.check_write_operation(operation)
        if write_check:
            return write_check

        if self._settings.disable_destructive:
            logger.warning("Destructive operation blocked", operation=operation, target=target)
            return OperationBlocked(
                operation=operation,
                reason="Destructive operations are disabled",
                setting="SCYLLA_CLOUD_SECURITY_DISABLE_DESTRUCTIVE",
            )

        if not confirm_name:
            return OperationBlocked(
                operation=operation,
                reason=f"Deleting {target} requires the object name as confirmation",
                setting="",
            )

        return None
