# ABOUTME: Structured logging setup, secret masking and audit trail for Scylla Cloud calls
# ABOUTME: Loggers are passed explicitly; correlation ids are bound, never read from ambient context

"""
Structured logging with explicit correlation and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. STRUCTURED LOGGING: ``configure_logging`` sets up the structlog pipeline
   once at startup (console output for humans, JSON for log aggregators).

2. EXPLICIT CORRELATION: every reconciliation binds its own correlation id to
   the logger it hands down to the poller and the transport:

       log = logger.bind(correlation_id=new_correlation_id())
       await transport.call("GET", path, logger=log)

   Nothing reads the id back out of a context variable. A component only
   knows about the fields of the logger it was given.

3. SECRET MASKING: response bodies are logged at debug level, truncated and
   passed through ``mask_secrets`` first, so API tokens and credentials never
   reach the log.

4. AUDIT LOGGING: ``AuditLogger`` records every mutating reconciliation
   (create, resize, delete, allowlist and peering changes) with its outcome.

Logging never affects control flow.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from pathlib import Path

MAX_LOGGED_BODY = 1024

MASK = "***MASKED***"

# =============================================================================
# SECRET MASKING PATTERNS
# =============================================================================

# (pattern, replacement) pairs applied to strings, case-insensitive.
SECRET_PATTERNS = [
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), rf"\1{MASK}"),
    (re.compile(r"(basic\s+)[^\s\"']+", re.I), rf"\1{MASK}"),
]

# Dictionary keys whose values are always masked.
SENSITIVE_KEYS = frozenset(
    [
        "token",
        "password",
        "secret",
        "api_key",
        "apikey",
        "api-key",
        "authorization",
        "credential",
        "credentials",
        "privatekey",
        "private_key",
    ]
)


def mask_secrets(data: Any) -> Any:
    """
    Mask sensitive values in arbitrary JSON-like data.

    Strings go through SECRET_PATTERNS; dict values under SENSITIVE_KEYS are
    replaced outright; lists and dicts are walked recursively.
    """
    if isinstance(data, str):
        for pattern, replacement in SECRET_PATTERNS:
            data = pattern.sub(replacement, data)
        return data

    if isinstance(data, dict):
        return {
            k: MASK if str(k).lower() in SENSITIVE_KEYS else mask_secrets(v)
            for k, v in data.items()
        }

    if isinstance(data, list):
        return [mask_secrets(item) for item in data]

    return data


def truncate_body(body: bytes | str, limit: int = MAX_LOGGED_BODY) -> str:
    """Render a response body for logging, cut at ``limit`` characters."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if len(body) > limit:
        return f"{body[:limit]}...({len(body) - limit} more)"
    return body


# =============================================================================
# CORRELATION IDS
# =============================================================================


def new_correlation_id() -> str:
    """
    Return a fresh 8-character correlation id.

    Eight hex characters of a UUID4 are plenty to keep one reconciliation's
    events apart from another's while staying readable in log lines.
    """
    return uuid.uuid4().hex[:8]


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structured logging.

    Call once at startup. The pipeline adds the level and an ISO timestamp,
    merges any context variables the host application set, then renders as
    JSON (``json_output=True``) or colored console text.

    Args:
        level: "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL".
        json_output: Emit JSON lines instead of console text.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit trail for mutating cluster operations.

    Each entry records when, which correlation id, what action on which
    target, and the result:

        {"timestamp": "2026-01-15T10:30:00+00:00", "correlation_id": "a1b2c3d4",
         "action": "resize_cluster", "target": "cluster=42", "result": "error",
         "details": {"error": "cluster request 7 (RESIZE_CLUSTER) failed: ..."}}

    Results are one of ``success``, ``error``, ``blocked`` or ``noop``.

    With a ``log_path`` entries are appended as JSON lines to that file;
    without one they go to the "audit" structlog logger.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
        *,
        correlation_id: str = "",
    ) -> None:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": correlation_id,
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
                correlation_id=correlation_id,
            )

    def log_success(
        self,
        action: str,
        target: str,
        details: dict[str, Any] | None = None,
        *,
        correlation_id: str = "",
    ) -> None:
        self.log(action, target, "success", details, correlation_id=correlation_id)

    def log_noop(self, action: str, target: str, reason: str, *, correlation_id: str = "") -> None:
        """Record a reconciliation that found nothing to change."""
        self.log(action, target, "noop", {"reason": reason}, correlation_id=correlation_id)

    def log_blocked(self, action: str, target: str, reason: str, *, correlation_id: str = "") -> None:
        """Record an operation refused by the safety guard."""
        self.log(action, target, "blocked", {"reason": reason}, correlation_id=correlation_id)

    def log_error(self, action: str, target: str, error: str, *, correlation_id: str = "") -> None:
        self.log(action, target, "error", {"error": error}, correlation_id=correlation_id)
