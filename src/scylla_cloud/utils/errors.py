# ABOUTME: Error taxonomy for the Scylla Cloud API client
# ABOUTME: Classifies HTTP statuses, backend codes and socket failures into retryable or fatal kinds

"""
Error taxonomy for Scylla Cloud API calls.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Every failed call ends up here exactly once. The raw failure (an HTTP status,
a backend error code from the response envelope, or a low-level httpx/socket
exception) is turned into a ScyllaCloudError carrying a FailureKind. From then
on callers only look at ``error.kind``, ``error.retryable`` and
``error.is_deleted``; nobody digs through exception chains again.

=============================================================================
FAILURE KINDS
=============================================================================

    TRANSIENT_NETWORK   connection reset, broken pipe, refused, timeouts
    FATAL_NETWORK       TLS trust failure, unsupported scheme, anything else
    TRANSIENT_SERVER    429/502/503/504/408/423/425 or backend code 000001
    APPLICATION         any other backend error or non-2xx status
    RESOURCE_GONE       backend code 040001 (object already deleted)
    OPERATION_FAILED    a polled cluster request reached FAILED
    PROTOCOL            unparseable envelope or unknown request status

Only the two TRANSIENT kinds are retried by the transport.

=============================================================================
ERROR CODE TABLE
=============================================================================

The backend reports errors as six-digit numeric strings. The code -> message
table ships as ``codes.txt`` next to this module and is parsed once at import.
Non-numeric error strings are used as the message verbatim.
"""

from __future__ import annotations

import errno
import ssl
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from importlib import resources
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

# =============================================================================
# CLASSIFICATION TABLES
# =============================================================================

RETRY_STATUSES = frozenset(
    [
        httpx.codes.TOO_MANY_REQUESTS,
        httpx.codes.BAD_GATEWAY,
        httpx.codes.SERVICE_UNAVAILABLE,
        httpx.codes.GATEWAY_TIMEOUT,
        httpx.codes.REQUEST_TIMEOUT,
        httpx.codes.LOCKED,
        httpx.codes.TOO_EARLY,
    ]
)

# "000001" is the backend's sentinel for "transient, try again".
RETRY_CODES = frozenset(["000001"])

DELETED_CODES = frozenset(["040001"])

# Substring rules for network errors that carry no usable errno.
# Fail rules are checked first.
RETRY_MESSAGES = (
    "connection reset",
    "broken pipe",
    "connection refused",
    "connection aborted",
    "server disconnected",
    "use of closed network connection",
)

FAIL_MESSAGES = (
    "certificate verify failed",
    "certificate is not trusted",
    "unsupported protocol",
    "request canceled",
)

TEMPORARY_ERRNOS = frozenset(
    [
        errno.ECONNRESET,
        errno.ECONNREFUSED,
        errno.ECONNABORTED,
        errno.EPIPE,
        errno.ETIMEDOUT,
        errno.EAGAIN,
    ]
)

GENERIC_CODE_MESSAGE = "Request has failed. For more details consult the error code"


class FailureKind(str, Enum):
    """Classification assigned to a failure where it is first observed."""

    TRANSIENT_NETWORK = "transient_network"
    FATAL_NETWORK = "fatal_network"
    TRANSIENT_SERVER = "transient_server"
    APPLICATION = "application"
    RESOURCE_GONE = "resource_gone"
    OPERATION_FAILED = "operation_failed"
    PROTOCOL = "protocol"

    @property
    def retryable(self) -> bool:
        return self in (FailureKind.TRANSIENT_NETWORK, FailureKind.TRANSIENT_SERVER)


# =============================================================================
# CODE TABLE
# =============================================================================


def parse_codes(text: str) -> dict[str, str]:
    """
    Parse the error code table.

    Each non-blank, non-comment line is ``<numeric code> <message>``.

    Raises:
        ValueError: On a line without a message or with a non-numeric code.
    """
    codes: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or line.startswith("#"):
            continue

        parts = line.split(" ", 1)
        if len(parts) != 2 or not parts[1].strip():
            raise ValueError(f"unable to parse line: {line!r}")

        code, message = parts[0].strip(), parts[1].strip()
        if not code.isdigit():
            raise ValueError(f"unable to parse code {code!r}")

        codes[code] = message
    return codes


def load_codes() -> dict[str, str]:
    """Load the bundled code table."""
    text = resources.files("scylla_cloud.utils").joinpath("codes.txt").read_text(encoding="utf-8")
    return parse_codes(text)


ERROR_CODES: Mapping[str, str] = load_codes()


def translate_error(text: str, codes: Mapping[str, str] | None = None) -> tuple[str | None, str]:
    """
    Split a backend ``error`` value into (code, message).

    Numeric values are codes and are translated through the table; anything
    else is already a message.
    """
    if codes is None:
        codes = ERROR_CODES
    if text.isdigit():
        return text, codes.get(text) or GENERIC_CODE_MESSAGE
    return None, text


# =============================================================================
# EXCEPTIONS
# =============================================================================


class ScyllaCloudError(Exception):
    """
    Base class for every failure surfaced by this package.

    ``kind`` is decided once, at the boundary where the failure was observed.
    """

    def __init__(self, message: str, kind: FailureKind = FailureKind.APPLICATION) -> None:
        self.message = message
        self.kind = kind
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @property
    def is_deleted(self) -> bool:
        return self.kind is FailureKind.RESOURCE_GONE


class APIError(ScyllaCloudError):
    """
    Failure reported by the API: a non-empty envelope ``error`` field, a
    non-2xx status or a response that could not be decoded.

    Example:
        try:
            await client.get_cluster(42)
        except APIError as e:
            print(e.code, e.status_code, e.message)
    """

    def __init__(
        self,
        *,
        kind: FailureKind,
        message: str,
        code: str | None = None,
        status_code: int = 0,
        method: str = "",
        url: str = "",
        retry_after: float | None = None,
    ) -> None:
        self.code = code
        self.status_code = status_code
        self.method = method
        self.url = url
        self.retry_after = retry_after
        super().__init__(message, kind)

    def __str__(self) -> str:
        base = "Scylla Cloud API error"
        if self.code:
            base += f" {self.code}"
        return f"{base}: {self.message} (http status {self.status_code}, {self.method} {self.url})"


class NetworkError(ScyllaCloudError):
    """A request that never produced an HTTP response."""

    def __init__(self, *, kind: FailureKind, message: str, method: str, url: str) -> None:
        self.method = method
        self.url = url
        super().__init__(message, kind)

    def __str__(self) -> str:
        return f"Network error: {self.message} ({self.method} {self.url})"


class OperationFailedError(ScyllaCloudError):
    """A cluster request reached the terminal FAILED status."""

    def __init__(self, request_id: int, request_type: str, reason: str) -> None:
        self.request_id = request_id
        self.request_type = request_type
        self.reason = reason
        text = f"cluster request {request_id} ({request_type or 'unknown type'}) failed"
        if reason:
            text += f": {reason}"
        super().__init__(text, FailureKind.OPERATION_FAILED)


class UnrecognizedStatusError(ScyllaCloudError):
    """A cluster request reported a status outside the known vocabulary."""

    def __init__(self, request_id: int, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"unrecognized cluster request status {status!r} for request {request_id}",
            FailureKind.PROTOCOL,
        )


class OperationBlockedError(ScyllaCloudError):
    """A mutating operation was refused by the safety guard."""


class ResolutionError(ScyllaCloudError, LookupError):
    """A user-facing name could not be resolved against the metadata catalog."""

    def __init__(self, attribute: str, value: object, detail: str = "") -> None:
        self.attribute = attribute
        self.value = value
        text = f"unrecognized value {value!r} for {attribute!r}"
        if detail:
            text += f" {detail}"
        super().__init__(text, FailureKind.APPLICATION)


def is_deleted_error(exc: BaseException | None) -> bool:
    """Return True when ``exc`` means the target object no longer exists."""
    return isinstance(exc, ScyllaCloudError) and exc.is_deleted


def is_not_found_error(exc: BaseException | None) -> bool:
    """Like ``is_deleted_error``, but an HTTP 404 also counts as missing."""
    if is_deleted_error(exc):
        return True
    return isinstance(exc, APIError) and exc.status_code == 404


# =============================================================================
# CLASSIFICATION
# =============================================================================


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """
    Parse a ``Retry-After`` header into seconds.

    Accepts delta-seconds ("2") or an HTTP-date. Dates in the past yield 0.
    Returns None when the header is missing or malformed.
    """
    if not value:
        return None

    value = value.strip()
    if value.isdigit():
        return float(int(value))

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None

    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delta = (when - (now or datetime.now(UTC))).total_seconds()
    return max(delta, 0.0)


def classify_response(
    *,
    status_code: int,
    error_text: str,
    method: str,
    url: str,
    headers: Mapping[str, str] | None = None,
    protocol_violation: bool = False,
    fallback_message: str | None = None,
    codes: Mapping[str, str] | None = None,
) -> APIError:
    """
    Classify a completed HTTP exchange that did not succeed.

    Classification is driven by the backend code and the HTTP status only;
    the message text is never inspected.

    Args:
        status_code: HTTP status of the response.
        error_text: Envelope ``error`` value; empty means "use the status text".
        method: HTTP method of the request.
        url: Full request URL.
        headers: Response headers (for Retry-After).
        protocol_violation: The body could not be decoded as an envelope.
        fallback_message: Message to use instead of the HTTP reason phrase
            when there is no error text.
        codes: Code table override (tests).
    """
    if error_text:
        code, message = translate_error(error_text, codes)
    else:
        code = None
        message = (
            fallback_message
            or httpx.codes.get_reason_phrase(status_code)
            or f"HTTP {status_code}"
        )

    if code in DELETED_CODES:
        kind = FailureKind.RESOURCE_GONE
    elif code in RETRY_CODES or status_code in RETRY_STATUSES:
        kind = FailureKind.TRANSIENT_SERVER
    elif protocol_violation:
        kind = FailureKind.PROTOCOL
    else:
        kind = FailureKind.APPLICATION

    retry_after = parse_retry_after((headers or {}).get("Retry-After"))

    return APIError(
        kind=kind,
        message=message,
        code=code,
        status_code=status_code,
        method=method,
        url=url,
        retry_after=retry_after,
    )


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _is_temporary_os_error(exc: BaseException) -> bool:
    for e in _exception_chain(exc):
        if isinstance(e, ssl.SSLError):
            return False
        if isinstance(e, ConnectionError):
            return True
        if isinstance(e, OSError) and e.errno in TEMPORARY_ERRNOS:
            return True
    return False


def classify_transport_error(exc: Exception, *, method: str, url: str) -> NetworkError:
    """
    Classify an exception raised before any HTTP response arrived.

    Temporary socket conditions (reset, broken pipe, refused, connect/read
    timeouts) are retryable; TLS trust failures, unsupported schemes and
    anything unrecognised are fatal.
    """
    text = str(exc) or type(exc).__name__
    lowered = text.lower()
    chain = list(_exception_chain(exc))

    if (
        isinstance(exc, httpx.UnsupportedProtocol)
        or any(isinstance(e, ssl.SSLCertVerificationError) for e in chain)
        or any(msg in lowered for msg in FAIL_MESSAGES)
    ):
        kind = FailureKind.FATAL_NETWORK
    elif isinstance(exc, httpx.TimeoutException) or _is_temporary_os_error(exc):
        kind = FailureKind.TRANSIENT_NETWORK
    elif isinstance(exc, httpx.ConnectError):
        # Failed dial.
        kind = FailureKind.TRANSIENT_NETWORK
    elif any(msg in lowered for msg in RETRY_MESSAGES):
        kind = FailureKind.TRANSIENT_NETWORK
    else:
        kind = FailureKind.FATAL_NETWORK

    return NetworkError(kind=kind, message=text, method=method, url=url)
