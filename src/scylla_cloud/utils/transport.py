# ABOUTME: Request execution layer for the Scylla Cloud API with retry, backoff and envelope decoding
# ABOUTME: Every call is classified once, retried only when transient, and fully cancellable

"""
Transport for the Scylla Cloud REST API.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The Transport turns ``(method, path, body, params)`` into a decoded result:

1. BUILD: one fresh httpx request per attempt. Shared headers (bearer auth,
   Accept, User-Agent) come from the pooled client; ``Content-Type`` is added
   only when there is a body. The JSON body is encoded once up front so every
   attempt sends exactly the same bytes.

2. EXECUTE: send with a wall-clock timeout. Network failures are classified
   by ``errors.classify_transport_error``.

3. DECODE: responses are ``{"error": "...", "data": ...}`` envelopes. A
   non-empty ``error`` is a failure even with a 2xx status; an empty ``error``
   with a non-2xx status is a failure described by the HTTP status text.

4. RETRY: tenacity re-runs the attempt while the classified error is
   retryable and attempts remain. The wait before each retry is the server's
   ``Retry-After`` when present, otherwise exponential backoff.

=============================================================================
RETRY TIMELINE (default policy)
=============================================================================

    attempt 1 -> 503          wait 1s
    attempt 2 -> 429 + Retry-After: 5   wait 5s   (server hint wins)
    attempt 3 -> 503          give up, raise the APIError from attempt 3

=============================================================================
CANCELLATION
=============================================================================

Everything here is awaited: the HTTP exchange and the sleeps between
attempts. Cancelling the calling task (or an ``asyncio.timeout`` expiring)
interrupts whichever is pending and the CancelledError propagates as-is;
it is never classified or retried.

=============================================================================
SIGNED MODE
=============================================================================

``call_signed`` is used by the stack management endpoint. It authenticates
with HTTP Basic where the password is ``v1.<hex HMAC-SHA256(secret, body)>``,
and the response is plain JSON without an envelope.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from scylla_cloud.config import DEFAULT_USER_AGENT
from scylla_cloud.utils.errors import (
    APIError,
    FailureKind,
    ScyllaCloudError,
    classify_response,
    classify_transport_error,
)
from scylla_cloud.utils.logging import mask_secrets, truncate_body

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from tenacity import RetryCallState

    from scylla_cloud.config import CloudInstance, RetrySettings

T = TypeVar("T")

MAX_RESPONSE_SIZE = 1 << 20

SIGNATURE_VERSION = "v1"

JSON_CONTENT_TYPE = "application/json;charset=utf-8"


# =============================================================================
# RETRY POLICY
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to attempt a call and how long to wait in between.

    Immutable and passed explicitly: the Transport takes a default policy in
    its constructor and any call may override it. Poll reads use
    ``Transport.poll_retry_policy``, the default policy with
    POLL_MAX_ATTEMPTS attempts.
    """

    max_attempts: int = 3
    initial_backoff: float = 1.0
    multiplier: float = 2.0
    max_backoff: float = 30.0

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            initial_backoff=settings.initial_backoff,
            multiplier=settings.multiplier,
            max_backoff=settings.max_backoff,
        )

    def backoff(self, attempt: int) -> float:
        """Default wait after the ``attempt``-th failed attempt (1-based)."""
        return min(self.initial_backoff * self.multiplier ** (attempt - 1), self.max_backoff)


DEFAULT_RETRY_POLICY = RetryPolicy()

POLL_MAX_ATTEMPTS = 10


class wait_retry_after(wait_base):  # noqa: N801 - tenacity naming convention
    """
    Wait strategy honouring ``Retry-After``.

    Uses the delay carried by the failed attempt's APIError when the server
    sent one, otherwise ``policy.backoff`` for the attempt that just failed.
    """

    def __init__(self, policy: RetryPolicy) -> None:
        self._policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, APIError) and exc.retry_after is not None:
            return exc.retry_after
        return self._policy.backoff(retry_state.attempt_number)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ScyllaCloudError) and exc.retryable


# =============================================================================
# ENVELOPE DECODING
# =============================================================================


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def decode_envelope(
    body: bytes,
    status_code: int,
    *,
    method: str,
    url: str,
    headers: Mapping[str, str] | None = None,
    parse: Callable[[Any], T] | None = None,
) -> T:
    """
    Decode a ``{"error": str, "data": T}`` envelope.

    Args:
        body: Raw response body.
        status_code: HTTP status of the response.
        method: Request method, for error context.
        url: Request URL, for error context.
        headers: Response headers (Retry-After).
        parse: Turns the ``data`` value into the caller's type. When omitted
            the raw JSON value is returned.

    Returns:
        ``parse(data)``.

    Raises:
        APIError: On a non-empty ``error``, a non-2xx status, an undecodable
            body, or a ``data`` value that ``parse`` rejects.
    """
    try:
        envelope = json.loads(body) if body else {}
        if not isinstance(envelope, dict):
            raise ValueError(f"expected a JSON object, got {type(envelope).__name__}")
    except ValueError as e:
        raise classify_response(
            status_code=status_code,
            error_text="",
            method=method,
            url=url,
            headers=headers,
            protocol_violation=True,
            fallback_message=f"malformed response: {e}" if _is_success(status_code) else None,
        ) from e

    error_text = envelope.get("error") or ""
    if not isinstance(error_text, str):
        error_text = str(error_text)

    if error_text or not _is_success(status_code):
        raise classify_response(
            status_code=status_code,
            error_text=error_text,
            method=method,
            url=url,
            headers=headers,
        )

    data = envelope.get("data")
    if parse is None:
        return data

    try:
        return parse(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise APIError(
            kind=FailureKind.PROTOCOL,
            message=f"unexpected response data: {e}",
            status_code=status_code,
            method=method,
            url=url,
        ) from e


def _envelope_error_text(body: bytes) -> str:
    try:
        envelope = json.loads(body)
    except ValueError:
        return ""
    if isinstance(envelope, dict):
        return str(envelope.get("error") or "")
    return ""


def sign_body(secret: str, body: bytes) -> str:
    """Return the versioned HMAC-SHA256 signature of ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}.{digest}"


@dataclass
class _Reply:
    status_code: int
    headers: httpx.Headers
    body: bytes
    url: str


# =============================================================================
# TRANSPORT
# =============================================================================


class Transport:
    """
    Executes Scylla Cloud API requests.

    LIFECYCLE:
    ----------
        async with Transport(instance) as transport:
            providers = await transport.call("GET", "/deployment/cloud-providers")

    The httpx connection pool is opened in ``__aenter__`` and closed in
    ``__aexit__``.
    """

    def __init__(
        self,
        instance: CloudInstance,
        *,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 60.0,
        user_agent: str = DEFAULT_USER_AGENT,
        mask_secrets: bool = True,
        logger: structlog.typing.FilteringBoundLogger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the transport.

        Args:
            instance: Endpoint, token and TLS settings.
            retry_policy: Default policy for every call.
            timeout: Per-attempt timeout in seconds.
            user_agent: User-Agent header value.
            mask_secrets: Mask secrets in logged response bodies.
            logger: Logger for trace events; the module logger when omitted.
            sleep: Coroutine used to wait between attempts.
        """
        self._instance = instance
        self._retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self._timeout = timeout
        self._user_agent = user_agent
        self._mask_secrets = mask_secrets
        self._logger = logger or structlog.get_logger(__name__)
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._instance.url

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def poll_retry_policy(self) -> RetryPolicy:
        """The default policy with POLL_MAX_ATTEMPTS attempts, for poll reads."""
        return replace(self._retry_policy, max_attempts=POLL_MAX_ATTEMPTS)

    async def __aenter__(self) -> Transport:
        self._client = httpx.AsyncClient(
            base_url=self._instance.url,
            headers={
                "Authorization": f"Bearer {self._instance.token.get_secret_value()}",
                "Accept": "application/json",
                "User-Agent": self._user_agent,
            },
            timeout=self._timeout,
            verify=not self._instance.insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # PUBLIC CALLS
    # =========================================================================

    async def call(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
        parse: Callable[[Any], T] | None = None,
        retry_policy: RetryPolicy | None = None,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> T:
        """
        Make an envelope request and return the decoded ``data``.

        Args:
            method: HTTP method ("GET", "POST", "PATCH", "DELETE").
            path: API path relative to the base URL, e.g. "/account/7/clusters".
            body: JSON-serialisable request payload.
            params: Query parameters.
            parse: Converts ``data`` into the caller's type.
            retry_policy: Override the transport's default policy.
            logger: Logger carrying the caller's bound fields.

        Raises:
            APIError: Backend or HTTP failure (after retries if retryable).
            NetworkError: No response could be obtained.
        """
        content = self._encode(body)

        def handle(reply: _Reply) -> T:
            return decode_envelope(
                reply.body,
                reply.status_code,
                method=method,
                url=reply.url,
                headers=reply.headers,
                parse=parse,
            )

        return await self._execute(
            method,
            path,
            content=content,
            params=params,
            handle=handle,
            retry_policy=retry_policy,
            logger=logger,
        )

    async def call_raw(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        retry_policy: RetryPolicy | None = None,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> bytes:
        """
        Make a request and return the response body unmodified.

        The envelope is not decoded on success (connection bundles are opaque
        files). Failures are still classified, using the envelope's error
        text when the body happens to carry one.
        """

        def handle(reply: _Reply) -> bytes:
            if not _is_success(reply.status_code):
                raise classify_response(
                    status_code=reply.status_code,
                    error_text=_envelope_error_text(reply.body),
                    method=method,
                    url=reply.url,
                    headers=reply.headers,
                )
            return reply.body

        return await self._execute(
            method,
            path,
            content=None,
            params=params,
            handle=handle,
            retry_policy=retry_policy,
            logger=logger,
        )

    async def call_signed(
        self,
        method: str,
        path: str,
        body: Any,
        *,
        user: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> Any:
        """
        Make a signed request and return the decoded JSON response.

        Raises:
            ValueError: When the body is empty; there is nothing to sign.
            APIError: On a status >= 300 or an undecodable response.
        """
        content = self._encode(body)
        if not content:
            raise ValueError("signed requests require a non-empty body")

        auth = httpx.BasicAuth(user, sign_body(secret, content))

        def handle(reply: _Reply) -> Any:
            if reply.status_code >= 300:
                raise classify_response(
                    status_code=reply.status_code,
                    error_text="",
                    method=method,
                    url=reply.url,
                    headers=reply.headers,
                    fallback_message=truncate_body(reply.body, 200) or None,
                )
            if not reply.body:
                return None
            try:
                return json.loads(reply.body)
            except ValueError as e:
                raise APIError(
                    kind=FailureKind.PROTOCOL,
                    message=f"malformed response: {e}",
                    status_code=reply.status_code,
                    method=method,
                    url=reply.url,
                ) from e

        return await self._execute(
            method,
            path,
            content=content,
            params=None,
            handle=handle,
            headers=headers,
            auth=auth,
            logger=logger,
        )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _encode(body: Any) -> bytes | None:
        if body is None:
            return None
        if isinstance(body, bytes):
            return body
        return json.dumps(body).encode("utf-8")

    async def _execute(
        self,
        method: str,
        path: str,
        *,
        content: bytes | None,
        params: Mapping[str, Any] | None,
        handle: Callable[[_Reply], T],
        retry_policy: RetryPolicy | None = None,
        headers: Mapping[str, str] | None = None,
        auth: httpx.Auth | None = None,
        logger: structlog.typing.FilteringBoundLogger | None = None,
    ) -> T:
        if not self._client:
            raise RuntimeError("Transport not initialized. Use 'async with' context manager.")

        policy = retry_policy or self._retry_policy
        log = (logger or self._logger).bind(method=method, path=path)

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "Retrying Scylla Cloud API request",
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                wait=retry_state.next_action.sleep if retry_state.next_action else None,
                kind=getattr(getattr(exc, "kind", None), "value", None),
                error=str(exc),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_retry_after(policy),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

        result: T
        async for attempt in retrying:
            with attempt:
                reply = await self._send(
                    method,
                    path,
                    content=content,
                    params=params,
                    headers=headers,
                    auth=auth,
                    attempt=attempt.retry_state.attempt_number,
                    log=log,
                )
                result = handle(reply)
        return result

    async def _send(
        self,
        method: str,
        path: str,
        *,
        content: bytes | None,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
        auth: httpx.Auth | None,
        attempt: int,
        log: structlog.typing.FilteringBoundLogger,
    ) -> _Reply:
        assert self._client is not None

        request_headers = dict(headers or {})
        if content:
            request_headers["Content-Type"] = JSON_CONTENT_TYPE

        request = self._client.build_request(
            method,
            path,
            params=params,
            content=content,
            headers=request_headers,
        )
        url = str(request.url)
        log.debug("Making Scylla Cloud API request", attempt=attempt)

        try:
            response = await self._client.send(request, stream=True, auth=auth or httpx.USE_CLIENT_DEFAULT)
            try:
                body = await self._read_body(response, method=method, url=url)
            finally:
                await response.aclose()
        except httpx.TransportError as e:
            error = classify_transport_error(e, method=method, url=url)
            log.debug("Scylla Cloud API network error", attempt=attempt, kind=error.kind.value, error=str(e))
            raise error from e

        logged = body.decode("utf-8", errors="replace")
        if self._mask_secrets:
            logged = mask_secrets(logged)
        log.debug(
            "Scylla Cloud API response",
            attempt=attempt,
            status=response.status_code,
            body=truncate_body(logged),
        )

        return _Reply(
            status_code=response.status_code,
            headers=response.headers,
            body=body,
            url=url,
        )

    @staticmethod
    async def _read_body(response: httpx.Response, *, method: str, url: str) -> bytes:
        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if len(buffer) > MAX_RESPONSE_SIZE:
                raise APIError(
                    kind=FailureKind.PROTOCOL,
                    message=f"response body exceeds {MAX_RESPONSE_SIZE} bytes",
                    status_code=response.status_code,
                    method=method,
                    url=url,
                )
        return bytes(buffer)
