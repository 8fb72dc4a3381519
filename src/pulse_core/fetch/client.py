"""Async HTTP client with uniform error classification, retry and backoff."""
import asyncio
import json
import logging
import random
from typing import Any, Callable, Mapping, Optional

import aiohttp

from ..errors import (
    ApiError,
    AuthError,
    NetworkError,
    RateLimitError,
    SourceFetchError,
)


def _redact_text(text: str, secrets: list[Optional[str]]) -> str:
    if not text:
        return text
    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


def _parse_reset_time(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(float(raw))
    except ValueError:
        return None


def classify_response(
    status: int,
    headers: Mapping[str, str],
    body: str,
    url: str = "",
) -> SourceFetchError:
    """Map a completed non-2xx response to the shared error taxonomy.

    Args:
        status: HTTP status code
        headers: Response headers
        body: Response body text (already redacted)
        url: Request URL for the error message

    Returns:
        Classified exception instance (not raised)
    """
    snippet = body[:500] if body else ""

    if status == 429:
        retry_after = _parse_retry_after(_header(headers, "Retry-After"))
        reset_time = _parse_reset_time(
            _header(headers, "x-rate-limit-reset")
            or _header(headers, "x-ratelimit-reset")
        )
        return RateLimitError(
            f"Rate limit exceeded: {url}",
            retry_after=retry_after,
            reset_time=reset_time,
            details={"body": snippet} if snippet else None,
        )

    if status in (401, 403):
        return AuthError(
            f"Authentication failed ({status}): {url}",
            status=status,
            details={"body": snippet} if snippet else None,
        )

    return ApiError(
        f"API request failed ({status}): {url}",
        status=status,
        details={"body": snippet} if snippet else None,
    )


class ResilientFetchClient:
    """Performs one upstream call with classification, retry and backoff.

    Holds no state between calls beyond the injected aiohttp session.
    Retries ``rate_limit``, ``network_error`` and 5xx ``api_error``; never
    retries ``auth_error`` or other 4xx responses.
    """

    DEFAULT_MAX_RETRIES = 3
    RETRY_BASE_DELAY = 1.0  # seconds
    RATE_LIMIT_MAX_DELAY = 30.0  # seconds
    TRANSIENT_MAX_DELAY = 10.0  # seconds
    RETRY_JITTER_MS = 250  # milliseconds
    REQUEST_TIMEOUT = 30.0  # seconds

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_delay: float = RETRY_BASE_DELAY,
        rate_limit_max_delay: float = RATE_LIMIT_MAX_DELAY,
        transient_max_delay: float = TRANSIENT_MAX_DELAY,
        jitter_ms: int = RETRY_JITTER_MS,
        request_timeout: float = REQUEST_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize fetch client.

        Args:
            session: Injected aiohttp ClientSession
            base_delay: Backoff base in seconds (delay = base * 2^attempt)
            rate_limit_max_delay: Cap for rate-limit waits
            transient_max_delay: Cap for network/5xx waits
            jitter_ms: Upper bound of random jitter added to transient waits
            request_timeout: Total timeout per HTTP request in seconds
            logger: Optional logger instance
        """
        self.session = session
        self.base_delay = base_delay
        self.rate_limit_max_delay = rate_limit_max_delay
        self.transient_max_delay = transient_max_delay
        self.jitter_ms = jitter_ms
        self.request_timeout = request_timeout
        self.logger = logger or logging.getLogger(__name__)

    async def call(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        json_body: Optional[Any] = None,
        data: Optional[dict[str, Any]] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: Optional[float] = None,
        secrets: Optional[list[Optional[str]]] = None,
        parse_json: bool = True,
        check_body: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """Execute an HTTP request with bounded retries.

        Args:
            method: HTTP method
            url: Request URL
            params: Query parameters
            headers: Request headers
            json_body: JSON payload
            data: Form payload
            max_retries: Retries after the first attempt
            timeout: Per-request timeout override in seconds
            secrets: Values to redact from logged bodies and error details
            parse_json: Return parsed JSON (True) or raw bytes (False)
            check_body: Called with each parsed 2xx body; raises a
                SourceFetchError for errors reported inside the payload, which
                then go through the same retry policy

        Returns:
            Parsed JSON body (empty dict for an empty body) or raw bytes

        Raises:
            SourceFetchError: Classified error after retries are exhausted
        """
        secrets = secrets or []
        attempt = 0

        while True:
            try:
                return await self._attempt(
                    method,
                    url,
                    params=params,
                    headers=headers,
                    json_body=json_body,
                    data=data,
                    timeout=timeout,
                    secrets=secrets,
                    parse_json=parse_json,
                    check_body=check_body,
                )
            except SourceFetchError as exc:
                delay = self._retry_delay(exc, attempt)
                if delay is None or attempt >= max_retries:
                    if exc.retryable:
                        self.logger.warning(
                            "Giving up on %s after %s attempts: kind=%s",
                            _redact_text(url, secrets),
                            attempt + 1,
                            exc.kind.value,
                        )
                    raise

                self.logger.warning(
                    "Retryable %s from %s, backoff=%.2fs, attempt=%s/%s",
                    exc.kind.value,
                    _redact_text(url, secrets),
                    delay,
                    attempt + 1,
                    max_retries + 1,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _attempt(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]],
        headers: Optional[dict[str, str]],
        json_body: Optional[Any],
        data: Optional[dict[str, Any]],
        timeout: Optional[float],
        secrets: list[Optional[str]],
        parse_json: bool,
        check_body: Optional[Callable[[Any], None]],
    ) -> Any:
        request_timeout = aiohttp.ClientTimeout(
            total=timeout if timeout is not None else self.request_timeout
        )
        safe_url = _redact_text(url, secrets)

        try:
            async with self.session.request(
                method,
                url,
                params=params,
                headers=headers,
                json=json_body,
                data=data,
                timeout=request_timeout,
            ) as resp:
                if 200 <= resp.status < 300:
                    if not parse_json:
                        return await resp.read()
                    body = self._parse_body(await resp.text(), resp.status, safe_url)
                    if check_body is not None:
                        check_body(body)
                    return body

                body = _redact_text(await resp.text(), secrets)
                error = classify_response(resp.status, resp.headers, body, safe_url)
                self.logger.debug(
                    "Upstream error: status=%s, kind=%s, url=%s",
                    resp.status,
                    error.kind.value,
                    safe_url,
                )
                raise error

        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            reason = "timeout" if isinstance(exc, asyncio.TimeoutError) else type(exc).__name__
            raise NetworkError(
                f"Network error for {safe_url}: {reason}",
                details={"reason": reason},
            ) from exc

    @staticmethod
    def _parse_body(text: str, status: int, url: str) -> Any:
        if not text:
            return {}
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ApiError(
                f"Invalid JSON from {url}",
                status=status,
                details={"body": text[:200]},
            ) from exc

    def _retry_delay(self, exc: SourceFetchError, attempt: int) -> Optional[float]:
        """Compute the wait before the next attempt, or None if not retryable.

        Args:
            exc: Classified error from the last attempt
            attempt: Zero-indexed number of the attempt that failed

        Returns:
            Delay in seconds, or None to stop retrying
        """
        if not exc.retryable:
            return None

        if isinstance(exc, RateLimitError):
            backoff = min(self.base_delay * (2 ** attempt), self.rate_limit_max_delay)
            if not exc.retry_after_supplied:
                return backoff
            return min(max(backoff, exc.retry_after), self.rate_limit_max_delay)

        return self._calculate_backoff(attempt)

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff with jitter for transient errors.

        Args:
            attempt: Zero-indexed attempt number

        Returns:
            Delay in seconds
        """
        delay = min(self.base_delay * (2 ** attempt), self.transient_max_delay)
        jitter = random.uniform(0, self.jitter_ms / 1000.0) if self.jitter_ms else 0.0
        return delay + jitter
