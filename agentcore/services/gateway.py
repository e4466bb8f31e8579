"""Retrying HTTP client shared by every outbound integration.

Each provider client owns one ``GatewayClient``. A call is described by a
``RequestSpec`` and either returns the parsed body or raises ``GatewayError``
once all attempts are spent. Delays grow as ``base_delay * 2 ** (attempt - 1)``.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from agentcore.errors import GatewayError, TransportError
from agentcore.logging_config import get_logger

logger = get_logger("gateway")


@dataclass
class RequestSpec:
    method: str
    path: str
    operation: str = ""
    json: Any = None
    params: Optional[dict] = None
    headers: Optional[dict] = None
    # False: a 4xx answer is a business error and is not retried
    retry_client_errors: bool = True
    # Overall wall-clock budget across all attempts and backoff sleeps
    deadline_seconds: Optional[float] = None

    @property
    def label(self) -> str:
        return self.operation or f"{self.method.upper()} {self.path}"


@dataclass
class AttemptRecord:
    operation: str
    attempt: int
    ok: bool
    elapsed_ms: float
    status_code: Optional[int] = None
    error: Optional[str] = None


class GatewayClient:
    def __init__(
        self,
        base_url: str,
        *,
        name: str = "gateway",
        headers: Optional[dict] = None,
        auth: Optional[httpx.Auth | tuple] = None,
        max_attempts: int = 4,
        base_delay: float = 1.0,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_attempt: Optional[Callable[[AttemptRecord], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.name = name
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._on_attempt = on_attempt
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GatewayClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))

    def call(self, spec: RequestSpec) -> Any:
        started = self._clock()
        attempts = 0
        last_cause: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            timeout = self.timeout
            if spec.deadline_seconds is not None:
                remaining = spec.deadline_seconds - (self._clock() - started)
                if remaining <= 0:
                    break
                timeout = min(timeout, remaining)

            attempts = attempt
            attempt_start = self._clock()
            try:
                result = self._send(spec, timeout)
            except TransportError as exc:
                last_cause = exc
                self._observe(spec, attempt, attempt_start, ok=False, status_code=exc.status_code, error=exc.message)
                if exc.is_client_error and not spec.retry_client_errors:
                    raise GatewayError(spec.label, attempts, exc) from exc
            else:
                self._observe(spec, attempt, attempt_start, ok=True)
                return result

            if attempt == self.max_attempts:
                break
            delay = self.backoff_delay(attempt)
            if spec.deadline_seconds is not None:
                if (self._clock() - started) + delay >= spec.deadline_seconds:
                    break
            logger.info(
                f"Retrying {spec.label} in {delay}s",
                extra={"context": {"gateway": self.name, "attempt": attempt, "delay_seconds": delay}},
            )
            self._sleep(delay)

        logger.error(
            f"{spec.label} failed after {attempts} attempts",
            extra={"context": {"gateway": self.name, "attempts": attempts, "error": str(last_cause)}},
        )
        raise GatewayError(spec.label, attempts, last_cause)

    def _send(self, spec: RequestSpec, timeout: float) -> Any:
        try:
            response = self._client.request(
                spec.method,
                spec.path,
                json=spec.json,
                params=spec.params,
                headers=spec.headers,
                timeout=timeout,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{exc.__class__.__name__}: {exc}") from exc

        if not response.is_success:
            raise TransportError(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text[:500],
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    def _observe(
        self,
        spec: RequestSpec,
        attempt: int,
        attempt_start: float,
        *,
        ok: bool,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        record = AttemptRecord(
            operation=spec.label,
            attempt=attempt,
            ok=ok,
            elapsed_ms=round((self._clock() - attempt_start) * 1000, 2),
            status_code=status_code,
            error=error,
        )
        level = logger.debug if ok else logger.warning
        level(
            f"Gateway attempt {attempt}/{self.max_attempts} {'ok' if ok else 'failed'}",
            extra={"context": {"gateway": self.name, **record.__dict__}},
        )
        if self._on_attempt is not None:
            self._on_attempt(record)
