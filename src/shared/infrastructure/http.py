"""Base HTTP client for collaborator services.

Every outbound call goes through ``CollaboratorClient.request`` which:

- adds ``x-tenant-id`` and, when a correlation id is bound in the
  structlog context, ``x-request-id``;
- bounds each attempt with ``with_timeout`` and retries transport
  errors, timeouts, 5xx and 429 answers with exponential backoff;
- returns every other answer (2xx and the remaining 4xx) to the adapter,
  which translates it into domain errors;
- raises ``DependencyUnavailable`` once transient failures exhaust the
  attempts.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Type, TypeVar

import httpx
import structlog
from django.conf import settings
from pydantic import BaseModel, ValidationError

from shared.domain.exceptions import DependencyUnavailable
from shared.infrastructure.resilience import CallTimeout, retry, with_timeout

logger = structlog.get_logger(__name__)

S = TypeVar("S", bound=BaseModel)

RETRYABLE_STATUS = 429


def is_transient(exc: BaseException) -> bool:
    """Whether *exc* is worth another attempt."""
    if isinstance(exc, (httpx.TransportError, CallTimeout)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == RETRYABLE_STATUS
    return False


def error_message(response: httpx.Response) -> str:
    """Best-effort human message from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return response.reason_phrase


class CollaboratorClient:
    """Resilient JSON client bound to one collaborator base URL."""

    service_name = "collaborator"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = 10.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        transport: Optional[httpx.BaseTransport] = None,
        auth: Optional[httpx.Auth] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            auth=auth,
        )

    @staticmethod
    def settings_kwargs() -> Dict[str, Any]:
        """Timeout and retry knobs shared by every adapter."""
        return {
            "timeout": settings.API_TIMEOUT,
            "max_attempts": settings.MAX_RETRY_ATTEMPTS,
            "base_delay": settings.RETRY_BASE_DELAY,
        }

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _headers(self, tenant_id: Optional[str]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if tenant_id:
            headers["x-tenant-id"] = tenant_id
        correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
        if correlation_id:
            headers["x-request-id"] = str(correlation_id)
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        tenant_id: Optional[str] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send a request, retrying transient failures.

        Raises ``DependencyUnavailable`` when the collaborator cannot be
        reached or keeps failing.
        """
        headers = self._headers(tenant_id)

        def attempt() -> httpx.Response:
            response = self._client.request(
                method, path, json=json, data=data, headers=headers
            )
            if response.status_code >= 500 or response.status_code == RETRYABLE_STATUS:
                response.raise_for_status()
            return response

        try:
            return retry(
                with_timeout,
                attempt,
                self.timeout,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                retry_if=is_transient,
                sleep=self._sleep,
            )
        except (httpx.HTTPError, CallTimeout) as exc:
            logger.error(
                "collaborator.unavailable",
                service=self.service_name,
                method=method,
                path=path,
                error=str(exc),
            )
            raise DependencyUnavailable(
                f"{self.service_name} unavailable: {exc}",
                service=self.service_name,
            ) from exc

    def parse(self, schema: Type[S], payload: Any) -> S:
        """Validate a response body; malformed answers count as unavailable."""
        try:
            return schema.model_validate(payload)
        except ValidationError as exc:
            logger.error(
                "collaborator.malformed_response",
                service=self.service_name,
                schema=schema.__name__,
                errors=exc.error_count(),
            )
            raise DependencyUnavailable(
                f"{self.service_name} returned a malformed {schema.__name__}",
                service=self.service_name,
            ) from exc

    def json_body(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise DependencyUnavailable(
                f"{self.service_name} returned a non-JSON body",
                service=self.service_name,
            ) from exc
