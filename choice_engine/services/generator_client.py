# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Client for dispatching player actions to the upstream story generator."""

import time
from typing import Any, Optional

from httpx import AsyncClient, HTTPStatusError, RequestError, TimeoutException

from choice_engine.logging import StructuredLogger, redact_secrets, get_request_id
from choice_engine.metrics import get_metrics_collector

logger = StructuredLogger(__name__)


class GeneratorClientError(Exception):
    """Base exception for generator client errors.

    Attributes:
        status_code: HTTP status code if available, None otherwise
    """
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GeneratorTimeoutError(GeneratorClientError):
    """Raised when a generator request times out."""
    pass


class GeneratorConnectionError(GeneratorClientError):
    """Raised when the generator cannot be reached."""
    pass


class GeneratorClient:
    """Sends player actions to the generator service.

    Errors are surfaced, never retried here: the RetryCoordinator owns the
    single automatic retry, and error messages carry the HTTP status so
    message-based classification still works after wrapping.
    """

    def __init__(
        self,
        base_url: str,
        http_client: AsyncClient,
        timeout: int = 30
    ):
        """Initialize generator client.

        Args:
            base_url: Base URL of the generator service
            http_client: HTTP client for making requests
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.http_client = http_client
        self.timeout = timeout

        logger.info(
            "Initialized GeneratorClient",
            base_url=self.base_url,
            timeout=self.timeout
        )

    async def dispatch(self, action_text: str, correlation_id: Optional[str] = None) -> Any:
        """Send one action to the generator.

        Args:
            action_text: The player's action
            correlation_id: Retry correlation id; sent as X-Correlation-Id

        Returns:
            Decoded JSON body of the generator's response (None when empty)

        Raises:
            GeneratorTimeoutError: If the request times out
            GeneratorConnectionError: If the generator cannot be reached
            GeneratorClientError: For non-2xx responses or undecodable bodies
        """
        url = f"{self.base_url}/actions"
        headers = {}
        if correlation_id:
            headers["X-Correlation-Id"] = correlation_id
        if (request_id := get_request_id()):
            headers["X-Request-Id"] = request_id

        start_time = time.time()
        try:
            response = await self.http_client.post(
                url,
                json={"action": action_text},
                headers=headers,
                timeout=self.timeout
            )
            response.raise_for_status()
        except TimeoutException as e:
            self._record_failure("generator_timeout", start_time)
            logger.error("Generator request timed out", timeout=self.timeout, correlation_id=correlation_id)
            raise GeneratorTimeoutError(f"Generator request timed out after {self.timeout}s") from e
        except HTTPStatusError as e:
            status_code = e.response.status_code
            self._record_failure(f"generator_http_{status_code}", start_time)
            body = redact_secrets(e.response.text[:200])
            logger.error(
                "Generator returned error status",
                status_code=status_code,
                body=body,
                correlation_id=correlation_id
            )
            raise GeneratorClientError(
                f"Generator error {status_code}: {body}",
                status_code=status_code
            ) from e
        except RequestError as e:
            self._record_failure("generator_connection", start_time)
            logger.error(
                "Generator connection failed",
                error_type=type(e).__name__,
                error=redact_secrets(str(e)),
                correlation_id=correlation_id
            )
            raise GeneratorConnectionError(f"Network error contacting generator: {type(e).__name__}") from e

        duration_ms = (time.time() - start_time) * 1000
        if (collector := get_metrics_collector()):
            collector.record_latency("generator_dispatch", duration_ms)
        logger.info(
            "Action dispatched to generator",
            status_code=response.status_code,
            duration_ms=f"{duration_ms:.2f}",
            correlation_id=correlation_id
        )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise GeneratorClientError(
                "Invalid generator response: body is not valid JSON",
                status_code=response.status_code
            ) from e

    async def ping(self) -> bool:
        """Return True when the generator answers its health endpoint."""
        try:
            response = await self.http_client.get(f"{self.base_url}/health", timeout=5.0)
            return response.status_code == 200
        except RequestError as e:
            logger.warning("Generator health ping failed", error_type=type(e).__name__)
            return False

    @staticmethod
    def _record_failure(error_type: str, start_time: float) -> None:
        if (collector := get_metrics_collector()):
            collector.record_error(error_type)
            collector.record_latency("generator_dispatch", (time.time() - start_time) * 1000)
