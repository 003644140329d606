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
"""Request correlation middleware.

Binds the request id and game session id into the logging context for the
duration of a request, echoes X-Request-Id on the response, and records
per-request logs, latency and status metrics.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from choice_engine.logging import StructuredLogger, clear_context, sanitize_for_log, set_request_id, set_session_id
from choice_engine.metrics import MetricsTimer, get_metrics_collector

logger = StructuredLogger(__name__)

REQUEST_ID_HEADERS = ('X-Trace-Id', 'X-Request-Id')
SESSION_HEADER = "X-Session-Id"


def resolve_request_id(request: Request) -> str:
    """First non-empty correlation header, or a fresh UUID."""
    for header in REQUEST_ID_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return str(uuid.uuid4())


def latency_operation(path: str) -> str:
    """Metrics bucket for a request path; action dispatch is timed apart."""
    return "action" if path.startswith("/actions") else "request"


class RequestCorrelationMiddleware(BaseHTTPMiddleware):
    """Correlation ids, request logging and request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request)
        set_request_id(request_id)

        session_id = request.headers.get(SESSION_HEADER)
        if session_id:
            set_session_id(sanitize_for_log(session_id, 128))

        method, path = request.method, request.url.path
        started = time.perf_counter()
        logger.info(
            f"Request started: {method} {path}",
            client_ip=request.client.host if request.client else None
        )

        try:
            with MetricsTimer(latency_operation(path)):
                response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {method} {path}",
                error_type=type(e).__name__,
                duration_ms=f"{(time.perf_counter() - started) * 1000:.2f}"
            )
            if (collector := get_metrics_collector()):
                collector.record_request(500)
            raise
        else:
            if (collector := get_metrics_collector()):
                collector.record_request(response.status_code)
            logger.info(
                f"Request completed: {method} {path} - {response.status_code}",
                duration_ms=f"{(time.perf_counter() - started) * 1000:.2f}"
            )
            response.headers['X-Request-Id'] = request_id
            return response
        finally:
            clear_context()
