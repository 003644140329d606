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
"""Tests for GeneratorClient dispatch and error mapping."""

import json

import httpx
import pytest

from choice_engine.resilience import FailureCategory, categorize
from choice_engine.services.generator_client import (
    GeneratorClient,
    GeneratorClientError,
    GeneratorConnectionError,
    GeneratorTimeoutError,
)


def make_client(handler) -> GeneratorClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeneratorClient(base_url="http://generator.test/", http_client=http_client, timeout=5)


class TestDispatch:

    @pytest.mark.asyncio
    async def test_posts_action_and_returns_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["correlation"] = request.headers.get("X-Correlation-Id")
            return httpx.Response(200, json={"narrative": "Kẻ địch ngã xuống."})

        client = make_client(handler)
        result = await client.dispatch("Tấn công", correlation_id="retry_abc")

        assert result == {"narrative": "Kẻ địch ngã xuống."}
        assert seen["url"] == "http://generator.test/actions"
        assert seen["body"] == {"action": "Tấn công"}
        assert seen["correlation"] == "retry_abc"

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self):
        client = make_client(lambda request: httpx.Response(204))
        assert await client.dispatch("Tấn công") is None

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self):
        client = make_client(lambda request: httpx.Response(503, text="overloaded"))

        with pytest.raises(GeneratorClientError) as exc_info:
            await client.dispatch("Tấn công")

        assert exc_info.value.status_code == 503
        assert "503" in str(exc_info.value)
        assert categorize(exc_info.value) == FailureCategory.UPSTREAM_OVERLOAD

    @pytest.mark.asyncio
    async def test_error_body_secrets_redacted(self):
        client = make_client(lambda request: httpx.Response(400, text="bad key sk-" + "a" * 40))

        with pytest.raises(GeneratorClientError) as exc_info:
            await client.dispatch("Tấn công")

        assert "sk-***REDACTED***" in str(exc_info.value)
        assert categorize(exc_info.value) == FailureCategory.VALIDATION

    @pytest.mark.asyncio
    async def test_timeout_mapped(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(GeneratorTimeoutError) as exc_info:
            await make_client(handler).dispatch("Tấn công")

        assert categorize(exc_info.value) == FailureCategory.NETWORK

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GeneratorConnectionError) as exc_info:
            await make_client(handler).dispatch("Tấn công")

        assert categorize(exc_info.value) == FailureCategory.NETWORK

    @pytest.mark.asyncio
    async def test_non_json_body_is_error(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(GeneratorClientError, match="Invalid generator response"):
            await client.dispatch("Tấn công")


class TestPing:

    @pytest.mark.asyncio
    async def test_ping_ok(self):
        client = make_client(lambda request: httpx.Response(200, json={"status": "ok"}))
        assert await client.ping() is True

    @pytest.mark.asyncio
    async def test_ping_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await make_client(handler).ping() is False
