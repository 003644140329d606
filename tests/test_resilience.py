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
"""Tests for failure classification and the retry coordinator."""

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from choice_engine.metrics import disable_metrics_collector, init_metrics_collector
from choice_engine.resilience import (
    FailureCategory,
    RetryClassification,
    RetryCoordinator,
    RetryPhase,
    categorize,
    classify,
)
from choice_engine.services.generator_client import GeneratorClientError


class StatusError(Exception):
    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


class TestClassification:
    """Failure taxonomy and the retry decision derived from it."""

    @pytest.mark.parametrize("message", [
        "network error",
        "TypeError: Failed to fetch",
        "fetch failed",
        "Request timeout",
        "Operation timed out",
        "Connection refused by host",
    ])
    def test_network_messages(self, message):
        assert categorize(Exception(message)) == FailureCategory.NETWORK
        assert classify(Exception(message)) == RetryClassification.RETRYABLE

    @pytest.mark.parametrize("message", [
        "Model is overloaded",
        "Service Unavailable",
        "upstream returned 503",
        "Máy chủ không thể xử lý yêu cầu lúc này",
    ])
    def test_overload_messages(self, message):
        assert categorize(Exception(message)) == FailureCategory.UPSTREAM_OVERLOAD
        assert classify(Exception(message)) == RetryClassification.RETRYABLE

    @pytest.mark.parametrize("message", [
        "Quota exceeded for project",
        "rate limit reached",
        "RESOURCE_EXHAUSTED",
        "Too Many Requests",
        "HTTP 429",
    ])
    def test_quota_messages(self, message):
        assert categorize(Exception(message)) == FailureCategory.QUOTA
        assert classify(Exception(message)) == RetryClassification.RETRYABLE

    @pytest.mark.parametrize("message", [
        "Invalid argument",
        "validation failed for field",
        "Bad Request",
        "status 400",
    ])
    def test_validation_messages_not_retryable(self, message):
        assert categorize(Exception(message)) == FailureCategory.VALIDATION
        assert classify(Exception(message)) == RetryClassification.NON_RETRYABLE

    def test_unknown_is_not_retryable(self):
        error = RuntimeError("something odd happened")
        assert categorize(error) == FailureCategory.UNKNOWN
        assert classify(error) == RetryClassification.NON_RETRYABLE

    def test_exception_types(self):
        request = httpx.Request("POST", "http://generator/actions")
        assert categorize(httpx.ConnectError("boom", request=request)) == FailureCategory.NETWORK
        assert categorize(httpx.ReadTimeout("slow", request=request)) == FailureCategory.NETWORK
        assert categorize(asyncio.TimeoutError()) == FailureCategory.NETWORK
        assert categorize(ConnectionResetError()) == FailureCategory.NETWORK

    @pytest.mark.parametrize("status,expected", [
        (429, FailureCategory.QUOTA),
        (502, FailureCategory.UPSTREAM_OVERLOAD),
        (503, FailureCategory.UPSTREAM_OVERLOAD),
        (504, FailureCategory.UPSTREAM_OVERLOAD),
        (400, FailureCategory.VALIDATION),
        (422, FailureCategory.VALIDATION),
    ])
    def test_status_attributes(self, status, expected):
        assert categorize(GeneratorClientError("upstream said no", status_code=status)) == expected
        assert categorize(StatusError("upstream said no", status)) == expected

    def test_status_from_response(self):
        request = httpx.Request("POST", "http://generator/actions")
        response = httpx.Response(503, request=request)
        error = httpx.HTTPStatusError("server error", request=request, response=response)

        assert categorize(error) == FailureCategory.UPSTREAM_OVERLOAD

    def test_unmapped_status_falls_back_to_message(self):
        error = GeneratorClientError("Generator error 500: model overloaded", status_code=500)
        assert categorize(error) == FailureCategory.UPSTREAM_OVERLOAD

    def test_coordinator_classify_delegates(self):
        assert RetryCoordinator.classify(Exception("network error")) == RetryClassification.RETRYABLE


class TestLastAction:

    def test_record_overwrites(self):
        coordinator = RetryCoordinator()
        coordinator.record_last_action("Tấn công")
        coordinator.record_last_action("Chạy trốn", snapshot={"hp": 3})

        assert coordinator.last_action.text == "Chạy trốn"
        assert coordinator.last_action.snapshot == {"hp": 3}
        assert coordinator.last_action.recorded_at.tzinfo is not None

    def test_clear(self):
        coordinator = RetryCoordinator()
        coordinator.record_last_action("Tấn công")
        coordinator.clear_last_action()
        assert coordinator.last_action is None

    def test_status_and_debug_info(self):
        coordinator = RetryCoordinator()
        assert coordinator.get_status().has_last_action is False
        assert coordinator.get_debug_info() == {"last_action": None, "phase": "idle"}

        coordinator.record_last_action("x" * 150)
        status = coordinator.get_status()
        debug = coordinator.get_debug_info()

        assert status.has_last_action is True
        assert status.retry_in_flight is False
        assert status.last_action_age_seconds >= 0
        assert debug["last_action"]["text"] == "x" * 100
        assert debug["phase"] == "idle"


class TestExecuteRetry:

    @pytest.mark.asyncio
    async def test_no_last_action_returns_false(self):
        coordinator = RetryCoordinator()
        dispatch = AsyncMock()

        assert await coordinator.execute_retry(dispatch) is False
        dispatch.assert_not_called()
        assert coordinator.phase == RetryPhase.IDLE

    @pytest.mark.asyncio
    async def test_successful_retry(self):
        coordinator = RetryCoordinator(correlation_id_factory=lambda: "retry_fixed")
        coordinator.record_last_action("Tấn công")
        dispatch = AsyncMock(return_value={"ok": True})

        assert await coordinator.execute_retry(dispatch) is True
        dispatch.assert_awaited_once_with("Tấn công", "retry_fixed")
        assert coordinator.phase == RetryPhase.IDLE
        # execute_retry alone keeps the last action
        assert coordinator.last_action is not None

    @pytest.mark.asyncio
    async def test_correlation_id_format(self):
        coordinator = RetryCoordinator()
        coordinator.record_last_action("Tấn công")
        dispatch = AsyncMock()

        await coordinator.execute_retry(dispatch)

        correlation_id = dispatch.call_args.args[1]
        assert correlation_id.startswith("retry_")
        assert len(correlation_id) > len("retry_")

    @pytest.mark.asyncio
    async def test_sync_dispatch_supported(self):
        coordinator = RetryCoordinator()
        coordinator.record_last_action("Tấn công")
        dispatch = MagicMock(return_value=None)

        assert await coordinator.execute_retry(dispatch) is True
        dispatch.assert_called_once()

    @pytest.mark.asyncio
    async def test_dispatch_raising_returns_false_and_resets(self):
        coordinator = RetryCoordinator()
        coordinator.record_last_action("Tấn công")
        dispatch = AsyncMock(side_effect=RuntimeError("still broken"))

        assert await coordinator.execute_retry(dispatch) is False
        assert coordinator.phase == RetryPhase.IDLE

    @pytest.mark.asyncio
    async def test_dispatch_returning_false_is_failure(self):
        coordinator = RetryCoordinator()
        coordinator.record_last_action("Tấn công")

        assert await coordinator.execute_retry(AsyncMock(return_value=False)) is False

    @pytest.mark.asyncio
    async def test_concurrent_tasks_dispatch_once(self):
        coordinator = RetryCoordinator()
        coordinator.record_last_action("Tấn công")
        calls = []

        async def slow_dispatch(text, correlation_id):
            calls.append(text)
            await asyncio.sleep(0.05)

        results = await asyncio.gather(*[coordinator.execute_retry(slow_dispatch) for _ in range(5)])

        assert len(calls) == 1
        assert results.count(True) == 1
        assert results.count(False) == 4
        assert coordinator.phase == RetryPhase.IDLE

    def test_concurrent_threads_dispatch_once(self):
        coordinator = RetryCoordinator()
        coordinator.record_last_action("Tấn công")
        entered = threading.Event()
        release = threading.Event()
        calls = []

        def blocking_dispatch(text, correlation_id):
            calls.append(text)
            entered.set()
            release.wait(timeout=5)

        results = {}

        def run(name):
            results[name] = asyncio.run(coordinator.execute_retry(blocking_dispatch))

        first = threading.Thread(target=run, args=("first",))
        first.start()
        assert entered.wait(timeout=5)
        assert coordinator.retry_in_flight is True

        others = [threading.Thread(target=run, args=(f"other-{i}",)) for i in range(4)]
        for thread in others:
            thread.start()
        for thread in others:
            thread.join(timeout=5)

        release.set()
        first.join(timeout=5)

        assert len(calls) == 1
        assert results["first"] is True
        assert all(results[f"other-{i}"] is False for i in range(4))
        assert coordinator.phase == RetryPhase.IDLE

    @pytest.mark.asyncio
    async def test_retry_delay_applied(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("choice_engine.resilience.asyncio.sleep", sleep)
        coordinator = RetryCoordinator(retry_delay=1.5)
        coordinator.record_last_action("Tấn công")

        await coordinator.execute_retry(AsyncMock())

        sleep.assert_awaited_once_with(1.5)


class TestHandleErrorWithRetry:

    @pytest.mark.asyncio
    async def test_retryable_success_clears_last_action(self):
        coordinator = RetryCoordinator()
        dispatch = AsyncMock(return_value={"ok": True})

        result = await coordinator.handle_error_with_retry(
            Exception("network error"), dispatch, action_text="Tấn công", snapshot={"turn": 4}
        )

        assert result is True
        dispatch.assert_awaited_once()
        assert dispatch.call_args.args[0] == "Tấn công"
        assert coordinator.last_action is None

    @pytest.mark.asyncio
    async def test_non_retryable_reraises_same_error(self):
        coordinator = RetryCoordinator()
        dispatch = AsyncMock()
        error = ValueError("Bad Request: missing field")

        with pytest.raises(ValueError) as exc_info:
            await coordinator.handle_error_with_retry(error, dispatch, action_text="Tấn công")

        assert exc_info.value is error
        dispatch.assert_not_called()
        assert coordinator.last_action.text == "Tấn công"

    @pytest.mark.asyncio
    async def test_failed_retry_reraises_original(self):
        coordinator = RetryCoordinator()
        dispatch = AsyncMock(side_effect=RuntimeError("second failure"))
        error = ConnectionError("connection reset")

        with pytest.raises(ConnectionError) as exc_info:
            await coordinator.handle_error_with_retry(error, dispatch, action_text="Tấn công")

        assert exc_info.value is error
        dispatch.assert_awaited_once()
        assert coordinator.last_action is not None

    @pytest.mark.asyncio
    async def test_retryable_without_last_action_reraises(self):
        coordinator = RetryCoordinator()
        dispatch = AsyncMock()
        error = Exception("service unavailable")

        with pytest.raises(Exception) as exc_info:
            await coordinator.handle_error_with_retry(error, dispatch)

        assert exc_info.value is error
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_records_retry_metrics(self):
        collector = init_metrics_collector()
        collector.reset()
        try:
            coordinator = RetryCoordinator()
            await coordinator.handle_error_with_retry(
                Exception("quota exceeded"), AsyncMock(), action_text="Tấn công"
            )
            await coordinator.execute_retry(AsyncMock())

            retries = collector.get_metrics()["retries"]
            assert retries["attempted"] == 1
            assert retries["succeeded"] == 1
            assert retries["rejected"] == 1
            assert retries["failures_by_category"] == {"quota": 1}
        finally:
            disable_metrics_collector()
