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
"""Failure classification and single-flight retry of the last player action.

When the upstream generator fails transiently the player's last action is
re-dispatched once, automatically. This module provides:
- A fixed failure taxonomy (network, upstream overload, quota) deciding
  which failures are worth retrying; unknown failures are never retried
- A per-session RetryCoordinator that remembers the last submitted action
  and re-dispatches it with at most one retry in flight at a time
- handle_error_with_retry, which composes the two and re-raises the
  original error whenever the retry is skipped or fails
"""

import asyncio
import inspect
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

import httpx

from choice_engine.logging import StructuredLogger, sanitize_for_log
from choice_engine.metrics import get_metrics_collector
from choice_engine.models import RetryStatus

logger = StructuredLogger(__name__)

# dispatch(action_text, correlation_id) may be sync or async
Dispatch = Callable[[str, Optional[str]], Union[Any, Awaitable[Any]]]


class FailureCategory(str, Enum):
    """What kind of failure a dispatch error represents."""
    NETWORK = "network"
    UPSTREAM_OVERLOAD = "upstream_overload"
    QUOTA = "quota"
    VALIDATION = "validation"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_CATEGORIES


_RETRYABLE_CATEGORIES = frozenset({
    FailureCategory.NETWORK,
    FailureCategory.UPSTREAM_OVERLOAD,
    FailureCategory.QUOTA,
})


class RetryClassification(str, Enum):
    """Binary retry decision for a failure."""
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


NETWORK_EXCEPTIONS: Tuple[type, ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)

STATUS_CATEGORIES = {
    429: FailureCategory.QUOTA,
    502: FailureCategory.UPSTREAM_OVERLOAD,
    503: FailureCategory.UPSTREAM_OVERLOAD,
    504: FailureCategory.UPSTREAM_OVERLOAD,
    400: FailureCategory.VALIDATION,
    422: FailureCategory.VALIDATION,
}

# Checked in order; retryable categories first so "invalid response: 503"
# is still treated as an overload
MESSAGE_PATTERNS: Tuple[Tuple[FailureCategory, re.Pattern], ...] = (
    (FailureCategory.NETWORK, re.compile(
        r'network|failed to fetch|fetch failed|timeout|timed out|'
        r'connection (?:error|refused|reset|aborted|closed)|econnreset|econnrefused|etimedout'
    )),
    (FailureCategory.UPSTREAM_OVERLOAD, re.compile(
        r'overload|unavailable|\b50[234]\b|không thể xử lý yêu cầu'
    )),
    (FailureCategory.QUOTA, re.compile(
        r'quota|rate[ _-]?limit|too many requests|resource[ _-]?exhausted|\b429\b'
    )),
    (FailureCategory.VALIDATION, re.compile(
        r'invalid|validation|bad request|\b400\b'
    )),
)


def _error_message(error: BaseException) -> str:
    parts = [str(error)]
    message = getattr(error, "message", None)
    if isinstance(message, str) and message not in parts:
        parts.append(message)
    return " ".join(parts).lower()


def _error_status(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    return None


def categorize(error: BaseException) -> FailureCategory:
    """Place an error in the failure taxonomy.

    Exception type is consulted first, then an HTTP status carried on the
    error, then the message text. Anything unmatched is UNKNOWN.
    """
    if isinstance(error, NETWORK_EXCEPTIONS):
        return FailureCategory.NETWORK

    status = _error_status(error)
    if status in STATUS_CATEGORIES:
        return STATUS_CATEGORIES[status]

    message = _error_message(error)
    for category, pattern in MESSAGE_PATTERNS:
        if pattern.search(message):
            return category
    return FailureCategory.UNKNOWN


def classify(error: BaseException) -> RetryClassification:
    """Decide whether a failure is worth one automatic retry (fail-closed)."""
    if categorize(error).retryable:
        return RetryClassification.RETRYABLE
    return RetryClassification.NON_RETRYABLE


class RetryPhase(str, Enum):
    """Coordinator state: idle, or exactly one retry executing."""
    IDLE = "idle"
    RETRY_RUNNING = "retry_running"


@dataclass(frozen=True)
class LastAction:
    """The most recently submitted player action."""
    text: str
    snapshot: Optional[Any] = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def age_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.recorded_at).total_seconds()


def new_retry_correlation_id() -> str:
    return f"retry_{uuid.uuid4().hex}"


class RetryCoordinator:
    """Remembers the last action and re-dispatches it, one retry at a time.

    The Idle -> RetryRunning transition is a check-and-set under a
    threading.Lock, so concurrent callers (threads or interleaved asyncio
    tasks) cannot both pass the guard; losers get False immediately and
    never call dispatch. There is no timeout or cancellation: a hung
    dispatch keeps the coordinator in RetryRunning until it returns.
    """

    def __init__(
        self,
        retry_delay: float = 0.0,
        correlation_id_factory: Callable[[], str] = new_retry_correlation_id
    ):
        """Initialize the coordinator.

        Args:
            retry_delay: Seconds to wait (while holding the guard) before
                re-dispatching
            correlation_id_factory: Produces the id passed to dispatch for
                each retry
        """
        self.retry_delay = retry_delay
        self._new_correlation_id = correlation_id_factory
        self._lock = threading.Lock()
        self._phase = RetryPhase.IDLE
        self._last_action: Optional[LastAction] = None

    @property
    def phase(self) -> RetryPhase:
        return self._phase

    @property
    def retry_in_flight(self) -> bool:
        return self._phase is RetryPhase.RETRY_RUNNING

    @property
    def last_action(self) -> Optional[LastAction]:
        return self._last_action

    def record_last_action(self, text: str, snapshot: Optional[Any] = None) -> LastAction:
        """Overwrite the remembered action; valid in any phase."""
        action = LastAction(text=text, snapshot=snapshot)
        with self._lock:
            self._last_action = action
        logger.debug("Recorded last action", action=sanitize_for_log(text, 50))
        return action

    def clear_last_action(self) -> None:
        with self._lock:
            self._last_action = None
        logger.debug("Cleared last action")

    @staticmethod
    def classify(error: BaseException) -> RetryClassification:
        return classify(error)

    def _try_begin(self) -> Tuple[Optional[LastAction], str]:
        with self._lock:
            if self._last_action is None:
                return None, "no_last_action"
            if self._phase is RetryPhase.RETRY_RUNNING:
                return None, "retry_in_flight"
            self._phase = RetryPhase.RETRY_RUNNING
            return self._last_action, ""

    def _finish(self) -> None:
        with self._lock:
            self._phase = RetryPhase.IDLE

    async def execute_retry(self, dispatch: Dispatch) -> bool:
        """Re-dispatch the last recorded action once.

        Args:
            dispatch: Callable taking (action_text, correlation_id); may
                return an awaitable

        Returns:
            True if dispatch completed without raising and did not return
            False; False otherwise, including when no action is recorded or
            another retry is already running
        """
        action, rejection = self._try_begin()
        collector = get_metrics_collector()
        if action is None:
            logger.warning("Retry rejected", reason=rejection)
            if collector:
                collector.record_retry_event("rejected")
            return False

        correlation_id = self._new_correlation_id()
        if collector:
            collector.record_retry_event("attempted")
        logger.info(
            "Retrying last action",
            action=sanitize_for_log(action.text, 50),
            correlation_id=correlation_id
        )

        try:
            if self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)
            outcome = dispatch(action.text, correlation_id)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            logger.error(
                "Retry dispatch failed",
                error_type=type(e).__name__,
                error=sanitize_for_log(str(e)),
                correlation_id=correlation_id
            )
            if collector:
                collector.record_retry_event("failed")
            return False
        finally:
            self._finish()

        if outcome is False:
            logger.warning("Retry dispatch reported failure", correlation_id=correlation_id)
            if collector:
                collector.record_retry_event("failed")
            return False

        logger.info("Retry succeeded", correlation_id=correlation_id)
        if collector:
            collector.record_retry_event("succeeded")
        return True

    async def handle_error_with_retry(
        self,
        error: BaseException,
        dispatch: Dispatch,
        action_text: Optional[str] = None,
        snapshot: Optional[Any] = None
    ) -> bool:
        """Record, classify and retry once; re-raise ``error`` otherwise.

        Args:
            error: The failure raised by the first dispatch
            dispatch: Dispatch callable used for the retry
            action_text: Action that failed; recorded before classifying
            snapshot: Optional game-state snapshot stored with the action

        Returns:
            True when the retry succeeded (the last action is then cleared)

        Raises:
            The original ``error`` object when it is not retryable or the
            retry did not succeed
        """
        if action_text:
            self.record_last_action(action_text, snapshot)

        category = categorize(error)
        collector = get_metrics_collector()
        if collector:
            collector.record_failure_category(category.value)

        if category.retryable:
            logger.info("Retryable failure detected", failure_category=category.value)
            if await self.execute_retry(dispatch):
                self.clear_last_action()
                return True
            logger.warning("Automatic retry did not succeed; surfacing original error",
                           failure_category=category.value)
        else:
            logger.info("Failure is not retryable", failure_category=category.value,
                        error_type=type(error).__name__)

        raise error

    def get_status(self) -> RetryStatus:
        action = self._last_action
        return RetryStatus(
            has_last_action=action is not None,
            retry_in_flight=self.retry_in_flight,
            last_action_age_seconds=round(action.age_seconds(), 3) if action else None,
        )

    def get_debug_info(self) -> dict:
        action = self._last_action
        return {
            "last_action": {
                "text": action.text[:100],
                "recorded_at": action.recorded_at.isoformat(),
                "age_seconds": round(action.age_seconds(), 3),
            } if action else None,
            "phase": self._phase.value,
        }
