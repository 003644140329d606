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
"""Structured logging for the choice engine.

Every log line written through StructuredLogger carries the correlation
ids of the current request (``request_id``) and game session
(``session_id``) when they are known, followed by ``key=value`` fields:

    Category support applied | request_id=... session_id=ván-1 category=Chiến đấu

Choice strings and action text come from the generator and the player, so
they go through sanitize_for_log() before being logged. Upstream error
bodies go through redact_secrets().
"""

import json
import logging
import re
import time
from contextvars import ContextVar
from typing import Any, Dict, Optional, Tuple

request_id_ctx: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
session_id_ctx: ContextVar[Optional[str]] = ContextVar('session_id', default=None)

# Order here is the order the ids appear in log lines
_CORRELATION_VARS: Tuple[Tuple[str, ContextVar], ...] = (
    ('request_id', request_id_ctx),
    ('session_id', session_id_ctx),
)

_SECRET_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r'sk-[a-zA-Z0-9]{32,}'), 'sk-***REDACTED***'),
    (
        re.compile(r'api[_-]?key["\']?\s*[:=]\s*["\']?[a-zA-Z0-9_\-]{16,}', re.IGNORECASE),
        'api_key=***REDACTED***'
    ),
    (re.compile(r'Bearer\s+[a-zA-Z0-9\-._~+/]+', re.IGNORECASE), 'Bearer ***REDACTED***'),
)

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f-\x9f]')


def set_request_id(request_id: str) -> None:
    request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def set_session_id(session_id: str) -> None:
    session_id_ctx.set(session_id)


def clear_context() -> None:
    """Forget the correlation ids of the finished request."""
    for _, var in _CORRELATION_VARS:
        var.set(None)


def get_structured_extras() -> Dict[str, Any]:
    """Correlation ids currently set, keyed by field name."""
    return {name: var.get() for name, var in _CORRELATION_VARS if var.get()}


def redact_secrets(text: str) -> str:
    """Mask API keys and bearer tokens before text reaches a log line."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_for_log(text: Any, max_length: int = 200) -> str:
    """Flatten control characters to spaces and truncate.

    Args:
        text: Value to log; non-strings are converted with str()
        max_length: Characters kept before the "..." marker

    Returns:
        Single-line text safe for logging
    """
    sanitized = _CONTROL_CHARS.sub(' ', str(text))
    if len(sanitized) > max_length:
        return sanitized[:max_length] + "..."
    return sanitized


class StructuredLogger:
    """Logger that appends correlation ids and keyword fields to each message.

    The same fields are passed as ``extra`` so JsonFormatter emits them as
    top-level keys. Fields whose value is None are left out of the text.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    @staticmethod
    def _render(message: str, fields: Dict[str, Any]) -> str:
        rendered = ' '.join(f'{key}={value}' for key, value in fields.items() if value is not None)
        return f"{message} | {rendered}" if rendered else message

    def _log(self, level: int, message: str, **fields) -> None:
        if not self.logger.isEnabledFor(level):
            return
        extras = get_structured_extras()
        extras.update(fields)
        self.logger.log(level, self._render(message, extras), extra=extras)

    def debug(self, message: str, **fields) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields) -> None:
        self._log(logging.ERROR, message, **fields)


class PhaseTimer:
    """Time a block of work and log its outcome.

    Completion is logged at INFO, an escaping exception at ERROR with its
    type; the exception itself is not suppressed.

    Usage:
        with PhaseTimer("choice_annotation", logger):
            records = [...]
    """

    def __init__(self, phase: str, logger: StructuredLogger):
        self.phase = phase
        self.logger = logger
        self.duration_ms: Optional[float] = None
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        duration = f"{self.duration_ms:.2f}"

        if exc_type is not None:
            self.logger.error(f"Phase failed: {self.phase}", duration_ms=duration, error_type=exc_type.__name__)
        else:
            self.logger.info(f"Phase completed: {self.phase}", duration_ms=duration)
        return False


# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'taskName'}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, keeping Vietnamese text unescaped."""

    def __init__(self, service_name: Optional[str] = None):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        if self.service_name:
            payload['service'] = self.service_name

        payload.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )

        if record.exc_info:
            payload['exception'] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    service_name: str = "choice-engine"
) -> None:
    """Install a single console handler on the root logger.

    Args:
        level: Logging level name; unknown names fall back to INFO
        json_format: Emit JsonFormatter lines instead of plain text
        service_name: Included in every JSON line and the startup message
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler()
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(
            f'%(asctime)s - {service_name} - %(name)s - %(levelname)s - %(message)s'
        ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    root.info(f"Logging configured: level={level}, json_format={json_format}, service={service_name}")
