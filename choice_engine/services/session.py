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
"""Per-session state: the last selected category and the retry coordinator.

Both pieces of state are scoped to one game session. Sessions live in
process memory only and expire after a period of inactivity.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Tuple

from choice_engine.logging import StructuredLogger
from choice_engine.resilience import RetryCoordinator
from choice_engine.services.category_support import CategorySupportState

logger = StructuredLogger(__name__)

DEFAULT_SESSION_ID = "default"


@dataclass
class GameSession:
    session_id: str
    category_state: CategorySupportState = field(default_factory=CategorySupportState)
    retry_coordinator: RetryCoordinator = field(default_factory=RetryCoordinator)


class SessionStore:
    """In-memory registry of game sessions keyed by session id.

    Bounded the same way on both axes: sessions idle for longer than
    ``ttl_seconds`` are dropped, and once ``max_size`` sessions exist the
    least recently used one is evicted to make room.
    """

    def __init__(self, retry_delay: float = 0.0, max_size: int = 10000, ttl_seconds: int = 3600):
        self.retry_delay = retry_delay
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        # session_id -> (session, last access time), least recently used first
        self._sessions: OrderedDict[str, Tuple[GameSession, float]] = OrderedDict()
        self._lock = threading.Lock()

    def get_or_create(self, session_id: str = DEFAULT_SESSION_ID) -> GameSession:
        with self._lock:
            now = time.time()
            self._cleanup_expired(now)

            entry = self._sessions.get(session_id)
            if entry is not None:
                session = entry[0]
                self._sessions[session_id] = (session, now)
                self._sessions.move_to_end(session_id)
                return session

            if len(self._sessions) >= self.max_size:
                evicted_id, _ = self._sessions.popitem(last=False)
                logger.debug(
                    "Evicted least recently used session",
                    session_id=evicted_id,
                    max_size=self.max_size
                )

            session = GameSession(
                session_id=session_id,
                retry_coordinator=RetryCoordinator(retry_delay=self.retry_delay),
            )
            self._sessions[session_id] = (session, now)
            logger.info("Created game session", session_id=session_id, store_size=len(self._sessions))
            return session

    def _cleanup_expired(self, now: float) -> None:
        """Drop sessions idle past the TTL. Caller holds the lock."""
        expired = [
            session_id for session_id, (_, last_access) in self._sessions.items()
            if now - last_access > self.ttl_seconds
        ]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.debug("Removed expired sessions", count=len(expired))

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def reset(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)
