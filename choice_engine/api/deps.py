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
"""API dependencies for shared services and per-session state.

The ``get_*`` providers here are placeholders; main.py overrides them with
the instances created during the application lifespan, and tests override
them with fakes.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from choice_engine.logging import StructuredLogger, sanitize_for_log
from choice_engine.services.choice_annotator import ChoiceAnnotator
from choice_engine.services.generator_client import GeneratorClient
from choice_engine.services.session import DEFAULT_SESSION_ID, GameSession, SessionStore

logger = StructuredLogger(__name__)

MAX_SESSION_ID_LENGTH = 128


def get_generator_client() -> GeneratorClient:
    """Dependency that provides the GeneratorClient used to dispatch actions.

    Raises:
        NotImplementedError: If not overridden by the application
    """
    raise NotImplementedError(
        "get_generator_client dependency must be overridden. "
        "This should be configured in choice_engine.main module."
    )


def get_session_store() -> SessionStore:
    """Dependency that provides the in-memory SessionStore.

    Raises:
        NotImplementedError: If not overridden by the application
    """
    raise NotImplementedError(
        "get_session_store dependency must be overridden. "
        "This should be configured in choice_engine.main module."
    )


def get_choice_annotator() -> ChoiceAnnotator:
    """Dependency that provides the ChoiceAnnotator pipeline.

    Raises:
        NotImplementedError: If not overridden by the application
    """
    raise NotImplementedError(
        "get_choice_annotator dependency must be overridden. "
        "This should be configured in choice_engine.main module."
    )


def get_game_session(
    x_session_id: Optional[str] = Header(None, alias="X-Session-Id"),
    store: SessionStore = Depends(get_session_store)
) -> GameSession:
    """Resolve the caller's game session from the X-Session-Id header.

    Requests without the header share the ``default`` session.

    Raises:
        HTTPException(400): If the session id is blank or too long
    """
    if x_session_id is None:
        return store.get_or_create(DEFAULT_SESSION_ID)

    session_id = x_session_id.strip()
    if not session_id or len(session_id) > MAX_SESSION_ID_LENGTH:
        logger.warning("Rejected invalid session id", session_id=sanitize_for_log(x_session_id, 40))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"X-Session-Id must be 1-{MAX_SESSION_ID_LENGTH} non-blank characters"
        )
    return store.get_or_create(session_id)
