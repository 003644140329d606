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
"""Shared test fixtures for the choice engine service.

This module provides pytest fixtures for testing the choice engine:
- test_env: Test environment variables
- mock_generator_client: GeneratorClient double with an AsyncMock dispatch
- session_store: Fresh in-memory SessionStore (no retry delay)
- client: FastAPI TestClient with overridden dependencies
- quests / skill_registry: Sample quest log and skill registry

Usage:
    pytest tests/
    pytest tests/test_api.py -v
"""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from choice_engine.models import MasteryTier, Quest, QuestObjective, SkillEntity
from choice_engine.services.quest_log import InMemoryQuestLog
from choice_engine.services.session import SessionStore
from choice_engine.services.skill_registry import InMemorySkillRegistry


@pytest.fixture
def test_env():
    """Fixture providing test environment variables.

    Usage:
        def test_example(test_env):
            with patch.dict(os.environ, test_env, clear=True):
                ...
    """
    return {
        "GENERATOR_BASE_URL": "http://localhost:8001",
        "GENERATOR_TIMEOUT": "30",
        "RETRY_DELAY_SECONDS": "0",
        "HEALTH_CHECK_GENERATOR": "false",
        "SERVICE_NAME": "choice-engine-test",
        "LOG_LEVEL": "INFO",
        "ENABLE_METRICS": "false"
    }


@pytest.fixture
def mock_generator_client():
    """GeneratorClient double; configure ``dispatch``/``ping`` per test."""
    generator = MagicMock()
    generator.dispatch = AsyncMock(return_value={"narrative": "Bạn tiến lên."})
    generator.ping = AsyncMock(return_value=True)
    return generator


@pytest.fixture
def session_store():
    return SessionStore(retry_delay=0.0)


@pytest.fixture
def client(test_env, mock_generator_client, session_store):
    """Fixture providing a FastAPI TestClient with mocked dependencies.

    The generator client is replaced by ``mock_generator_client`` so no
    network calls are made; sessions live in ``session_store``.
    """
    with patch.dict(os.environ, test_env, clear=True):
        from choice_engine.config import get_settings
        get_settings.cache_clear()

        from choice_engine.api.deps import (
            get_choice_annotator,
            get_generator_client,
            get_session_store,
        )
        from choice_engine.main import app
        from choice_engine.services.choice_annotator import ChoiceAnnotator

        annotator = ChoiceAnnotator()
        try:
            app.dependency_overrides[get_generator_client] = lambda: mock_generator_client
            app.dependency_overrides[get_session_store] = lambda: session_store
            app.dependency_overrides[get_choice_annotator] = lambda: annotator

            with TestClient(app) as test_client:
                yield test_client
        finally:
            app.dependency_overrides.clear()
            get_settings.cache_clear()


@pytest.fixture
def quests():
    """Quest log with one active quest, one completed quest."""
    return InMemoryQuestLog([
        Quest(
            title="Diệt sói",
            description="Tiêu diệt bầy sói quanh làng",
            objectives=[
                QuestObjective(id="obj-1", description="Tìm hang sói", completed=True),
                QuestObjective(id="obj-2", description="Hạ sói đầu đàn"),
            ],
        ),
        Quest(
            title="Thu thảo dược",
            status="completed",
            objectives=[QuestObjective(id="obj-9", description="Hái nhân sâm")],
        ),
    ])


@pytest.fixture
def skill_registry():
    """Registry where the player has learned two of three known skills."""
    return InMemorySkillRegistry(
        skills=[
            SkillEntity(name="Huyết Đế Chú", mastery=MasteryTier.ADVANCED),
            SkillEntity(name="Thiên Cơ Bí Nhãn", mastery=MasteryTier.PERFECTION),
            SkillEntity(name="Kiếm Pháp", mastery=MasteryTier.GREAT_ACCOMPLISHMENT),
        ],
        learned_skills=["Huyết Đế Chú", "Thiên Cơ Bí Nhãn"],
    )
