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
"""API routes for the choice engine service.

This module defines:
- POST /choices/annotate: Run raw generator choices through the pipeline
- POST /choices/select: Remember the category of the option the player chose
- POST /actions: Dispatch a player action with one coordinated retry
- POST /actions/retry: Manually retry the last action
- GET /actions/retry-status: Inspect the session's retry coordinator
- GET /health: Health check endpoint
- GET /metrics: Metrics endpoint (when enabled)
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from choice_engine.api.deps import (
    get_choice_annotator,
    get_game_session,
    get_generator_client,
)
from choice_engine.config import Settings, get_settings
from choice_engine.logging import StructuredLogger, get_request_id, sanitize_for_log
from choice_engine.metrics import get_metrics_collector
from choice_engine.models import (
    AnnotateChoicesRequest,
    AnnotateChoicesResponse,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    RetryActionResponse,
    RetryStatus,
    SelectCategoryRequest,
    SelectCategoryResponse,
    SubmitActionRequest,
    SubmitActionResponse,
)
from choice_engine.services.choice_annotator import ChoiceAnnotator
from choice_engine.services.generator_client import (
    GeneratorClient,
    GeneratorClientError,
    GeneratorConnectionError,
    GeneratorTimeoutError,
)
from choice_engine.services.quest_log import InMemoryQuestLog
from choice_engine.services.session import GameSession
from choice_engine.services.skill_registry import InMemorySkillRegistry

logger = StructuredLogger(__name__)

router = APIRouter()


def create_error_response(
    error_type: str,
    message: str,
    status_code: int
) -> HTTPException:
    """Create a structured error response.

    Args:
        error_type: Machine-readable error type
        message: Human-readable error message
        status_code: HTTP status code

    Returns:
        HTTPException with structured error detail
    """
    error_detail = ErrorResponse(
        error=ErrorDetail(type=error_type, message=message, request_id=get_request_id())
    )
    return HTTPException(status_code=status_code, detail=error_detail.model_dump())


def _dispatch_error_type(error: GeneratorClientError) -> str:
    if isinstance(error, GeneratorTimeoutError):
        return "generator_timeout"
    if isinstance(error, GeneratorConnectionError):
        return "generator_unreachable"
    return "generator_error"


@router.post(
    "/choices/annotate",
    response_model=AnnotateChoicesResponse,
    status_code=status.HTTP_200_OK,
    summary="Annotate raw choices",
    description=(
        "Parse raw generator choice strings into structured choices, fill missing "
        "fields, and apply category support and skill mastery bonuses using the "
        "session's last selected category."
    )
)
async def annotate_choices(
    request: AnnotateChoicesRequest,
    session: GameSession = Depends(get_game_session),
    annotator: ChoiceAnnotator = Depends(get_choice_annotator)
) -> AnnotateChoicesResponse:
    quests = InMemoryQuestLog(request.quests)
    skills = InMemorySkillRegistry(request.skills, request.learned_skills)

    records = annotator.annotate_all(request.choices, session.category_state, quests, skills)

    last_selected = session.category_state.get_last_selected()
    return AnnotateChoicesResponse(
        choices=records,
        last_selected_category=last_selected.value if last_selected else None
    )


@router.post(
    "/choices/select",
    response_model=SelectCategoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Record the chosen option's category",
    description=(
        "Store the category of the option the player picked so the next "
        "annotation pass can apply category support. Null or unknown labels "
        "clear the stored category."
    )
)
async def select_category(
    request: SelectCategoryRequest,
    session: GameSession = Depends(get_game_session)
) -> SelectCategoryResponse:
    stored = session.category_state.set_last_selected(request.category)
    if request.category is not None and stored is None:
        logger.info("Unknown category label selected", category=sanitize_for_log(request.category, 40))
    return SelectCategoryResponse(
        last_selected_category=stored.value if stored else None,
        recognized=stored is not None
    )


@router.post(
    "/actions",
    response_model=SubmitActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit a player action",
    description=(
        "Record the action as the session's last action and dispatch it to the "
        "generator. Network, overload and quota failures are retried once "
        "automatically; other failures and failed retries return 502 with the "
        "original error message."
    ),
    responses={
        400: {"description": "Invalid session id"},
        502: {"description": "Generator dispatch failed"}
    }
)
async def submit_action(
    request: SubmitActionRequest,
    session: GameSession = Depends(get_game_session),
    generator: GeneratorClient = Depends(get_generator_client)
) -> SubmitActionResponse:
    """Submit a player action with automatic coordinated retry.

    Args:
        request: Action text, custom flag and optional snapshot
        session: Caller's game session (injected)
        generator: Generator client (injected)

    Returns:
        SubmitActionResponse with the generator result

    Raises:
        HTTPException(502): If dispatch failed and was not recovered by a retry
    """
    coordinator = session.retry_coordinator

    # A free-text action breaks the chain of category support
    if request.is_custom:
        session.category_state.set_last_selected(None)

    coordinator.record_last_action(request.action, request.snapshot)
    logger.info(
        "Submitting action",
        action=sanitize_for_log(request.action, 50),
        is_custom=request.is_custom
    )

    try:
        result = await generator.dispatch(request.action)
    except GeneratorClientError as e:
        captured: Dict[str, Any] = {}

        async def dispatch_and_capture(action_text: str, correlation_id: Optional[str] = None) -> Any:
            captured["result"] = await generator.dispatch(action_text, correlation_id)
            return captured["result"]

        try:
            await coordinator.handle_error_with_retry(e, dispatch_and_capture)
        except GeneratorClientError as final_error:
            if (collector := get_metrics_collector()):
                collector.record_error(_dispatch_error_type(final_error))
            raise create_error_response(
                error_type=_dispatch_error_type(final_error),
                message=str(final_error),
                status_code=status.HTTP_502_BAD_GATEWAY
            ) from final_error

        return SubmitActionResponse(accepted=True, retried=True, result=captured.get("result"))

    return SubmitActionResponse(accepted=True, result=result)


@router.post(
    "/actions/retry",
    response_model=RetryActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Retry the last action",
    description=(
        "Re-dispatch the session's last action once. Returns retried=false when "
        "there is no last action, a retry is already running, or the retry failed."
    )
)
async def retry_action(
    session: GameSession = Depends(get_game_session),
    generator: GeneratorClient = Depends(get_generator_client)
) -> RetryActionResponse:
    retried = await session.retry_coordinator.execute_retry(generator.dispatch)
    return RetryActionResponse(retried=retried)


@router.get(
    "/actions/retry-status",
    response_model=RetryStatus,
    status_code=status.HTTP_200_OK,
    summary="Retry coordinator status"
)
async def retry_status(session: GameSession = Depends(get_game_session)) -> RetryStatus:
    return session.retry_coordinator.get_status()


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check endpoint",
    description=(
        "Check service health status. Optionally pings the generator service if "
        "HEALTH_CHECK_GENERATOR is enabled. Returns 200 with status='healthy' "
        "or 'degraded' based on dependency availability."
    )
)
async def health_check(
    generator: GeneratorClient = Depends(get_generator_client),
    settings: Settings = Depends(get_settings)
) -> HealthResponse:
    """Health check endpoint with optional generator ping.

    Args:
        generator: Generator client (injected)
        settings: Application settings (injected)

    Returns:
        HealthResponse with status and optional generator accessibility
    """
    logger.debug("Health check requested")

    generator_accessible = None
    service_status = "healthy"

    if settings.health_check_generator:
        generator_accessible = await generator.ping()
        if not generator_accessible:
            service_status = "degraded"

    return HealthResponse(
        status=service_status,
        service=settings.service_name,
        generator_accessible=generator_accessible
    )


@router.get(
    "/metrics",
    status_code=status.HTTP_200_OK,
    summary="Metrics endpoint",
    description=(
        "Get service metrics including request counts, latencies, choice annotation "
        "and retry counters. Only available when ENABLE_METRICS is true."
    ),
    responses={404: {"description": "Metrics disabled"}}
)
async def get_metrics(settings: Settings = Depends(get_settings)):
    """Get service metrics.

    Raises:
        HTTPException: If metrics are disabled
    """
    if not settings.enable_metrics:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Metrics endpoint is disabled. Set ENABLE_METRICS=true to enable."
        )

    collector = get_metrics_collector()
    if not collector:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Metrics collector not initialized"
        )

    return collector.get_metrics()
