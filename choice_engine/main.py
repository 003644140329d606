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
"""FastAPI application entry point for the choice engine service.

Wires the routes, CORS and correlation middleware, and builds the shared
services (generator client, session store, choice annotator) during the
lifespan. Run locally with ``python -m choice_engine.main``.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from httpx import AsyncClient
import logging

from choice_engine.api.deps import (
    get_choice_annotator,
    get_generator_client,
    get_session_store,
)
from choice_engine.api.routes import router
from choice_engine.config import Settings, get_settings
from choice_engine.logging import configure_logging
from choice_engine.metrics import init_metrics_collector, disable_metrics_collector
from choice_engine.middleware import RequestCorrelationMiddleware
from choice_engine.services.choice_annotator import ChoiceAnnotator
from choice_engine.services.field_inferencer import FieldInferencer
from choice_engine.services.generator_client import GeneratorClient
from choice_engine.services.session import SessionStore

logger = logging.getLogger(__name__)


def _init_observability(settings: Settings) -> None:
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json_format,
        service_name=settings.service_name
    )
    if settings.enable_metrics:
        init_metrics_collector()
    else:
        disable_metrics_collector()


def _build_services(app: FastAPI, settings: Settings) -> None:
    """Create the shared services the dependency overrides hand out."""
    app.state.http_client = AsyncClient()
    app.state.generator_client = GeneratorClient(
        base_url=settings.generator_base_url,
        http_client=app.state.http_client,
        timeout=settings.generator_timeout
    )
    app.state.session_store = SessionStore(
        retry_delay=settings.retry_delay_seconds,
        max_size=settings.session_max_count,
        ttl_seconds=settings.session_ttl_seconds
    )
    app.state.choice_annotator = ChoiceAnnotator(
        inferencer=FieldInferencer(default_reward_text=settings.default_reward_text)
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration, then own the HTTP client for the app's lifetime.

    A configuration error aborts startup.
    """
    try:
        settings = get_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    _init_observability(settings)
    logger.info(
        f"Starting {settings.service_name}: generator={settings.generator_base_url} "
        f"retry_delay={settings.retry_delay_seconds}s metrics={settings.enable_metrics}"
    )

    _build_services(app, settings)
    try:
        yield
    finally:
        await app.state.http_client.aclose()
        logger.info("Choice engine stopped; HTTP client closed")


app = FastAPI(
    title="Choice Engine API",
    description=(
        "Annotates story-generator choices with success rates, risk tiers and "
        "bonuses, and dispatches player actions with coordinated retry."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# NOTE: restrict allow_origins for production deployments
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestCorrelationMiddleware)

app.include_router(router, tags=["choices"])


def _state_provider(attribute: str, label: str):
    """Build a dependency override returning ``app.state.<attribute>``."""
    def provider():
        if not hasattr(app.state, attribute):
            raise RuntimeError(
                f"{label} not initialized. "
                "Ensure the application lifespan has started."
            )
        return getattr(app.state, attribute)
    return provider


app.dependency_overrides[get_generator_client] = _state_provider("generator_client", "Generator client")
app.dependency_overrides[get_session_store] = _state_provider("session_store", "Session store")
app.dependency_overrides[get_choice_annotator] = _state_provider("choice_annotator", "Choice annotator")


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)

    uvicorn.run(
        "choice_engine.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level=settings.log_level.lower()
    )
