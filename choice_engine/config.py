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
"""Service configuration.

Settings come from environment variables (or a ``.env`` file) and are
validated once at startup; only GENERATOR_BASE_URL is required.
"""

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_REWARD_TEXT = "Tiến triển trong câu chuyện và mở ra cơ hội mới."

LogLevel = Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class Settings(BaseSettings):
    """Choice engine settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

    generator_base_url: str = Field(
        ...,
        description="Story generator that receives player actions",
        examples=["http://localhost:8001"]
    )
    generator_timeout: int = Field(default=30, ge=1, le=300, description="Generator request timeout (seconds)")
    health_check_generator: bool = Field(
        default=False,
        description="Ping the generator from GET /health"
    )

    retry_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Pause before re-dispatching the last action"
    )
    default_reward_text: str = Field(
        default=DEFAULT_REWARD_TEXT,
        min_length=1,
        description="Reward shown for choices that state none"
    )

    session_max_count: int = Field(
        default=10000,
        ge=1,
        description="Sessions kept in memory before the least recently used is evicted"
    )
    session_ttl_seconds: int = Field(default=3600, ge=1, description="Idle time after which a session is dropped")

    service_name: str = "choice-engine"
    log_level: LogLevel = "INFO"
    log_json_format: bool = False
    enable_metrics: bool = Field(default=False, description="Collect metrics and serve GET /metrics")

    @field_validator('generator_base_url')
    @classmethod
    def validate_generator_url(cls, v: str) -> str:
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"generator_base_url must start with http:// or https://, got: {v!r}")
        return v.rstrip('/')

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process.

    Tests clear the cache with ``get_settings.cache_clear()``.

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    try:
        return Settings()
    except Exception as e:
        raise ValueError(
            f"Configuration error: {e}. "
            "Check the environment (GENERATOR_BASE_URL is mandatory)."
        ) from e
