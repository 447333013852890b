# config.py
# Settings and logging setup. Values come from the environment (optionally
# via a .env file); every tunable constant of the engine lives here.

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator
from rich.logging import RichHandler

from adaptive_runner.backend import OPENROUTER_BASE_URL
from adaptive_runner.models import BackendProfile

load_dotenv()

ENV_PREFIX = "ADAPTIVE_RUNNER_"


class Settings(BaseModel):
    """Engine configuration. Defaults mirror the tuned values of the runner."""

    fast_model: str = "openai/gpt-5-mini"
    general_model: str = "openai/gpt-5-chat"
    heavy_model: str = "openai/o3"
    base_url: str = OPENROUTER_BASE_URL

    max_attempts: int = Field(default=3, ge=1)
    success_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    chunk_min: int = Field(default=5, ge=1)
    chunk_max: int = Field(default=10, ge=1)
    steps_per_chunk: int = Field(default=7, ge=1, description="Divisor for the chunk-cycle bound.")
    done_ratio: float = Field(default=0.9, gt=0.0, le=1.0)
    step_delay: float = Field(default=0.5, ge=0.0, description="Courtesy pause between steps.")
    adaptive_threshold: int = Field(default=10, ge=1, description="Step count that selects the adaptive path.")
    command_timeout: float = Field(default=60.0, gt=0.0)
    log_level: str = "WARNING"

    @model_validator(mode="after")
    def _chunk_bounds(self) -> "Settings":
        if self.chunk_min > self.chunk_max:
            raise ValueError("chunk_min must not exceed chunk_max.")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ADAPTIVE_RUNNER_* variables; unset ones keep defaults."""
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls.model_validate(values)

    def chain(self) -> list[BackendProfile]:
        """The fixed escalation chain, cheapest first."""
        return [
            BackendProfile(
                tier_id="fast",
                ordinal_rank=0,
                supports_deterministic_params=True,
                model=self.fast_model,
                temperature=0.1,
            ),
            BackendProfile(
                tier_id="general",
                ordinal_rank=1,
                supports_deterministic_params=True,
                model=self.general_model,
                temperature=0.3,
            ),
            BackendProfile(
                tier_id="heavyweight",
                ordinal_rank=2,
                supports_deterministic_params=False,
                model=self.heavy_model,
            ),
        ]


def configure_logging(level: str = "WARNING") -> None:
    """Route library logging through rich so it interleaves with display output."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
