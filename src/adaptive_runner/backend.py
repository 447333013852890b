# backend.py
# Completion Backend: tier-addressed text generation.
#
# The core only ever calls complete(tier, instructions, context). The tier is
# always passed in by the caller; nothing here reads a "current model" from
# ambient state.

import logging
import os
from typing import Protocol, runtime_checkable

from openai import AsyncOpenAI, OpenAIError

from adaptive_runner.models import BackendProfile

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class BackendError(Exception):
    """Transient failure reported by the completion backend."""


@runtime_checkable
class CompletionBackend(Protocol):
    async def complete(self, tier: str, instructions: str, context: str) -> str:
        """Return free text for the given tier, or raise BackendError."""
        ...


class OpenRouterBackend:
    """
    Chat-completions backend served through OpenRouter.

    Each tier in the escalation chain maps to one model string. Sampling
    temperature is sent only to tiers that accept it.

    Example:
        backend = OpenRouterBackend(settings.chain())
        text = await backend.complete("heavyweight", PLANNER_PROMPT, request)
    """

    def __init__(
        self,
        chain: list[BackendProfile],
        base_url: str = OPENROUTER_BASE_URL,
        api_key: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._profiles = {profile.tier_id: profile for profile in chain}
        self._base_url = base_url
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        # Built on first request, so runs that never reach the backend need no key.
        if self._client is None:
            self._client = AsyncOpenAI(
                base_url=self._base_url,
                api_key=self._api_key or os.getenv("OPENROUTER_API_KEY"),
            )
        return self._client

    def profile(self, tier: str) -> BackendProfile:
        try:
            return self._profiles[tier]
        except KeyError:
            raise BackendError(f"Unknown backend tier {tier!r}.") from None

    async def complete(self, tier: str, instructions: str, context: str) -> str:
        profile = self.profile(tier)
        params: dict = {
            "model": profile.model,
            "messages": [
                {"role": "system", "content": instructions},
                {"role": "user", "content": context},
            ],
        }
        if profile.supports_deterministic_params and profile.temperature is not None:
            params["temperature"] = profile.temperature

        logger.debug("Completion request tier=%s model=%s", tier, profile.model)
        try:
            response = await self._get_client().chat.completions.create(**params)
        except OpenAIError as exc:
            logger.warning("Completion backend failed on tier %s: %s", tier, exc)
            raise BackendError(f"{profile.model}: {exc}") from exc

        if not response.choices:
            raise BackendError(f"{profile.model}: empty response.")
        return (response.choices[0].message.content or "").strip()
