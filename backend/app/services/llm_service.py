"""LLM service - the upstream completion capability behind the chat relay.

Supports two providers, selected by LLM_PROVIDER:
- Azure OpenAI via the openai SDK (default)
- DashScope (通义千问) via the DashScope SDK

Both expose the same two calls: `complete()` for a single reply and
`stream()` for incremental deltas.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path

import yaml
from fastapi import Depends
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

from app.config import Settings, get_settings

PERSONA_DIR = Path(__file__).parent.parent / "data" / "personas"

# Persona model params forwarded to the provider when present
MODEL_PARAM_KEYS = ("temperature", "top_p", "max_tokens")


class UpstreamError(RuntimeError):
    """The provider answered, but with an error status."""


@dataclass(frozen=True)
class ChatDelta:
    """One partial-completion event from the upstream stream."""
    content: str = ""
    finish_reason: str | None = None


@lru_cache
def load_persona(persona: str = "professional") -> dict:
    """Load persona YAML and return the full config dict (cached per process)."""
    path = PERSONA_DIR / f"{persona}.yaml"
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_persona_prompt(persona: str = "professional") -> str:
    """Load only the system_prompt string from the persona YAML."""
    return load_persona(persona).get("system_prompt", "")


def load_model_params(persona: str = "professional") -> dict:
    """Load model params (temperature, top_p, max_tokens) from persona YAML."""
    params = load_persona(persona).get("model_params") or {}
    return {k: params[k] for k in MODEL_PARAM_KEYS if k in params}


def render_system_prompt(template: str, now: datetime | None = None) -> str:
    """Fill the {current_time} placeholder of a persona prompt."""
    now = now or datetime.now().astimezone()
    return template.replace("{current_time}", now.strftime("%a %b %d %Y %H:%M:%S %Z"))


def _create_azure_client(settings: Settings):
    """Lazy import of the openai SDK so a missing config never fails at import."""
    from openai import AsyncAzureOpenAI

    return AsyncAzureOpenAI(
        azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
        api_key=settings.AZURE_OPENAI_API_KEY,
        api_version=settings.AZURE_OPENAI_API_VERSION,
        azure_deployment=settings.AZURE_OPENAI_CHAT_DEPLOYMENT,
    )


def _get_generation(api_key: str):
    """Lazy import of dashscope.Generation to avoid import-time crashes in test."""
    import dashscope
    from dashscope import Generation

    dashscope.api_key = api_key
    return Generation


class LLMService:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.provider = settings.provider
        self._model_params = load_model_params(settings.PERSONA)

    async def complete(self, messages: list[dict]) -> str:
        """Single completion; returns the first choice's text or ""."""
        if self.provider == "dashscope":
            return await self._dashscope_complete(messages)
        return await self._azure_complete(messages)

    async def stream(self, messages: list[dict]) -> AsyncGenerator[ChatDelta, None]:
        """Stream the completion as ChatDelta events, as they arrive."""
        if self.provider == "dashscope":
            events = self._dashscope_stream(messages)
        else:
            events = self._azure_stream(messages)
        async with aclosing(events):
            async for delta in events:
                yield delta

    # --- Azure OpenAI ---

    async def _azure_complete(self, messages: list[dict]) -> str:
        async with _create_azure_client(self.settings) as client:
            completion = await client.chat.completions.create(
                model=self.settings.AZURE_OPENAI_CHAT_DEPLOYMENT,
                messages=messages,
                **self._model_params,
            )
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    async def _azure_stream(self, messages: list[dict]) -> AsyncGenerator[ChatDelta, None]:
        async with _create_azure_client(self.settings) as client:
            events = await client.chat.completions.create(
                model=self.settings.AZURE_OPENAI_CHAT_DEPLOYMENT,
                messages=messages,
                stream=True,
                **self._model_params,
            )
            try:
                async for event in events:
                    # Azure sends content-filter results in a chunk with no choices
                    if not event.choices:
                        continue
                    choice = event.choices[0]
                    content = choice.delta.content if choice.delta else None
                    yield ChatDelta(content or "", choice.finish_reason)
            finally:
                await events.close()

    # --- DashScope ---

    async def _dashscope_complete(self, messages: list[dict]) -> str:
        Generation = _get_generation(self.settings.DASHSCOPE_API_KEY)
        response = await run_in_threadpool(
            Generation.call,
            model=self.settings.LLM_MODEL,
            messages=messages,
            result_format="message",
            **self._model_params,
        )
        if response.status_code != 200:
            raise UpstreamError(
                f"LLM API error: {response.status_code} - {response.message}"
            )
        choices = response.output.choices or []
        if not choices:
            return ""
        return choices[0].message.content or ""

    async def _dashscope_stream(self, messages: list[dict]) -> AsyncGenerator[ChatDelta, None]:
        Generation = _get_generation(self.settings.DASHSCOPE_API_KEY)
        responses = await run_in_threadpool(
            Generation.call,
            model=self.settings.LLM_MODEL,
            messages=messages,
            result_format="message",
            stream=True,
            incremental_output=True,
            **self._model_params,
        )

        # The SDK iterates a blocking HTTP stream; keep it off the event loop
        try:
            async for response in iterate_in_threadpool(responses):
                if response.status_code != 200:
                    raise UpstreamError(
                        f"LLM API error: {response.status_code} - {response.message}"
                    )
                choice = response.output.choices[0]
                finish = choice.finish_reason
                # DashScope reports "null" until the last chunk
                if finish == "null":
                    finish = None
                yield ChatDelta(choice.message.content or "", finish)
        finally:
            close = getattr(responses, "close", None)
            if close is not None:
                await run_in_threadpool(close)


def get_llm_service(settings: Settings = Depends(get_settings)) -> LLMService:
    """FastAPI dependency that returns an upstream client for this request."""
    return LLMService(settings)
