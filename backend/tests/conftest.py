"""Shared test fixtures - a fake upstream LLM behind the real FastAPI app."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.config import Settings, get_settings
from app.services.llm_service import ChatDelta, get_llm_service


class FakeLLM:
    """Stands in for LLMService and records every upstream call."""

    def __init__(self, reply="", deltas=(), error=None, fail_after=None):
        self.reply = reply
        self.deltas = list(deltas)
        self.error = error
        self.fail_after = fail_after
        self.calls: list[list[dict]] = []
        self.consumed = 0

    async def complete(self, messages):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return self.reply

    async def stream(self, messages):
        self.calls.append(messages)
        for i, delta in enumerate(self.deltas):
            if self.fail_after is not None and i == self.fail_after:
                raise self.error
            self.consumed += 1
            yield delta if isinstance(delta, ChatDelta) else ChatDelta(delta)
        if self.fail_after is not None and self.fail_after >= len(self.deltas):
            raise self.error


def make_settings(**overrides) -> Settings:
    values = {
        "LLM_PROVIDER": "azure",
        "AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com",
        "AZURE_OPENAI_API_KEY": "test-key",
        "AZURE_OPENAI_CHAT_DEPLOYMENT": "gpt-test",
        "DASHSCOPE_API_KEY": "",
        "PERSONA": "professional",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def llm():
    return FakeLLM(reply="Hello there")


@pytest.fixture
async def client(settings, llm):
    """Async HTTP test client with settings and upstream overridden."""
    from app.main import app

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_llm_service] = lambda: llm
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
