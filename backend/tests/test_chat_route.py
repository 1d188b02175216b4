"""Tests for POST /api/chat - validation, configuration, batch and stream modes."""

import pytest

from app.core.sse import SSEDecoder
from app.services.llm_service import ChatDelta

HI = {"messages": [{"role": "user", "content": "hi"}]}


def _records(body: bytes):
    return SSEDecoder().feed(body)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


async def test_get_not_allowed(client, llm):
    resp = await client.get("/api/chat")
    assert resp.status_code == 405
    assert llm.calls == []


async def test_empty_body_rejected(client, llm):
    resp = await client.post("/api/chat")
    assert resp.status_code == 400
    assert "missing messages array" in resp.json()["detail"]
    assert llm.calls == []


@pytest.mark.parametrize("body", [{}, {"messages": "hi"}, {"messages": {"role": "user"}}, ["hi"]])
async def test_messages_must_be_a_list(client, llm, body):
    resp = await client.post("/api/chat", json=body)
    assert resp.status_code == 400
    assert "missing messages array" in resp.json()["detail"]
    assert llm.calls == []


async def test_empty_conversation_rejected(client, llm):
    resp = await client.post("/api/chat", json={"messages": []})
    assert resp.status_code == 400
    assert "empty" in resp.json()["detail"]


async def test_malformed_message_rejected(client, llm):
    resp = await client.post("/api/chat", json={"messages": [{"role": "robot", "content": "x"}]})
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Invalid request: messages.0.role")
    assert llm.calls == []


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "missing",
    ["AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_CHAT_DEPLOYMENT"],
)
@pytest.mark.parametrize("query", ["", "?stream=1"])
async def test_missing_config_fails_before_upstream(client, settings, llm, missing, query):
    setattr(settings, missing, "")

    resp = await client.post(f"/api/chat{query}", json=HI)

    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error.startswith("Missing Azure OpenAI configuration")
    assert "AZURE_OPENAI_CHAT_DEPLOYMENT" in error
    assert llm.calls == []


async def test_validation_runs_before_config_check(client, settings, llm):
    settings.AZURE_OPENAI_API_KEY = ""
    resp = await client.post("/api/chat", json={})
    assert resp.status_code == 400


async def test_unknown_provider_is_config_error(client, settings, llm):
    settings.LLM_PROVIDER = "nope"
    resp = await client.post("/api/chat", json=HI)
    assert resp.status_code == 500
    assert "LLM_PROVIDER" in resp.json()["error"]
    assert llm.calls == []


# ---------------------------------------------------------------------------
# Batch mode
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("query", ["", "?stream=0"])
async def test_batch_reply(client, llm, query):
    resp = await client.post(f"/api/chat{query}", json=HI)

    assert resp.status_code == 200
    assert resp.json() == {"reply": "Hello there"}
    assert len(llm.calls) == 1


async def test_batch_prepends_system_instruction(client, llm):
    await client.post("/api/chat", json=HI)

    sent = llm.calls[0]
    assert sent[0]["role"] == "system"
    assert "thoughtful" in sent[0]["content"]
    assert "{current_time}" not in sent[0]["content"]
    assert sent[1:] == [{"role": "user", "content": "hi"}]


async def test_batch_empty_reply(client, llm):
    llm.reply = ""
    resp = await client.post("/api/chat", json=HI)
    assert resp.json() == {"reply": ""}


async def test_batch_upstream_failure(client, llm):
    llm.error = RuntimeError("quota exceeded")

    resp = await client.post("/api/chat", json=HI)

    assert resp.status_code == 500
    assert resp.json() == {"error": "quota exceeded"}
    assert len(llm.calls) == 1  # no retry


# ---------------------------------------------------------------------------
# Streaming mode
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "query,headers",
    [
        ("?stream=1", {}),
        ("?stream=sse", {}),
        ("", {"Accept": "text/event-stream"}),
    ],
)
async def test_stream_mode_selection(client, llm, query, headers):
    llm.deltas = ["Hel", "lo"]

    resp = await client.post(f"/api/chat{query}", json=HI, headers=headers)

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "text/event-stream; charset=utf-8"
    assert resp.headers["cache-control"] == "no-cache, no-transform"
    assert resp.headers["x-accel-buffering"] == "no"
    assert "Accept" in [v.strip() for v in resp.headers["vary"].split(",")]
    assert resp.text == 'data: "Hel"\n\ndata: "lo"\n\nevent: done\ndata: [DONE]\n\n'


async def test_stream_skips_empty_deltas(client, llm):
    llm.deltas = ["", "a", ChatDelta(""), "b"]
    resp = await client.post("/api/chat?stream=1", json=HI)
    texts = [r.text for r in _records(resp.content) if not r.is_terminal]
    assert texts == ["a", "b"]


async def test_stream_stops_at_finish_reason(client, llm):
    llm.deltas = ["a", ChatDelta("b", "stop"), "never sent"]

    resp = await client.post("/api/chat?stream=1", json=HI)

    records = _records(resp.content)
    assert [r.text for r in records[:-1]] == ["a", "b"]
    assert records[-1].is_terminal
    assert llm.consumed == 2


async def test_stream_fragment_with_terminator_text(client, llm):
    llm.deltas = ["[DONE]", "\n\nevent: done\n"]
    resp = await client.post("/api/chat?stream=1", json=HI)
    records = _records(resp.content)
    assert [r.text for r in records[:-1]] == ["[DONE]", "\n\nevent: done\n"]
    assert [r.is_terminal for r in records] == [False, False, True]


async def test_stream_midway_failure_sends_error_record(client, llm):
    llm.deltas = ["Hi", "never"]
    llm.error = RuntimeError("connection reset")
    llm.fail_after = 1

    resp = await client.post("/api/chat?stream=1", json=HI)

    assert resp.status_code == 200
    assert resp.text == 'data: "Hi"\n\nevent: error\ndata: "connection reset"\n\n'


async def test_stream_failure_before_first_delta(client, llm):
    llm.error = RuntimeError("")
    llm.fail_after = 0

    resp = await client.post("/api/chat?stream=1", json=HI)

    assert resp.status_code == 200
    assert resp.text == 'event: error\ndata: "LLM stream failed"\n\n'


async def test_health(client):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok"}
