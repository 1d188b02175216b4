"""Chat-related Pydantic schemas."""

from typing import Literal

from pydantic import BaseModel

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """One conversation entry. `content` grows while a reply is streaming."""
    role: Role
    content: str


class ChatRequest(BaseModel):
    """Body of POST /api/chat - the whole conversation, sent on every turn."""
    messages: list[ChatMessage]


class ChatReply(BaseModel):
    """Batch-mode response."""
    reply: str


class ChatError(BaseModel):
    error: str
