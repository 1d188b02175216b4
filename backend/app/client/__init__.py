"""Client side of the chat relay."""

from app.client.session import ChatRequestError, ChatSession

__all__ = ["ChatSession", "ChatRequestError"]
