"""Chat service - relays one conversation turn to the upstream LLM.

Stateless: every request carries the whole conversation, and nothing is kept
between requests.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing

from app.core.sse import DONE_RECORD, format_delta, format_error
from app.schemas.chat import ChatMessage
from app.services.llm_service import (
    LLMService,
    load_persona_prompt,
    render_system_prompt,
)

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(self, llm: LLMService, persona: str = "professional"):
        self.llm = llm
        self.system_prompt = load_persona_prompt(persona)

    def build_conversation(self, messages: list[ChatMessage]) -> list[dict]:
        """Prepend the persona's system instruction to the caller's messages."""
        conversation = [m.model_dump() for m in messages]
        if not self.system_prompt:
            return conversation
        system = {"role": "system", "content": render_system_prompt(self.system_prompt)}
        return [system] + conversation

    async def reply(self, messages: list[ChatMessage]) -> str:
        """Batch mode: one completion, first choice text."""
        return await self.llm.complete(self.build_conversation(messages))

    async def stream_events(self, messages: list[ChatMessage]) -> AsyncGenerator[str, None]:
        """Streaming mode: yield event-stream records as upstream deltas arrive.

        Ends with exactly one terminal record, or one error record if the
        upstream fails. Fragments already sent are never retracted.
        """
        conversation = self.build_conversation(messages)
        sent = 0
        try:
            async with aclosing(self.llm.stream(conversation)) as events:
                async for delta in events:
                    if delta.content:
                        sent += 1
                        yield format_delta(delta.content)
                    if delta.finish_reason:
                        break
        except Exception as e:
            logger.exception("LLM stream failed after %d fragments", sent)
            yield format_error(str(e) or "LLM stream failed")
            return

        logger.info("LLM stream finished (%d fragments)", sent)
        yield DONE_RECORD
