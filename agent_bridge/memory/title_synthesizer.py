"""Chat title synthesis"""

import logging
from typing import Optional, List

from agent_bridge.errors import GenerationError, NotFoundError
from agent_bridge.llm.text_generator import TextGenerator
from agent_bridge.models.conversation import Message, UNTITLED_CHAT
from agent_bridge.stores.protocols import ChatLogStore

logger = logging.getLogger(__name__)

TITLE_WINDOW = 3
MIN_CONTEXT_LENGTH = 20
FALLBACK_TITLE_LENGTH = 50

TITLE_INSTRUCTION = (
    "Generate a short, descriptive title of 3-5 words for the conversation below. "
    "Use natural language a user would use. "
    "Return only the title, with no quotes, punctuation at the end, or extra text."
)


def conversation_text(messages: List[Message]) -> str:
    """Every text part rendered as "{role}: {text}", one per line"""
    lines = []
    for message in messages:
        for text in message.text_parts():
            lines.append(f"{message.role}: {text}")
    return "\n".join(lines)


def plain_text(messages: List[Message]) -> str:
    """First text part of each message, space separated"""
    texts = []
    for message in messages:
        parts = message.text_parts()
        texts.append(parts[0] if parts else "")
    return " ".join(texts).strip()


class TitleSynthesizer:
    """Decides whether and how to title a conversation"""

    def __init__(
        self,
        generator: TextGenerator,
        chat_store: Optional[ChatLogStore] = None,
        model: str = "gpt-4o-mini",
    ):
        self.generator = generator
        self.chat_store = chat_store
        self.model = model

    async def synthesize(
        self,
        messages: List[Message],
        current_title: Optional[str] = None,
    ) -> Optional[str]:
        """
        Produce a title for the latest turns

        Returns:
            The new title, UNTITLED_CHAT when there is too little to go on, or
            None when nothing should be written (a title is already set, or
            generation failed with no text to fall back on)
        """
        # Never overwrite a user-set or previously generated title
        if current_title and current_title != UNTITLED_CHAT:
            return None

        recent = messages[-TITLE_WINDOW:]
        combined = conversation_text(recent)

        if len(combined) <= MIN_CONTEXT_LENGTH:
            return UNTITLED_CHAT

        try:
            result = await self.generator.generate_text(
                model=self.model,
                prompt=combined,
                system=TITLE_INSTRUCTION,
                name="chat_title",
            )
            title = result.text.strip()
            if title:
                return title
            logger.warning("Title generation returned blank text, using fallback")
        except GenerationError as e:
            logger.warning("Failed to generate chat title: %s", e)

        fallback = plain_text(recent)
        if fallback:
            return fallback[:FALLBACK_TITLE_LENGTH]
        return None

    async def refresh_title(self, chat_id: str, team_id: str) -> Optional[str]:
        """Synthesize and store a title for a persisted chat"""
        if self.chat_store is None:
            raise RuntimeError("refresh_title needs a chat store")

        chat = await self.chat_store.get_chat_by_id(chat_id, team_id)
        if chat is None:
            raise NotFoundError("Chat", chat_id)

        title = await self.synthesize(chat.messages, chat.title)
        if title is None:
            return None

        await self.chat_store.save_chat_title(chat_id, team_id, title)
        logger.info("Chat %s titled %r", chat_id, title)
        return title
