"""
Rolling summaries for long chat threads

Once enough turns pile up after the last summary, the new turns are folded
into the previous summary by the model and the result is stored on the
thread. Reading the window and writing the summary are not transactional:
two concurrent rolls on one thread may both write, the last write wins.
"""

import logging
from datetime import datetime
from typing import Optional

from agent_bridge.errors import NotFoundError
from agent_bridge.llm.text_generator import TextGenerator
from agent_bridge.memory.title_synthesizer import conversation_text
from agent_bridge.models.conversation import utcnow
from agent_bridge.stores.protocols import ChatLogStore

logger = logging.getLogger(__name__)

SUMMARY_THRESHOLD = 20
NO_PREVIOUS_SUMMARY = "No previous summary."

SUMMARY_INSTRUCTION = (
    "You maintain a running summary of a task conversation. "
    "Fold the new messages into the previous summary and return the updated summary. "
    "Keep decisions, commitments, key facts, names and open questions; "
    "drop greetings and small talk. Return only the summary text."
)


class SummaryRoller:
    """Decides when to regenerate a thread summary, and does it"""

    def __init__(
        self,
        generator: TextGenerator,
        chat_store: ChatLogStore,
        model: str = "gpt-4o-mini",
        threshold: int = SUMMARY_THRESHOLD,
    ):
        self.generator = generator
        self.chat_store = chat_store
        self.model = model
        self.threshold = threshold

    async def roll(
        self,
        chat_id: str,
        last_summary_at: Optional[datetime],
        last_summary: Optional[str] = None,
    ) -> Optional[str]:
        """
        Fold messages newer than last_summary_at into the summary

        Returns:
            The updated summary, or last_summary unchanged when too few
            messages arrived since

        Raises:
            GenerationError: the model call failed, nothing is written
        """
        new_messages = await self.chat_store.get_messages_since(chat_id, last_summary_at)

        if len(new_messages) <= self.threshold:
            return last_summary

        prompt = (
            f"Previous summary:\n{last_summary or NO_PREVIOUS_SUMMARY}\n\n"
            f"New messages:\n{conversation_text(new_messages)}"
        )
        result = await self.generator.generate_text(
            model=self.model,
            prompt=prompt,
            system=SUMMARY_INSTRUCTION,
            name="chat_summary",
        )
        summary = result.text.strip()

        await self.chat_store.update_chat_summary(chat_id, summary, utcnow())
        logger.info("Rolled summary for %s over %d new messages", chat_id, len(new_messages))
        return summary

    async def roll_thread(self, chat_id: str, team_id: str) -> Optional[str]:
        """Roll a persisted thread from its stored summary state"""
        chat = await self.chat_store.get_chat_by_id(chat_id, team_id)
        if chat is None:
            raise NotFoundError("Chat", chat_id)
        return await self.roll(chat_id, chat.last_summary_at, chat.summary)
