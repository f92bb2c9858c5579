"""
Comment Thread Bridge - Turns a task comment mention into an agent reply

Flow for one incoming comment:
1. Mention check: the comment must contain "@{system user name}"
2. Task load: the task the comment was posted on must exist
3. History reconciliation: merge the task's persisted chat thread with the
   task's comments, persisting every comment turn not yet in the thread at
   its original timestamp
4. Invocation: run the routing agent with a comment-specific directive,
   the task details and its recent comments
5. Stream drain: read the agent stream to the end, capture the final message
6. Reply: post the last text of the final message as a reply comment

Nothing is retried. Any failure propagates to the activity pipeline that
called the bridge, and no reply is posted.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Set

from agent_bridge.cache.context_cache import ContextCache
from agent_bridge.config.settings import BridgeSettings
from agent_bridge.errors import NotFoundError
from agent_bridge.models.conversation import (
    AgentContext,
    Comment,
    ConversationContext,
    Message,
    RecentComment,
    thread_id_for_task,
    utcnow,
)
from agent_bridge.models.directory import SystemUser, TaskRecord
from agent_bridge.prompts.system_prompt import build_system_prompt, build_task_context
from agent_bridge.stores.protocols import (
    ActivityStore,
    AgentRuntime,
    ChatLogStore,
    SystemIdentity,
    TaskStore,
)
from agent_bridge.streaming.stream_drain import StreamCollector

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I could not process your message."

RECENT_COMMENT_LIMIT = 10

TASK_COMMENT_DIRECTIVE = """<task-comment-context>
This is NOT a chat conversation. You were mentioned in a comment on a task, and
your response will be posted as a reply comment on that task.
- Do not greet the user or sign off
- Do not restate the task title or description unless explicitly asked
- Answer the comment directly and stay focused on what was asked
- Keep the reply concise; use markdown only where it helps readability
</task-comment-context>"""


@dataclass
class PendingMessage:
    """A turn to persist, with the time it originally happened"""
    message: Message
    created_at: datetime


@dataclass
class Reconciliation:
    """Outcome of merging the chat thread with the task comments"""
    messages: List[Message]
    unsaved: List[PendingMessage]
    user_message: Message
    already_answered: bool
    comments: List[Comment]


class CommentThreadBridge:
    """Orchestrates one mention from detection to reply"""

    def __init__(
        self,
        identity: SystemIdentity,
        context_cache: ContextCache,
        chat_store: ChatLogStore,
        activity_store: ActivityStore,
        task_store: TaskStore,
        agent: AgentRuntime,
        lease,
        settings: Optional[BridgeSettings] = None,
        tracer=None,
    ):
        self.identity = identity
        self.context_cache = context_cache
        self.chat_store = chat_store
        self.activity_store = activity_store
        self.task_store = task_store
        self.agent = agent
        self.lease = lease
        self.settings = settings or BridgeSettings()
        self.tracer = tracer
        self.collector = StreamCollector(self.settings.stream_drain_timeout)

    async def handle_task_comment(
        self,
        task_id: str,
        team_id: str,
        user_id: str,
        comment_id: str,
        comment: str,
        created_at: Optional[datetime] = None,
        country: Optional[str] = None,
        city: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> Optional[Comment]:
        """
        Answer a task comment if it mentions the system user

        Returns:
            The posted reply comment, or None when the comment is not a
            mention or the mention was already answered

        Raises:
            NotFoundError: system user, user, team or task missing
            StreamDrainError: the agent stream failed or timed out
            ThreadBusyError: the task thread lease could not be acquired
        """
        system_user = await self.identity.get_system_user()
        if system_user is None:
            raise NotFoundError("System user")

        if not self.is_mention(comment, system_user):
            logger.debug("Comment %s does not mention %s, skipping", comment_id, system_user.name)
            return None

        chat_id = thread_id_for_task(task_id)
        trace = None
        if self.tracer:
            trace = self.tracer.start_trace(
                name="task_comment_mention",
                user_id=user_id,
                session_id=chat_id,
                metadata={"task_id": task_id, "team_id": team_id, "comment_id": comment_id},
            )

        try:
            async with self.lease.hold(chat_id):
                reply = await self._answer(
                    system_user=system_user,
                    chat_id=chat_id,
                    task_id=task_id,
                    team_id=team_id,
                    user_id=user_id,
                    comment_id=comment_id,
                    comment=comment,
                    created_at=created_at,
                    country=country,
                    city=city,
                    timezone=timezone,
                )
        except BaseException as e:
            if self.tracer:
                self.tracer.end_trace(trace, error=str(e) or type(e).__name__)
            raise

        if self.tracer:
            self.tracer.end_trace(trace, output=reply.text if reply else None)
        return reply

    @staticmethod
    def is_mention(comment: str, system_user: SystemUser) -> bool:
        """Literal substring check, so "@MimirBot2" also mentions "MimirBot" """
        return f"@{system_user.name}" in comment

    async def _answer(
        self,
        system_user: SystemUser,
        chat_id: str,
        task_id: str,
        team_id: str,
        user_id: str,
        comment_id: str,
        comment: str,
        created_at: Optional[datetime],
        country: Optional[str],
        city: Optional[str],
        timezone: Optional[str],
    ) -> Optional[Comment]:
        context, chat, task = await asyncio.gather(
            self.context_cache.get_context(
                user_id, team_id, country=country, city=city, timezone=timezone
            ),
            self.chat_store.get_chat_by_id(chat_id, team_id),
            self.task_store.get_task_by_id(task_id, team_id),
        )
        if task is None:
            raise NotFoundError("Task", task_id)
        previous_messages = chat.messages if chat else []

        reconciliation = await self.reconcile(
            previous_messages=previous_messages,
            task_id=task_id,
            team_id=team_id,
            comment_id=comment_id,
            comment=comment,
            created_at=created_at,
            system_user_id=system_user.id,
        )
        await self.persist(chat_id, team_id, user_id, reconciliation.unsaved)

        logger.info(
            "Reconciled %s: %d persisted, %d new",
            chat_id,
            len(previous_messages),
            len(reconciliation.unsaved),
        )

        if reconciliation.already_answered:
            logger.info("Comment %s already has a reply from %s, skipping", comment_id, system_user.name)
            return None

        agent_context = self.build_agent_context(
            context,
            chat_id,
            task=task,
            recent_comments=self.recent_comments(reconciliation.comments),
        )
        response_message = await self.collector.collect(
            lambda on_finish: self.agent.to_ui_message_stream(
                message=reconciliation.user_message,
                context=agent_context,
                max_rounds=self.settings.max_rounds,
                max_steps=self.settings.max_steps,
                on_finish=on_finish,
            )
        )

        body = self.reply_text(response_message)
        reply = await self.activity_store.create_task_comment(
            task_id=task_id,
            comment=body,
            reply_to=comment_id,
            user_id=system_user.id,
            team_id=team_id,
        )
        logger.info("Posted reply %s to comment %s on task %s", reply.id, comment_id, task_id)
        return reply

    async def reconcile(
        self,
        previous_messages: List[Message],
        task_id: str,
        team_id: str,
        comment_id: str,
        comment: str,
        created_at: Optional[datetime] = None,
        system_user_id: Optional[str] = None,
    ) -> Reconciliation:
        """
        Merge persisted thread messages with the task's comments

        The merge is a stable union keyed by message id: persisted messages
        keep their order, unseen comments are appended in fetch order and the
        incoming comment goes last. Every merged comment is a "user" turn,
        including earlier replies posted by the system user.
        """
        messages = list(previous_messages)
        known_ids: Set[str] = {message.id for message in messages}
        unsaved: List[PendingMessage] = []

        top_level = await self.activity_store.list_task_comments(
            group_id=task_id,
            team_id=team_id,
            limit=self.settings.top_level_comment_limit,
        )
        replies = await self.activity_store.list_task_comments(
            group_id=comment_id,
            team_id=team_id,
            limit=self.settings.reply_comment_limit,
        )

        fetched_at: Dict[str, datetime] = {}
        for old_comment in top_level + replies:
            fetched_at.setdefault(old_comment.id, old_comment.created_at)

            if old_comment.id == comment_id or old_comment.id in known_ids:
                continue
            if not old_comment.text:
                continue

            message = Message.from_text(old_comment.id, old_comment.text)
            messages.append(message)
            known_ids.add(old_comment.id)
            unsaved.append(PendingMessage(message=message, created_at=old_comment.created_at))

        user_message = Message.from_text(comment_id, comment)
        if comment_id not in known_ids:
            messages.append(user_message)
            unsaved.append(PendingMessage(
                message=user_message,
                created_at=fetched_at.get(comment_id) or created_at or utcnow(),
            ))

        already_answered = bool(system_user_id) and any(
            reply.user_id == system_user_id for reply in replies
        )

        return Reconciliation(
            messages=messages,
            unsaved=unsaved,
            user_message=user_message,
            already_answered=already_answered,
            comments=top_level + replies,
        )

    async def persist(
        self,
        chat_id: str,
        team_id: str,
        user_id: str,
        unsaved: List[PendingMessage],
    ):
        """Save reconciled turns at their original timestamps"""
        for pending in unsaved:
            await self.chat_store.save_chat_message(
                chat_id=chat_id,
                user_id=user_id,
                message=pending.message,
                role="user",
                created_at=pending.created_at,
                team_id=team_id,
            )

    @staticmethod
    def recent_comments(comments: List[Comment]) -> List[RecentComment]:
        """Last non-empty comments of the fetched windows, oldest first"""
        unique: Dict[str, Comment] = {}
        for fetched in comments:
            if fetched.text:
                unique.setdefault(fetched.id, fetched)
        ordered = sorted(unique.values(), key=lambda fetched: fetched.created_at)
        return [
            RecentComment(
                author=fetched.user_id or "Unknown",
                content=fetched.text,
                created_at=fetched.created_at.isoformat(),
            )
            for fetched in ordered[-RECENT_COMMENT_LIMIT:]
        ]

    @staticmethod
    def build_agent_context(
        context: ConversationContext,
        chat_id: str,
        task: Optional[TaskRecord] = None,
        recent_comments: Optional[List[RecentComment]] = None,
        now: Optional[datetime] = None,
    ) -> AgentContext:
        """Agent context for a reply that will be posted as a task comment"""
        now = now or utcnow()
        additional_context = TASK_COMMENT_DIRECTIVE
        if task:
            additional_context = f"{additional_context}\n\n{build_task_context(task, recent_comments)}"
        return AgentContext(
            user_id=context.user_id,
            team_id=context.team_id,
            chat_id=chat_id,
            full_name=context.full_name or "",
            team_name=context.team_name or "",
            team_description=context.team_description or "",
            locale=context.locale or "en-US",
            country=context.country,
            city=context.city,
            timezone=context.timezone or "UTC",
            current_date_time=now.isoformat(),
            system_prompt=build_system_prompt(context, now=now),
            additional_context=additional_context,
            integration_type="web",
            task=task,
            recent_comments=recent_comments or [],
        )

    @staticmethod
    def reply_text(response_message: Message) -> str:
        """Last text of the agent's answer, or the fixed fallback"""
        return response_message.last_text() or FALLBACK_REPLY
