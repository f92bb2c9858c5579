"""
Contracts of the external collaborators the bridge consumes

The relational store, activity pipeline, model provider and agent runtime all
live outside this service. The bridge only depends on these shapes; the
platform client implements the store contracts over HTTP and the tests use
in-memory fakes.
"""

from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from agent_bridge.models.conversation import AgentContext, ChatThread, Comment, Message
from agent_bridge.models.directory import SystemUser, TaskRecord, TeamRecord, UserRecord


class UserDirectory(Protocol):
    """Authoritative user and team lookup"""

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]: ...

    async def get_team_by_id(self, team_id: str) -> Optional[TeamRecord]: ...


class SystemIdentity(Protocol):
    """Lookup of the identity the agent acts as"""

    async def get_system_user(self) -> Optional[SystemUser]: ...


class ChatLogStore(Protocol):
    """Chat thread persistence"""

    async def get_chat_by_id(
        self, chat_id: str, team_id: Optional[str] = None
    ) -> Optional[ChatThread]: ...

    async def save_chat_message(
        self,
        chat_id: str,
        user_id: str,
        message: Message,
        role: str,
        created_at: datetime,
        team_id: Optional[str] = None,
    ) -> None: ...

    async def get_messages_since(
        self, chat_id: str, since: Optional[datetime]
    ) -> List[Message]: ...

    async def update_chat_summary(
        self, chat_id: str, summary: str, last_summary_at: datetime
    ) -> None: ...

    async def save_chat_title(self, chat_id: str, team_id: str, title: str) -> None: ...


class ActivityStore(Protocol):
    """Task comment activity records"""

    async def list_task_comments(
        self, group_id: str, team_id: str, limit: int
    ) -> List[Comment]: ...

    async def create_task_comment(
        self,
        task_id: str,
        comment: str,
        reply_to: Optional[str],
        user_id: str,
        team_id: str,
    ) -> Comment: ...


class TaskStore(Protocol):
    """Task lookup scoped to a team"""

    async def get_task_by_id(self, task_id: str, team_id: str) -> Optional[TaskRecord]: ...


class UIMessageStream(Protocol):
    """Agent output stream; must be drained to release the generation"""

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]: ...

    async def json(self) -> List[Dict[str, Any]]: ...


OnFinish = Callable[[Message], Union[None, Awaitable[None]]]


class AgentRuntime(Protocol):
    """Streaming, tool-using routing agent"""

    def to_ui_message_stream(
        self,
        message: Message,
        context: AgentContext,
        max_rounds: int,
        max_steps: int,
        on_finish: OnFinish,
    ) -> UIMessageStream: ...
