"""Conversation, message and comment models"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agent_bridge.models.directory import TaskRecord


UNTITLED_CHAT = "Untitled chat"


def thread_id_for_task(task_id: str) -> str:
    """Synthetic chat id shared by every comment-triggered turn on a task"""
    return f"task-{task_id}-thread"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model speaking camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TextPart(CamelModel):
    """Plain text content"""
    type: Literal["text"] = "text"
    text: str


class ToolInvocationPart(CamelModel):
    """A capability call made by the agent"""
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None
    state: str = "result"


class DataPart(CamelModel):
    """Structured payload attached to a message"""
    type: Literal["data"] = "data"
    data: Any = None


class UnknownPart(BaseModel):
    """Any other part type, kept verbatim so messages round-trip"""
    model_config = ConfigDict(extra="allow")
    type: str


MessagePart = Annotated[
    Union[TextPart, ToolInvocationPart, DataPart, UnknownPart],
    Field(union_mode="left_to_right"),
]


class Message(CamelModel):
    """Single conversational turn"""
    id: str
    role: Literal["user", "assistant", "system"]
    parts: List[MessagePart] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_text(cls, id: str, text: str, role: str = "user") -> "Message":
        return cls(id=id, role=role, parts=[TextPart(text=text)])

    def text_parts(self) -> List[str]:
        """Text of every text part, in order"""
        return [part.text for part in self.parts if isinstance(part, TextPart)]

    def last_text(self) -> Optional[str]:
        """Text of the last non-blank text part"""
        for part in reversed(self.parts):
            if isinstance(part, TextPart) and part.text.strip():
                return part.text
        return None


class ChatThread(CamelModel):
    """Persisted conversation container"""
    id: str
    team_id: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)
    title: Optional[str] = None
    summary: Optional[str] = None
    last_summary_at: Optional[datetime] = None


class CommentMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")
    comment: Optional[str] = None


class Comment(CamelModel):
    """Task comment activity record, owned by the activity store"""
    id: str
    group_id: str
    team_id: str
    user_id: Optional[str] = None
    type: str = "task_comment"
    metadata: CommentMetadata = Field(default_factory=CommentMetadata)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def text(self) -> str:
        return self.metadata.comment or ""


class RecentComment(CamelModel):
    """A task comment as the agent sees it"""
    author: str
    content: str
    created_at: str


class ConversationContext(CamelModel):
    """
    Per-(user, team) conversational context snapshot

    Immutable: a changed user or team record is picked up when the cached
    snapshot expires, never by updating it in place.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    team_id: str
    full_name: Optional[str] = None
    locale: Optional[str] = None
    date_format: Optional[str] = None
    team_name: Optional[str] = None
    team_description: Optional[str] = None
    country_code: Optional[str] = None

    # Request scoped, never cached
    country: Optional[str] = None
    city: Optional[str] = None
    timezone: Optional[str] = None

    def with_request_scope(
        self,
        country: Optional[str] = None,
        city: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> "ConversationContext":
        """Copy carrying the request-scoped location fields"""
        return self.model_copy(
            update={"country": country, "city": city, "timezone": timezone}
        )


class AgentContext(CamelModel):
    """Context handed to the routing agent for one invocation"""
    user_id: str
    team_id: str
    chat_id: str
    full_name: str = ""
    team_name: str = ""
    team_description: str = ""
    locale: str = "en-US"
    country: Optional[str] = None
    city: Optional[str] = None
    timezone: str = "UTC"
    current_date_time: str
    system_prompt: str
    additional_context: str = ""
    integration_type: str = "web"
    task: Optional[TaskRecord] = None
    recent_comments: List[RecentComment] = Field(default_factory=list)
