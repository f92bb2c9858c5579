"""In-memory stand-ins for Redis, the platform stores and the model runtime"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from agent_bridge.bridge.comment_thread import CommentThreadBridge
from agent_bridge.bridge.thread_lease import LocalThreadLease
from agent_bridge.cache.context_cache import ContextCache
from agent_bridge.config.settings import BridgeSettings
from agent_bridge.errors import GenerationError
from agent_bridge.llm.text_generator import GenerationResult
from agent_bridge.models.conversation import (
    ChatThread,
    Comment,
    CommentMetadata,
    Message,
    TextPart,
)
from agent_bridge.models.directory import SystemUser, TaskLabel, TaskRecord, TeamRecord, UserRecord

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


class FakeRedis:
    """Dict-backed async Redis with expiry on a controllable clock"""

    def __init__(self, fail_writes: bool = False, fail_reads: bool = False):
        self.data: Dict[str, Any] = {}
        self.expires: Dict[str, float] = {}
        self.now = 0.0
        self.fail_writes = fail_writes
        self.fail_reads = fail_reads
        self.closed = False

    def advance(self, seconds: float):
        self.now += seconds

    async def get(self, key: str):
        if self.fail_reads:
            raise ConnectionError("redis down")
        if key in self.expires and self.expires[key] <= self.now:
            self.data.pop(key, None)
            self.expires.pop(key, None)
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str):
        if self.fail_writes:
            raise ConnectionError("redis read-only")
        self.data[key] = value
        self.expires[key] = self.now + ttl

    def ttl_of(self, key: str) -> float:
        return self.expires[key] - self.now

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


class FakeDirectory:
    def __init__(self):
        self.users: Dict[str, UserRecord] = {
            "user-1": UserRecord(
                id="user-1", full_name="Ada Lovelace", locale="en-GB", date_format="dd/MM/yyyy"
            ),
        }
        self.teams: Dict[str, TeamRecord] = {
            "team-1": TeamRecord(
                id="team-1", name="Analytical", description="Engines", country_code="GB"
            ),
        }
        self.user_lookups = 0
        self.team_lookups = 0

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        self.user_lookups += 1
        return self.users.get(user_id)

    async def get_team_by_id(self, team_id: str) -> Optional[TeamRecord]:
        self.team_lookups += 1
        return self.teams.get(team_id)


class FakeIdentity:
    def __init__(self, system_user: Optional[SystemUser] = None):
        self.system_user = system_user

    async def get_system_user(self) -> Optional[SystemUser]:
        return self.system_user


class FakeChatStore:
    """Chat log keyed by message id, reloaded in creation order"""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.chats: Dict[str, Dict[str, Any]] = {}
        self.writes: List[str] = []

    def seed(self, chat_id: str, message: Message, created_at: datetime, team_id: str = "team-1"):
        self.chats.setdefault(chat_id, {"team_id": team_id})
        self.rows.setdefault(chat_id, {})[message.id] = {
            "message": message,
            "created_at": created_at,
        }

    def ordered(self, chat_id: str) -> List[Dict[str, Any]]:
        rows = self.rows.get(chat_id, {}).values()
        return sorted(rows, key=lambda row: row["created_at"])

    async def get_chat_by_id(self, chat_id: str, team_id: Optional[str] = None) -> Optional[ChatThread]:
        if chat_id not in self.chats:
            return None
        chat = self.chats[chat_id]
        return ChatThread(
            id=chat_id,
            team_id=chat.get("team_id"),
            messages=[row["message"] for row in self.ordered(chat_id)],
            title=chat.get("title"),
            summary=chat.get("summary"),
            last_summary_at=chat.get("last_summary_at"),
        )

    async def save_chat_message(
        self,
        chat_id: str,
        user_id: str,
        message: Message,
        role: str,
        created_at: datetime,
        team_id: Optional[str] = None,
    ):
        self.writes.append(f"save:{message.id}")
        self.chats.setdefault(chat_id, {"team_id": team_id})
        rows = self.rows.setdefault(chat_id, {})
        rows.setdefault(message.id, {"message": message, "created_at": created_at, "role": role})

    async def get_messages_since(self, chat_id: str, since: Optional[datetime]) -> List[Message]:
        return [
            row["message"] for row in self.ordered(chat_id)
            if since is None or row["created_at"] > since
        ]

    async def update_chat_summary(self, chat_id: str, summary: str, last_summary_at: datetime):
        self.writes.append(f"summary:{chat_id}")
        chat = self.chats.setdefault(chat_id, {})
        chat["summary"] = summary
        chat["last_summary_at"] = last_summary_at

    async def save_chat_title(self, chat_id: str, team_id: str, title: str):
        self.writes.append(f"title:{chat_id}")
        self.chats.setdefault(chat_id, {"team_id": team_id})["title"] = title


class FakeActivityStore:
    def __init__(self):
        self.comments: List[Comment] = []
        self.created: List[Comment] = []
        self.list_calls: List[Dict[str, Any]] = []

    def add(self, comment_id: str, group_id: str, text: str, created_at: datetime,
            user_id: str = "user-1", team_id: str = "team-1") -> Comment:
        comment = Comment(
            id=comment_id,
            group_id=group_id,
            team_id=team_id,
            user_id=user_id,
            metadata=CommentMetadata(comment=text),
            created_at=created_at,
        )
        self.comments.append(comment)
        return comment

    async def list_task_comments(self, group_id: str, team_id: str, limit: int) -> List[Comment]:
        self.list_calls.append({"group_id": group_id, "team_id": team_id, "limit": limit})
        matching = [
            comment for comment in self.comments
            if comment.group_id == group_id and comment.team_id == team_id
        ]
        matching.sort(key=lambda comment: comment.created_at)
        return matching[:limit]

    async def create_task_comment(
        self,
        task_id: str,
        comment: str,
        reply_to: Optional[str],
        user_id: str,
        team_id: str,
    ) -> Comment:
        reply = Comment(
            id=f"reply-{len(self.created) + 1}",
            group_id=reply_to or task_id,
            team_id=team_id,
            user_id=user_id,
            metadata=CommentMetadata(comment=comment),
        )
        self.created.append(reply)
        self.comments.append(reply)
        return reply


class FakeTaskStore:
    def __init__(self):
        self.tasks: Dict[str, TaskRecord] = {
            "task-42": TaskRecord(
                id="task-42",
                title="Ship the billing page",
                description="Final QA before launch",
                status="In Progress",
                status_id="status-2",
                priority="high",
                assignee="Ada Lovelace",
                assignee_id="user-1",
                labels=[TaskLabel(id="label-1", name="launch")],
            ),
        }
        self.lookups: List[Dict[str, str]] = []

    async def get_task_by_id(self, task_id: str, team_id: str) -> Optional[TaskRecord]:
        self.lookups.append({"task_id": task_id, "team_id": team_id})
        return self.tasks.get(task_id)


class FakeStream:
    """UI message stream double with controllable finish behavior"""

    def __init__(
        self,
        on_finish,
        final_message: Message,
        finish_after_json: bool = False,
        error: Optional[Exception] = None,
        hang: bool = False,
    ):
        self.on_finish = on_finish
        self.final_message = final_message
        self.finish_after_json = finish_after_json
        self.error = error
        self.hang = hang
        self.drained = False
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        raise StopAsyncIteration

    async def json(self):
        if self.hang:
            await asyncio.sleep(3600)
        if self.error:
            raise self.error
        chunks = [{"type": "finish", "messageId": self.final_message.id}]
        if self.finish_after_json:
            asyncio.get_running_loop().call_later(0.05, self.on_finish, self.final_message)
        else:
            self.on_finish(self.final_message)
        self.drained = True
        return chunks

    async def aclose(self):
        self.closed = True


class FakeRuntime:
    """Agent runtime double answering with a fixed message"""

    def __init__(self, chat_store: Optional[FakeChatStore] = None, **stream_options):
        self.final_message = Message(
            id="msg-answer", role="assistant", parts=[TextPart(text="Here is the answer.")]
        )
        self.chat_store = chat_store
        self.stream_options = stream_options
        self.calls: List[Dict[str, Any]] = []
        self.streams: List[FakeStream] = []

    def to_ui_message_stream(self, message, context, max_rounds, max_steps, on_finish):
        self.calls.append({
            "message": message,
            "context": context,
            "max_rounds": max_rounds,
            "max_steps": max_steps,
            "persisted": list(self.chat_store.writes) if self.chat_store else [],
        })
        stream = FakeStream(on_finish, self.final_message, **self.stream_options)
        self.streams.append(stream)
        return stream


class FakeGenerator:
    """TextGenerator double returning queued texts or raising"""

    def __init__(self, text: str = "Generated text", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def generate_text(self, model, prompt, system=None, temperature=0.2, name="generate_text"):
        self.calls.append({"model": model, "prompt": prompt, "system": system, "name": name})
        if self.error:
            raise self.error
        return GenerationResult(text=self.text, usage={"total_tokens": 10})


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def chat_store():
    return FakeChatStore()


@pytest.fixture
def activity_store():
    return FakeActivityStore()


@pytest.fixture
def task_store():
    return FakeTaskStore()


@pytest.fixture
def system_user():
    return SystemUser(id="system-1", name="Mimir")


@pytest.fixture
def runtime(chat_store):
    return FakeRuntime(chat_store)


@pytest.fixture
def settings():
    return BridgeSettings(stream_drain_timeout=2.0)


@pytest.fixture
def make_bridge(directory, chat_store, activity_store, task_store, system_user, runtime, settings):
    """Build a bridge over the fakes; keyword arguments replace collaborators"""

    def build(**overrides) -> CommentThreadBridge:
        components = {
            "identity": FakeIdentity(system_user),
            "context_cache": ContextCache(directory, client=FakeRedis()),
            "chat_store": chat_store,
            "activity_store": activity_store,
            "task_store": task_store,
            "agent": runtime,
            "lease": LocalThreadLease(),
            "settings": settings,
        }
        components.update(overrides)
        return CommentThreadBridge(**components)

    return build


@pytest.fixture
def failing_generator():
    return FakeGenerator(error=GenerationError("provider unavailable"))
