"""Tests for the platform API client"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from agent_bridge.errors import PlatformError
from agent_bridge.models.conversation import Message
from agent_bridge.stores.platform_client import PlatformClient


def make_client(handler, api_key="platform-key"):
    return PlatformClient(
        base_url="http://platform.test",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_get_user_sends_api_key_and_parses_camel_case():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("X-API-Key")
        return httpx.Response(200, json={
            "id": "user-1",
            "fullName": "Ada Lovelace",
            "locale": "en-GB",
            "dateFormat": "dd/MM/yyyy",
            "avatarUrl": "ignored",
        })

    client = make_client(handler)
    user = await client.get_user_by_id("user-1")
    await client.close()

    assert seen == {"path": "/internal/users/user-1", "key": "platform-key"}
    assert user.full_name == "Ada Lovelace"
    assert user.date_format == "dd/MM/yyyy"


@pytest.mark.asyncio
async def test_missing_resources_return_none():
    client = make_client(lambda request: httpx.Response(404, json={"error": "not found"}))

    assert await client.get_user_by_id("ghost") is None
    assert await client.get_team_by_id("ghost") is None
    assert await client.get_system_user() is None
    assert await client.get_chat_by_id("task-1-thread", "team-1") is None
    assert await client.get_task_by_id("task-1", "team-1") is None


@pytest.mark.asyncio
async def test_server_errors_raise_platform_error():
    client = make_client(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(PlatformError) as exc_info:
        await client.get_team_by_id("team-1")

    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_list_not_found_is_an_error():
    client = make_client(lambda request: httpx.Response(404))

    with pytest.raises(PlatformError):
        await client.list_task_comments("task-1", "team-1", 20)


@pytest.mark.asyncio
async def test_transport_failure_raises_platform_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)

    with pytest.raises(PlatformError):
        await client.get_system_user()


@pytest.mark.asyncio
async def test_chat_thread_parsing():
    def handler(request: httpx.Request):
        assert request.url.params["teamId"] == "team-1"
        return httpx.Response(200, json={
            "id": "task-1-thread",
            "teamId": "team-1",
            "title": "Launch",
            "lastSummaryAt": "2024-05-01T09:00:00Z",
            "messages": [
                {"id": "c-1", "role": "user", "parts": [{"type": "text", "text": "hello"}]},
                {
                    "id": "a-1",
                    "role": "assistant",
                    "parts": [
                        {"type": "tool-invocation", "toolCallId": "call-1", "toolName": "get_tasks", "args": {}},
                        {"type": "step-start"},
                        {"type": "text", "text": "done"},
                    ],
                },
            ],
        })

    client = make_client(handler)
    chat = await client.get_chat_by_id("task-1-thread", "team-1")

    assert chat.title == "Launch"
    assert chat.last_summary_at == datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
    assert chat.messages[0].text_parts() == ["hello"]
    assert chat.messages[1].parts[1].type == "step-start"
    assert chat.messages[1].last_text() == "done"


@pytest.mark.asyncio
async def test_save_chat_message_payload():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    client = make_client(handler)
    created_at = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    await client.save_chat_message(
        chat_id="task-1-thread",
        user_id="user-1",
        message=Message.from_text("c-1", "hello"),
        role="user",
        created_at=created_at,
        team_id="team-1",
    )

    assert seen["method"] == "PUT"
    assert seen["path"] == "/internal/chats/task-1-thread/messages/c-1"
    assert seen["body"]["createdAt"] == created_at.isoformat()
    assert seen["body"]["teamId"] == "team-1"
    assert seen["body"]["message"] == {
        "id": "c-1",
        "role": "user",
        "parts": [{"type": "text", "text": "hello"}],
    }


@pytest.mark.asyncio
async def test_list_task_comments_sorted_oldest_first():
    def handler(request: httpx.Request):
        assert request.url.params["groupId"] == "task-1"
        assert request.url.params["type"] == "task_comment"
        assert request.url.params["limit"] == "20"
        return httpx.Response(200, json=[
            {
                "id": "c-2", "groupId": "task-1", "teamId": "team-1", "userId": "user-1",
                "metadata": {"comment": "second"}, "createdAt": "2024-05-01T10:00:00Z",
            },
            {
                "id": "c-1", "groupId": "task-1", "teamId": "team-1", "userId": "user-2",
                "metadata": {"comment": "first", "mentions": ["Mimir"]}, "createdAt": "2024-05-01T09:00:00Z",
            },
        ])

    client = make_client(handler)
    comments = await client.list_task_comments("task-1", "team-1", 20)

    assert [comment.id for comment in comments] == ["c-1", "c-2"]
    assert comments[0].text == "first"


@pytest.mark.asyncio
async def test_get_task_parses_joined_names_and_labels():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["team"] = request.url.params.get("teamId")
        return httpx.Response(200, json={
            "id": "task-1",
            "title": "Ship the billing page",
            "statusId": "status-2",
            "status": "In Progress",
            "assignee": "Ada Lovelace",
            "dueDate": "2024-05-10",
            "labels": [{"id": "label-1", "name": "launch"}],
        })

    client = make_client(handler)
    task = await client.get_task_by_id("task-1", "team-1")
    await client.close()

    assert seen == {"path": "/internal/tasks/task-1", "team": "team-1"}
    assert task.title == "Ship the billing page"
    assert task.status_id == "status-2"
    assert task.due_date == "2024-05-10"
    assert [label.name for label in task.labels] == ["launch"]
    assert task.project is None


@pytest.mark.asyncio
async def test_create_task_comment():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={
            "id": "reply-1",
            "groupId": "c-1",
            "teamId": "team-1",
            "userId": "system-1",
            "metadata": {"comment": "Here you go"},
            "createdAt": "2024-05-01T10:00:00Z",
        })

    client = make_client(handler)
    reply = await client.create_task_comment("task-1", "Here you go", "c-1", "system-1", "team-1")

    assert seen["path"] == "/internal/tasks/task-1/comments"
    assert seen["body"] == {
        "comment": "Here you go",
        "replyTo": "c-1",
        "userId": "system-1",
        "teamId": "team-1",
    }
    assert reply.id == "reply-1"
    assert reply.text == "Here you go"


@pytest.mark.asyncio
async def test_summary_and_title_updates():
    requests = []

    def handler(request: httpx.Request):
        requests.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={})

    client = make_client(handler)
    await client.update_chat_summary("chat-1", "Summary", datetime(2024, 5, 1, tzinfo=timezone.utc))
    await client.save_chat_title("chat-1", "team-1", "Title")

    assert requests[0] == (
        "PATCH", "/internal/chats/chat-1",
        {"summary": "Summary", "lastSummaryAt": "2024-05-01T00:00:00+00:00"},
    )
    assert requests[1] == ("PATCH", "/internal/chats/chat-1", {"teamId": "team-1", "title": "Title"})
