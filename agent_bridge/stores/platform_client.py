"""
Platform Client - The platform's internal API as the bridge's stores

Implements UserDirectory, SystemIdentity, ChatLogStore, ActivityStore and
TaskStore over HTTP. Payloads are camelCase JSON and map onto the pydantic models.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

import httpx

from agent_bridge.errors import PlatformError
from agent_bridge.models.conversation import ChatThread, Comment, Message
from agent_bridge.models.directory import SystemUser, TaskRecord, TeamRecord, UserRecord

logger = logging.getLogger(__name__)


class PlatformClient:
    """Async client for the platform's internal REST API"""

    def __init__(
        self,
        base_url: str = "http://localhost:3003",
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        allow_missing: bool = False,
        **kwargs,
    ) -> Optional[Any]:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PlatformError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404 and allow_missing:
            return None
        if response.status_code >= 400:
            raise PlatformError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Directory

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        data = await self._request("GET", f"/internal/users/{user_id}", allow_missing=True)
        return UserRecord.model_validate(data) if data else None

    async def get_team_by_id(self, team_id: str) -> Optional[TeamRecord]:
        data = await self._request("GET", f"/internal/teams/{team_id}", allow_missing=True)
        return TeamRecord.model_validate(data) if data else None

    async def get_system_user(self) -> Optional[SystemUser]:
        data = await self._request("GET", "/internal/system-user", allow_missing=True)
        return SystemUser.model_validate(data) if data else None

    # Chat log

    async def get_chat_by_id(
        self,
        chat_id: str,
        team_id: Optional[str] = None,
    ) -> Optional[ChatThread]:
        params = {"teamId": team_id} if team_id else None
        data = await self._request(
            "GET", f"/internal/chats/{chat_id}", allow_missing=True, params=params
        )
        return ChatThread.model_validate(data) if data else None

    async def save_chat_message(
        self,
        chat_id: str,
        user_id: str,
        message: Message,
        role: str,
        created_at: datetime,
        team_id: Optional[str] = None,
    ):
        """Upsert a message by id at its original timestamp"""
        payload: Dict[str, Any] = {
            "userId": user_id,
            "role": role,
            "createdAt": created_at.isoformat(),
            "message": message.model_dump(mode="json", by_alias=True, exclude_none=True),
        }
        if team_id:
            payload["teamId"] = team_id
        await self._request("PUT", f"/internal/chats/{chat_id}/messages/{message.id}", json=payload)

    async def get_messages_since(
        self,
        chat_id: str,
        since: Optional[datetime],
    ) -> List[Message]:
        params = {"since": since.isoformat()} if since else None
        data = await self._request("GET", f"/internal/chats/{chat_id}/messages", params=params)
        return [Message.model_validate(item) for item in data or []]

    async def update_chat_summary(
        self,
        chat_id: str,
        summary: str,
        last_summary_at: datetime,
    ):
        await self._request(
            "PATCH",
            f"/internal/chats/{chat_id}",
            json={"summary": summary, "lastSummaryAt": last_summary_at.isoformat()},
        )

    async def save_chat_title(self, chat_id: str, team_id: str, title: str):
        await self._request(
            "PATCH",
            f"/internal/chats/{chat_id}",
            json={"teamId": team_id, "title": title},
        )

    # Tasks

    async def get_task_by_id(self, task_id: str, team_id: str) -> Optional[TaskRecord]:
        """Task with its status, assignee, project, milestone and labels"""
        data = await self._request(
            "GET", f"/internal/tasks/{task_id}", allow_missing=True, params={"teamId": team_id}
        )
        return TaskRecord.model_validate(data) if data else None

    # Activity

    async def list_task_comments(
        self,
        group_id: str,
        team_id: str,
        limit: int,
    ) -> List[Comment]:
        """Comment activities of a group, oldest first"""
        data = await self._request(
            "GET",
            "/internal/activities",
            params={
                "groupId": group_id,
                "teamId": team_id,
                "type": "task_comment",
                "limit": limit,
            },
        )
        comments = [Comment.model_validate(item) for item in data or []]
        return sorted(comments, key=lambda comment: comment.created_at)

    async def create_task_comment(
        self,
        task_id: str,
        comment: str,
        reply_to: Optional[str],
        user_id: str,
        team_id: str,
    ) -> Comment:
        payload = {
            "comment": comment,
            "replyTo": reply_to,
            "userId": user_id,
            "teamId": team_id,
        }
        data = await self._request("POST", f"/internal/tasks/{task_id}/comments", json=payload)
        if not data:
            raise PlatformError(f"Comment creation on task {task_id} returned no body")
        logger.debug("Created comment %s on task %s", data.get("id"), task_id)
        return Comment.model_validate(data)
