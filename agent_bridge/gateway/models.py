"""Pydantic models for API requests and responses"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from agent_bridge.models.conversation import CamelModel


class TaskCommentEvent(CamelModel):
    """Task comment created, as delivered by the activity pipeline"""
    task_id: str = Field(..., min_length=1)
    team_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    comment_id: str = Field(..., min_length=1)
    comment: str = Field(..., description="Comment text as written")
    created_at: Optional[datetime] = Field(None, description="When the comment was created")
    country: Optional[str] = None
    city: Optional[str] = None
    timezone: Optional[str] = Field(None, description="IANA timezone of the commenter")


class TaskCommentResult(BaseModel):
    """Outcome of a task comment hook"""
    handled: bool
    reply_id: Optional[str] = None


class TitleResponse(BaseModel):
    title: Optional[str] = None


class SummaryResponse(BaseModel):
    summary: Optional[str] = None
