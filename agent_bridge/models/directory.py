"""User, team, task and system identity records returned by the platform"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class UserRecord(_Record):
    """User row"""
    id: str
    full_name: Optional[str] = None
    locale: Optional[str] = None
    date_format: Optional[str] = None


class TeamRecord(_Record):
    """Team row"""
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    country_code: Optional[str] = None


class SystemUser(_Record):
    """Identity the agent posts replies as"""
    id: str
    name: str


class TaskLabel(_Record):
    id: str
    name: str


class TaskRecord(_Record):
    """Task row joined with its status, assignee, project and milestone names"""
    id: str
    title: str
    description: Optional[str] = None
    status: Optional[str] = None
    status_id: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    assignee_id: Optional[str] = None
    project: Optional[str] = None
    project_id: Optional[str] = None
    milestone: Optional[str] = None
    milestone_id: Optional[str] = None
    due_date: Optional[str] = None
    labels: List[TaskLabel] = []
