"""
System Prompt Builder

Assembles the instruction string handed to the routing agent. The builder is
a pure function of its inputs: the current time is an explicit argument so
identical inputs always render identical prompts.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agent_bridge.models.conversation import ConversationContext, RecentComment
from agent_bridge.models.directory import TaskRecord

UNKNOWN = "unknown"


@dataclass(frozen=True)
class ForcedToolCall:
    """Capability the agent must call before answering"""
    tool_name: str
    tool_params: Dict[str, Any] = field(default_factory=dict)


def safe_value(value: Optional[str]) -> str:
    """Render a context value, never leaving it blank"""
    if value is None:
        return UNKNOWN
    value = str(value).strip()
    return value if value else UNKNOWN


def _resolve_timezone(name: Optional[str]) -> str:
    if not name or not name.strip():
        return "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return "UTC"
    return name


def _first_name(full_name: Optional[str]) -> Optional[str]:
    if not full_name or not full_name.strip():
        return None
    return full_name.split()[0]


def _base_prompt(context: ConversationContext, now: Optional[datetime]) -> str:
    user_timezone = _resolve_timezone(context.timezone)
    first_name = _first_name(context.full_name) or "there"

    lines = [
        "You are a helpful AI assistant for Mimir (Platform name), a task management platform.",
        "You help users with:",
        "- Task organization and prioritization",
        "- Project planning and tracking",
        "- Team collaboration and communication",
        "- General productivity advice",
        "",
        "IMPORTANT: You have access to tools that can retrieve real task data from the user's account.",
        "",
        "TOOL USAGE GUIDELINES:",
        "- Prefer showing actual data over generic responses",
        "- Don't ask for clarification if a tool can provide a reasonable default response",
        "- The user usually will send a bug or a feature description directly, ask about creating the task directly, mention the suggested title",
        "- When creating tasks, the titles should be short and descriptive, following this format: 'Short description of the task' (e.g. 'Add dark mode support')",
        "- When creating tasks, the descriptions should be detailed and provide all necessary context and use markdown formatting where appropriate",
        "",
        "RESPONSE CONTINUATION RULES:",
        "- For simple data questions: Provide the data and stop (don't repeat or elaborate)",
        "- Examples of when to STOP after data: \"What's my task completion rate?\", \"How many tasks are overdue?\"",
        "- Examples of when to CONTINUE after data: \"Do I have enough tasks to complete this week?\", \"Should I prioritize this task?\"",
        "",
        "RESPONSE GUIDELINES:",
        "- Provide clear, direct answers to user questions",
        "- When using tools, present the data in a natural, flowing explanation",
        "- Use headings for main sections but keep explanations conversational",
        "- Avoid generic introductory phrases like \"Got it! Let's dive into...\"",
        f"- When appropriate, use the user's first name ({first_name}) to personalize responses, sparingly",
        "- Maintain a warm, personal tone while staying professional",
        "",
        "MARKDOWN FORMATTING GUIDELINES:",
        "- When tools provide structured data (tables, lists, etc.), use appropriate markdown formatting",
        "- When using images always use the following format: ![description](image_url)",
        "",
        "Be helpful, professional, and conversational in your responses.",
        "",
    ]

    if now is not None:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local_now = now.astimezone(ZoneInfo(user_timezone))
        lines.append(f"Current date and time: {local_now.isoformat()}")

    lines.extend([
        f"Team ID: {safe_value(context.team_id)}",
        f"Team name: {safe_value(context.team_name)}",
        f"Team description: {safe_value(context.team_description)}",
        f"Company registered in: {safe_value(context.country_code)}",
        f"User ID: {safe_value(context.user_id)}",
        f"User full name: {safe_value(context.full_name)}",
        f"User current city: {safe_value(context.city)}",
        f"User current country: {safe_value(context.country)}",
        f"User locale: {safe_value(context.locale)} (IMPORTANT: ALWAYS respond in this language no matter what)",
        f"User date format: {safe_value(context.date_format)}",
        f"User local timezone: {user_timezone}",
    ])

    return "\n".join(lines)


def build_system_prompt(
    context: ConversationContext,
    forced_tool_call: Optional[ForcedToolCall] = None,
    web_search: bool = False,
    now: Optional[datetime] = None,
) -> str:
    """
    Build the agent system prompt

    Args:
        context: Conversation context snapshot
        forced_tool_call: Capability the agent must invoke first
        web_search: Require a web search before answering
        now: Current time, rendered in the user's timezone when given

    Returns:
        The instruction string
    """
    prompt = _base_prompt(context, now)

    if forced_tool_call:
        if forced_tool_call.tool_params:
            params = json.dumps(forced_tool_call.tool_params, sort_keys=True)
            call = f"with these parameters: {params}"
        else:
            call = "using its default parameters"

        prompt += (
            "\n\nINSTRUCTIONS:\n"
            f"1. Call the {forced_tool_call.tool_name} tool {call}\n"
            "2. Present the results naturally and conversationally\n"
            "3. Focus on explaining what the data represents and means\n"
            "4. Reference visual elements when available"
        )

    if web_search:
        prompt += (
            "\n\nIMPORTANT: The user has specifically requested web search for this query. "
            "You MUST use the web_search tool to find the most current and accurate information "
            "before providing your response. Do not provide generic answers - always search the "
            "web first when this flag is enabled."
        )

    return prompt


def _with_id(value: Optional[str], fallback: str, id_value: Optional[str]) -> str:
    return f"{value or fallback} (ID: {id_value or 'N/A'})"


def build_task_context(
    task: TaskRecord,
    recent_comments: Optional[List[RecentComment]] = None,
) -> str:
    """Render the task a comment was posted on, with its recent discussion"""
    labels = ", ".join(label.name for label in task.labels) or "None"
    if recent_comments:
        comments = "\n".join(
            f"- {comment.author} ({comment.created_at}): {comment.content}"
            for comment in recent_comments
        )
    else:
        comments = "No recent comments."

    lines = [
        "<current-task>",
        f"ID: {task.id}",
        f"Title: {task.title}",
        f"Description: {task.description or 'No description'}",
        f"Status: {_with_id(task.status, 'Unknown', task.status_id)}",
        f"Priority: {task.priority or 'Not set'}",
        f"Assignee: {_with_id(task.assignee, 'Unassigned', task.assignee_id)}",
        f"Project: {_with_id(task.project, 'No project', task.project_id)}",
        f"Milestone: {_with_id(task.milestone, 'No milestone', task.milestone_id)}",
        f"Due Date: {task.due_date or 'Not set'}",
        f"Labels: {labels}",
        "</current-task>",
        "",
        "<recent-comments>",
        comments,
        "</recent-comments>",
        "",
        "<task-rules>",
        "- All actions relate to THIS task unless the comment says otherwise",
        f'- When updating this task, use the task ID "{task.id}"; no need to search for it',
        "- Call the matching get tool first for valid status, assignee, project, milestone or label IDs",
        "- Never expose raw IDs to the user",
        "</task-rules>",
    ]
    return "\n".join(lines)
