"""Registry of capabilities the routing agent can call by name"""

import inspect
import json
from typing import List, Dict, Any, Optional, Callable
from pydantic import BaseModel, Field

from agent_bridge.errors import ToolNotFoundError


class ToolFunction(BaseModel):
    """Tool function definition"""
    name: str
    description: str
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    handler: Optional[Callable] = None


class ToolManager:
    """Manage tools and function calling"""

    def __init__(self):
        self.tools: Dict[str, ToolFunction] = {}

    def register_tool(self, tool: ToolFunction):
        """Register a tool"""
        self.tools[tool.name] = tool

    def has_tools(self) -> bool:
        return bool(self.tools)

    def get_tools_for_llm(self) -> List[Dict[str, Any]]:
        """Get tools formatted for LLM function calling"""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                }
            }
            for tool in self.tools.values()
        ]

    async def execute_tool(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
    ) -> Any:
        """
        Execute a tool

        Raises:
            ToolNotFoundError: no tool (or no handler) registered under the name
        """
        if tool_name not in self.tools:
            raise ToolNotFoundError(f"Tool {tool_name} not found")

        tool = self.tools[tool_name]
        if not tool.handler:
            raise ToolNotFoundError(f"Tool {tool_name} has no handler")

        result = tool.handler(**arguments)
        if inspect.isawaitable(result):
            return await result
        return result

    @staticmethod
    def parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
        """Decode the JSON argument string a model produced"""
        if not raw:
            return {}
        arguments = json.loads(raw)
        if not isinstance(arguments, dict):
            raise ValueError("Tool arguments must be a JSON object")
        return arguments
