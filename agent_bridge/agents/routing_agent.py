"""
Routing Agent - Streaming, tool-using agent over LiteLLM

Each round streams one completion. Tool calls requested by the model are
executed by name through the ToolManager and fed back for the next round.
The loop is finite by construction: at most max_rounds model calls and at
most max_steps tool executions, and the last round is offered no tools so
the model has to answer in text.

The result is exposed as a UI message stream of chunks:
- {"type": "text-delta", "delta": ...}
- {"type": "tool-input-available", "toolCallId", "toolName", "input"}
- {"type": "tool-output-available", "toolCallId", "output"}
- {"type": "finish", "messageId"}
on_finish receives the assembled assistant Message before the finish chunk.
"""

import inspect
import json
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

import litellm

from agent_bridge.errors import ToolNotFoundError
from agent_bridge.models.conversation import (
    AgentContext,
    Message,
    TextPart,
    ToolInvocationPart,
)
from agent_bridge.stores.protocols import ChatLogStore, OnFinish
from agent_bridge.tools.tool_manager import ToolManager

logger = logging.getLogger(__name__)


class LiteLLMUIMessageStream:
    """Async iterator over UI chunks, drained with json()"""

    def __init__(self, chunks: AsyncIterator[Dict[str, Any]]):
        self._chunks = chunks

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        return await self._chunks.__anext__()

    async def json(self) -> List[Dict[str, Any]]:
        """Read the stream to exhaustion"""
        return [chunk async for chunk in self]

    async def aclose(self):
        """Stop the generation and release the provider stream"""
        await self._chunks.aclose()


class LiteLLMRoutingAgent:
    """Default agent runtime for the comment bridge"""

    def __init__(
        self,
        tool_manager: Optional[ToolManager] = None,
        chat_store: Optional[ChatLogStore] = None,
        model: str = "gpt-4o",
        temperature: float = 0.3,
        history_limit: int = 30,
    ):
        self.tool_manager = tool_manager or ToolManager()
        self.chat_store = chat_store
        self.model = model
        self.temperature = temperature
        self.history_limit = history_limit

    def to_ui_message_stream(
        self,
        message: Message,
        context: AgentContext,
        max_rounds: int,
        max_steps: int,
        on_finish: OnFinish,
    ) -> LiteLLMUIMessageStream:
        return LiteLLMUIMessageStream(
            self._run(message, context, max_rounds, max_steps, on_finish)
        )

    async def _run(
        self,
        message: Message,
        context: AgentContext,
        max_rounds: int,
        max_steps: int,
        on_finish: OnFinish,
    ) -> AsyncIterator[Dict[str, Any]]:
        messages = await self._build_messages(message, context)
        tools = self.tool_manager.get_tools_for_llm() if self.tool_manager.has_tools() else None
        response_id = f"msg-{uuid.uuid4().hex}"
        parts: List[Any] = []
        steps = 0

        for round_index in range(max_rounds):
            last_round = round_index == max_rounds - 1
            params: Dict[str, Any] = {
                "model": self.model,
                "messages": messages,
                "temperature": self.temperature,
                "stream": True,
            }
            if tools and steps < max_steps and not last_round:
                params["tools"] = tools

            response = await litellm.acompletion(**params)

            text_chunks: List[str] = []
            tool_calls: Dict[int, Dict[str, str]] = {}
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta

                content = getattr(delta, "content", None)
                if content:
                    text_chunks.append(content)
                    yield {"type": "text-delta", "id": response_id, "delta": content}

                for call in getattr(delta, "tool_calls", None) or []:
                    slot = tool_calls.setdefault(
                        call.index or 0, {"id": "", "name": "", "arguments": ""}
                    )
                    if call.id:
                        slot["id"] = call.id
                    if call.function is not None:
                        if call.function.name:
                            slot["name"] = call.function.name
                        if call.function.arguments:
                            slot["arguments"] += call.function.arguments

            text = "".join(text_chunks)
            if text:
                parts.append(TextPart(text=text))

            if not tool_calls:
                break

            ordered_calls = [tool_calls[index] for index in sorted(tool_calls)]
            for call in ordered_calls:
                if not call["id"]:
                    call["id"] = f"call-{uuid.uuid4().hex[:12]}"

            messages.append({
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": call["arguments"] or "{}"},
                    }
                    for call in ordered_calls
                ],
            })

            for call in ordered_calls:
                yield {
                    "type": "tool-input-available",
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "input": call["arguments"],
                }

                if steps >= max_steps:
                    arguments: Dict[str, Any] = {}
                    result: Any = {"error": f"Step limit of {max_steps} reached"}
                else:
                    steps += 1
                    arguments, result = await self._execute(call["name"], call["arguments"])

                yield {
                    "type": "tool-output-available",
                    "toolCallId": call["id"],
                    "output": result,
                }
                parts.append(ToolInvocationPart(
                    tool_call_id=call["id"],
                    tool_name=call["name"],
                    args=arguments,
                    result=result,
                ))
                messages.append({
                    "role": "tool",
                    "tool_call_id": call["id"],
                    "content": json.dumps(result, default=str),
                })

        response_message = Message(id=response_id, role="assistant", parts=parts)
        outcome = on_finish(response_message)
        if inspect.isawaitable(outcome):
            await outcome

        yield {"type": "finish", "messageId": response_id}

    async def _build_messages(
        self,
        message: Message,
        context: AgentContext,
    ) -> List[Dict[str, Any]]:
        system = context.system_prompt
        if context.additional_context:
            system = f"{system}\n\n{context.additional_context}"
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]

        if self.chat_store is not None:
            chat = await self.chat_store.get_chat_by_id(context.chat_id, context.team_id)
            if chat is not None:
                if chat.summary:
                    messages.append({
                        "role": "system",
                        "content": f"Summary of the earlier conversation: {chat.summary}",
                    })
                history = [m for m in chat.messages if m.id != message.id and m.role != "system"]
                for previous in history[-self.history_limit:]:
                    text = "\n".join(previous.text_parts())
                    if text:
                        messages.append({"role": previous.role, "content": text})

        messages.append({"role": message.role, "content": "\n".join(message.text_parts())})
        return messages

    async def _execute(self, tool_name: str, raw_arguments: str):
        try:
            arguments = ToolManager.parse_arguments(raw_arguments)
        except ValueError as e:
            return {}, {"error": f"Invalid arguments for {tool_name}: {e}"}

        try:
            result = await self.tool_manager.execute_tool(tool_name, arguments)
        except ToolNotFoundError as e:
            return arguments, {"error": str(e)}
        except Exception as e:
            logger.warning("Tool %s failed: %s", tool_name, e)
            return arguments, {"error": f"Tool {tool_name} failed: {e}"}

        return arguments, result
