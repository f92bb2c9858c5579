"""
Agent Bridge - Main FastAPI Application

This module exposes the bridge to the activity pipeline: a hook for task
comments, plus title and summary maintenance for chat threads.
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Header, Request
from fastapi.responses import JSONResponse

from agent_bridge.agents.routing_agent import LiteLLMRoutingAgent
from agent_bridge.bridge.comment_thread import CommentThreadBridge
from agent_bridge.bridge.thread_lease import LocalThreadLease, RedisThreadLease
from agent_bridge.cache.context_cache import ContextCache
from agent_bridge.config.settings import BridgeSettings
from agent_bridge.errors import BridgeError, NotFoundError, ThreadBusyError
from agent_bridge.gateway.models import (
    SummaryResponse,
    TaskCommentEvent,
    TaskCommentResult,
    TitleResponse,
)
from agent_bridge.llm.text_generator import TextGenerator
from agent_bridge.memory.summary_roller import SummaryRoller
from agent_bridge.memory.title_synthesizer import TitleSynthesizer
from agent_bridge.observability.logging_config import configure_logging
from agent_bridge.observability.tracer import LangFuseTracer
from agent_bridge.stores.platform_client import PlatformClient
from agent_bridge.tools.tool_manager import ToolManager

configure_logging()

# Initialize components
settings = BridgeSettings.from_env()
platform = PlatformClient(settings.platform_api_url, settings.platform_api_key)
tracer = LangFuseTracer()
cache = ContextCache(
    directory=platform,
    default_ttl=settings.context_cache_ttl,
    redis_url=settings.redis_url,
    password=settings.redis_password,
)
lease = RedisThreadLease(ttl=settings.thread_lease_ttl, wait=settings.thread_lease_wait)
tool_manager = ToolManager()
agent = LiteLLMRoutingAgent(
    tool_manager=tool_manager,
    chat_store=platform,
    model=settings.agent_model,
)
generator = TextGenerator(tracer=tracer, timeout_seconds=settings.generation_timeout)
title_synthesizer = TitleSynthesizer(generator, chat_store=platform, model=settings.title_model)
summary_roller = SummaryRoller(generator, chat_store=platform, model=settings.summary_model)
bridge = CommentThreadBridge(
    identity=platform,
    context_cache=cache,
    chat_store=platform,
    activity_store=platform,
    task_store=platform,
    agent=agent,
    lease=lease,
    settings=settings,
    tracer=tracer,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    await cache.connect()
    await tracer.initialize()
    if cache.client:
        lease.client = cache.client
    else:
        bridge.lease = LocalThreadLease()
    yield
    # Shutdown
    await cache.disconnect()
    await tracer.shutdown()
    await platform.close()


app = FastAPI(
    title="Agent Bridge",
    description="Answers task comment mentions with the routing agent",
    version="0.1.0",
    lifespan=lifespan,
)


def get_bridge() -> CommentThreadBridge:
    return bridge


def get_title_synthesizer() -> TitleSynthesizer:
    return title_synthesizer


def get_summary_roller() -> SummaryRoller:
    return summary_roller


def get_context_cache() -> ContextCache:
    return cache


async def verify_api_key(api_key: Optional[str] = Header(None, alias="X-API-Key")):
    """Hooks are open when BRIDGE_API_KEY is unset"""
    expected_key = settings.bridge_api_key
    if expected_key and api_key != expected_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError):
    status_code = 502
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ThreadBusyError):
        status_code = 409
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@app.get("/health")
async def health_check(context_cache: ContextCache = Depends(get_context_cache)):
    """Health check endpoint"""
    cache_status = await context_cache.health_check()
    return {
        "status": "healthy",
        "cache": "connected" if cache_status else "disconnected",
        "version": "0.1.0",
    }


@app.get("/metrics")
async def get_metrics(context_cache: ContextCache = Depends(get_context_cache)):
    """Context cache statistics"""
    return {"cache": await context_cache.get_stats()}


@app.post(
    "/v1/hooks/task-comments",
    response_model=TaskCommentResult,
    dependencies=[Depends(verify_api_key)],
)
async def task_comment_hook(
    event: TaskCommentEvent,
    comment_bridge: CommentThreadBridge = Depends(get_bridge),
):
    """
    Handle a created task comment

    Returns handled=false when the comment does not mention the agent or the
    mention was already answered.
    """
    reply = await comment_bridge.handle_task_comment(
        task_id=event.task_id,
        team_id=event.team_id,
        user_id=event.user_id,
        comment_id=event.comment_id,
        comment=event.comment,
        created_at=event.created_at,
        country=event.country,
        city=event.city,
        timezone=event.timezone,
    )
    return TaskCommentResult(handled=reply is not None, reply_id=reply.id if reply else None)


@app.post(
    "/v1/chats/{chat_id}/title",
    response_model=TitleResponse,
    dependencies=[Depends(verify_api_key)],
)
async def refresh_chat_title(
    chat_id: str,
    team_id: str,
    synthesizer: TitleSynthesizer = Depends(get_title_synthesizer),
):
    """Title a chat if it has none yet"""
    title = await synthesizer.refresh_title(chat_id, team_id)
    return TitleResponse(title=title)


@app.post(
    "/v1/chats/{chat_id}/summary",
    response_model=SummaryResponse,
    dependencies=[Depends(verify_api_key)],
)
async def roll_chat_summary(
    chat_id: str,
    team_id: str,
    roller: SummaryRoller = Depends(get_summary_roller),
):
    """Fold recent messages into the chat summary once enough piled up"""
    summary = await roller.roll_thread(chat_id, team_id)
    return SummaryResponse(summary=summary)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agent_bridge.gateway.main:app",
        host=os.getenv("GATEWAY_HOST", "0.0.0.0"),
        port=int(os.getenv("GATEWAY_PORT", "8000")),
    )
