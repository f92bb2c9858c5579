"""
LangFuse Tracer - Observability for bridge runs and generations

This module integrates LangFuse for:
- Bridge run tracing (one trace per handled mention)
- Title and summary generation spans with usage
- Error tracking

Tracing never raises: a tracing failure is logged and the traced work goes on.
"""

import logging
import os
from typing import Optional, Dict, Any

from langfuse import Langfuse

logger = logging.getLogger(__name__)


class LangFuseTracer:
    """
    LangFuse tracer for observability

    Disabled unless LANGFUSE_SECRET_KEY and LANGFUSE_PUBLIC_KEY are set.
    """

    def __init__(self):
        self.secret_key = os.getenv("LANGFUSE_SECRET_KEY")
        self.public_key = os.getenv("LANGFUSE_PUBLIC_KEY")
        self.host = os.getenv("LANGFUSE_HOST", "http://localhost:3000")
        self.client: Optional[Langfuse] = None
        self.enabled = bool(self.secret_key and self.public_key)

    async def initialize(self):
        """Initialize LangFuse client"""
        if not self.enabled:
            logger.info("LangFuse not configured. Tracing disabled.")
            return

        try:
            self.client = Langfuse(
                secret_key=self.secret_key,
                public_key=self.public_key,
                host=self.host,
            )
        except Exception as e:
            logger.warning("LangFuse initialization failed: %s", e)
            self.enabled = False

    async def shutdown(self):
        """Flush pending events"""
        if self.client:
            try:
                self.client.flush()
            except Exception as e:
                logger.warning("LangFuse flush failed: %s", e)

    def start_trace(
        self,
        name: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """
        Start a new trace

        Returns:
            Root span or None if LangFuse is disabled
        """
        if not self.enabled or not self.client:
            return None

        try:
            span = self.client.start_span(name=name, metadata=metadata or {})
            span.update_trace(user_id=user_id, session_id=session_id)
            return span
        except Exception as e:
            logger.warning("Failed to start trace: %s", e)
            return None

    def end_trace(
        self,
        span: Optional[Any],
        output: Optional[Any] = None,
        error: Optional[str] = None,
    ):
        """Close a trace opened with start_trace"""
        if span is None:
            return

        try:
            if error:
                span.update(level="ERROR", status_message=error)
            elif output is not None:
                span.update(output=output)
            span.end()
            self.client.flush()
        except Exception as e:
            logger.warning("Failed to end trace: %s", e)

    def trace_generation(
        self,
        name: str,
        model: str,
        prompt: Any,
        output: Optional[str] = None,
        usage: Optional[Dict[str, int]] = None,
        latency_ms: float = 0.0,
        error: Optional[str] = None,
        parent: Optional[Any] = None,
    ):
        """Record a single text generation"""
        if not self.enabled or not self.client:
            return

        try:
            owner = parent if parent is not None else self.client
            generation = owner.start_generation(name=name, model=model, input=prompt)

            update: Dict[str, Any] = {"metadata": {"latency_ms": latency_ms}}
            if output is not None:
                update["output"] = output
            if usage:
                update["usage_details"] = {
                    "input": usage.get("prompt_tokens", 0),
                    "output": usage.get("completion_tokens", 0),
                    "total": usage.get("total_tokens", 0),
                }
            if error:
                update["level"] = "ERROR"
                update["status_message"] = error

            generation.update(**update)
            generation.end()
            self.client.flush()
        except Exception as e:
            logger.warning("Failed to trace generation: %s", e)
