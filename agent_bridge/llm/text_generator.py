"""
Text Generator - Single-shot completions for titles and summaries

Wraps LiteLLM so every provider is reachable through one model string, and
turns provider errors and timeouts into GenerationError.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

import litellm

from agent_bridge.errors import GenerationError

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Generated text with token usage"""
    text: str
    usage: Dict[str, int] = field(default_factory=dict)


class TextGenerator:
    """Request/response text generation (no streaming)"""

    def __init__(self, tracer: Optional[Any] = None, timeout_seconds: float = 30.0):
        self.tracer = tracer
        self.timeout_seconds = timeout_seconds

    async def generate_text(
        self,
        model: str,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.2,
        name: str = "generate_text",
    ) -> GenerationResult:
        """
        Generate text for a prompt

        Args:
            model: LiteLLM model identifier
            prompt: User content
            system: Optional instruction
            temperature: Sampling temperature
            name: Span name used for tracing

        Raises:
            GenerationError: provider failure, timeout or empty response
        """
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                litellm.acompletion(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            self._trace(name, model, messages, error=f"timeout after {self.timeout_seconds}s", start_time=start_time)
            raise GenerationError(f"Generation timeout after {self.timeout_seconds}s") from e
        except Exception as e:
            self._trace(name, model, messages, error=str(e), start_time=start_time)
            raise GenerationError(f"Generation failed: {e}") from e

        text = response.choices[0].message.content if response.choices else None
        if not text:
            self._trace(name, model, messages, error="empty response", start_time=start_time)
            raise GenerationError("Generation returned no text")

        usage = self._usage(response)
        logger.debug("%s via %s used %s tokens", name, model, usage.get("total_tokens", 0))
        self._trace(name, model, messages, output=text, usage=usage, start_time=start_time)
        return GenerationResult(text=text, usage=usage)

    @staticmethod
    def _usage(response: Any) -> Dict[str, int]:
        usage = getattr(response, "usage", None)
        if not usage:
            return {}
        return {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "total_tokens": getattr(usage, "total_tokens", 0) or 0,
        }

    def _trace(
        self,
        name: str,
        model: str,
        messages: List[Dict[str, str]],
        start_time: float,
        output: Optional[str] = None,
        usage: Optional[Dict[str, int]] = None,
        error: Optional[str] = None,
    ):
        if not self.tracer:
            return
        self.tracer.trace_generation(
            name=name,
            model=model,
            prompt=messages,
            output=output,
            usage=usage,
            latency_ms=(time.time() - start_time) * 1000,
            error=error,
        )
