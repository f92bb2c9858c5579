"""
Bridge Settings - Environment-driven configuration

Every knob of the bridge is read from the environment with a default that
matches production behavior, so a bare deployment only needs Redis and the
platform API location.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


@dataclass
class BridgeSettings:
    """Runtime configuration for the bridge and its collaborators"""

    # Redis (context cache and thread leases)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    context_cache_ttl: int = 1800

    # Comment windows fetched during reconciliation
    top_level_comment_limit: int = 20
    reply_comment_limit: int = 10

    # Agent bounds
    max_rounds: int = 5
    max_steps: int = 20
    stream_drain_timeout: Optional[float] = 120.0

    # Thread lease
    thread_lease_ttl: float = 300.0
    thread_lease_wait: float = 60.0

    # Models
    agent_model: str = "gpt-4o"
    title_model: str = "gpt-4o-mini"
    summary_model: str = "gpt-4o-mini"
    generation_timeout: float = 30.0

    # Platform API
    platform_api_url: str = "http://localhost:3003"
    platform_api_key: Optional[str] = None
    bridge_api_key: Optional[str] = None

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        """Build settings from environment variables"""
        drain_timeout = _env_float("STREAM_DRAIN_TIMEOUT", 120.0)

        return cls(
            redis_host=os.getenv("REDIS_HOST", "localhost"),
            redis_port=_env_int("REDIS_PORT", 6379),
            redis_password=os.getenv("REDIS_PASSWORD"),
            redis_db=_env_int("REDIS_DB", 0),
            context_cache_ttl=_env_int("CONTEXT_CACHE_TTL", 1800),
            top_level_comment_limit=_env_int("TOP_LEVEL_COMMENT_LIMIT", 20),
            reply_comment_limit=_env_int("REPLY_COMMENT_LIMIT", 10),
            max_rounds=_env_int("AGENT_MAX_ROUNDS", 5),
            max_steps=_env_int("AGENT_MAX_STEPS", 20),
            # 0 disables the timeout
            stream_drain_timeout=drain_timeout if drain_timeout > 0 else None,
            thread_lease_ttl=_env_float("THREAD_LEASE_TTL", 300.0),
            thread_lease_wait=_env_float("THREAD_LEASE_WAIT", 60.0),
            agent_model=os.getenv("AGENT_MODEL", "gpt-4o"),
            title_model=os.getenv("TITLE_MODEL", "gpt-4o-mini"),
            summary_model=os.getenv("SUMMARY_MODEL", "gpt-4o-mini"),
            generation_timeout=_env_float("GENERATION_TIMEOUT_SECONDS", 30.0),
            platform_api_url=os.getenv("PLATFORM_API_URL", "http://localhost:3003"),
            platform_api_key=os.getenv("PLATFORM_API_KEY"),
            bridge_api_key=os.getenv("BRIDGE_API_KEY"),
        )
