"""
Configuration settings for the Workflow Execution Engine.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "FlowExec"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Execution Engine
    MAX_NODE_ITERATIONS: int = 100  # Hard ceiling per node, per execution
    NODE_TIMEOUT: float = 300  # Seconds, agent/tool calls
    CHECKPOINT_TTL: Optional[float] = None  # Seconds, None waits forever

    # Execution State Store
    STATE_DIR: Optional[str] = None  # In-memory only when unset

    # Progress streaming
    EVENT_BUFFER_SIZE: int = 500
    EVENT_RETENTION: float = 60  # Seconds a finished stream stays replayable
    SSE_KEEPALIVE: float = 15

    # LLM
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    DEFAULT_LLM_PROVIDER: str = "openai"
    DEFAULT_MODEL: str = "gpt-4o-mini"
    AGENT_MAX_TOOL_ROUNDS: int = 10  # Model calls per agent node when tools are offered

    # Demo workflows
    REGISTER_SAMPLE_WORKFLOWS: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
