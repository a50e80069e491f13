"""
Runtime configuration loaded from the environment (prefix ``CONVO_``) or a .env file.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service and orchestration settings"""

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["json", "console"] = Field(default="json", description="structlog renderer")
    service_name: str = Field(default="convo-agent", description="Service name bound to every log line")

    # Model
    model: str = Field(default="gpt-4o", description="Chat model name, also used to pick the tokenizer")
    stream: bool = Field(default=False, description="Stream model text to the user as it is produced")
    enable_feedback_loop: bool = Field(default=False, description="Ask the channel to show feedback controls")
    max_input_tokens: int = Field(default=2048, ge=1, description="Prompt budget per model call")
    max_tokens: Optional[int] = Field(default=None, description="Completion token limit per model call")
    temperature: Optional[float] = Field(default=None, description="Sampling temperature")
    max_rounds: int = Field(default=25, ge=1, description="Model rounds allowed in one turn")
    log_requests: bool = Field(default=False, description="Log rendered prompts and model responses")

    # Tracing
    langfuse_enabled: bool = Field(default=False, description="Send turn and tool spans to Langfuse")
    langfuse_public_key: Optional[str] = Field(default=None, description="Langfuse public key")
    langfuse_secret_key: Optional[str] = Field(default=None, description="Langfuse secret key")
    langfuse_host: str = Field(default="https://cloud.langfuse.com", description="Langfuse host")

    # Server
    api_host: str = Field(default="0.0.0.0", description="WebSocket server host")
    api_port: int = Field(default=8000, description="WebSocket server port")

    model_config = SettingsConfigDict(
        env_prefix="CONVO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings instance"""
    return Settings()
