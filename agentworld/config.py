"""
Agent World Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Local Ollama server (used when an agent's provider is "ollama")
    OLLAMA_BASE_URL: str | None = os.getenv("OLLAMA_BASE_URL")

    # Storage Configuration
    DATA_PATH: Path = Path(os.getenv("AGENT_WORLD_DATA_PATH", "data/worlds"))

    # Conversation Configuration
    DEFAULT_TURN_LIMIT: int = int(os.getenv("AGENT_WORLD_TURN_LIMIT", "5"))
    # Number of memory entries sent to the model; 0 sends the full history
    MEMORY_WINDOW: int = int(os.getenv("AGENT_WORLD_MEMORY_WINDOW", "50"))
    STREAMING_ENABLED: bool = _env_flag("AGENT_WORLD_STREAMING", "true")
    # Name "New Chat" chats from their conversation once the world goes idle
    AUTO_TITLE_CHATS: bool = _env_flag("AGENT_WORLD_AUTO_TITLE", "false")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if values are unusable."""
        if cls.DEFAULT_TURN_LIMIT < 1:
            raise ValueError(
                "AGENT_WORLD_TURN_LIMIT must be a positive integer "
                f"(got {cls.DEFAULT_TURN_LIMIT})"
            )

        if cls.MEMORY_WINDOW < 0:
            raise ValueError(
                "AGENT_WORLD_MEMORY_WINDOW must be zero (full history) or positive "
                f"(got {cls.MEMORY_WINDOW})"
            )

        if cls.LLM_TIMEOUT_SECONDS <= 0:
            raise ValueError("LLM_TIMEOUT_SECONDS must be greater than zero")

        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For local models, set LLM_PROVIDER=ollama instead."
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Agent World Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  LLM Model: {cls.LLM_MODEL}",
            f"  Data Path: {cls.DATA_PATH}",
            f"  Turn Limit: {cls.DEFAULT_TURN_LIMIT}",
            f"  Memory Window: {cls.MEMORY_WINDOW or 'full history'}",
            f"  Streaming: {'on' if cls.STREAMING_ENABLED else 'off'}",
            f"  Auto Titles: {'on' if cls.AUTO_TITLE_CHATS else 'off'}",
        ]
        return "\n".join(lines)
