"""Logging utilities for agent worlds.

Provides color-coded console output to distinguish bus activity, LLM calls,
errors and lifecycle events, plus opt-in category debug logging.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Bus dispatch and routing decisions
    YELLOW = "\033[93m"    # LLM calls (streaming, generation)
    RED = "\033[91m"       # Errors and retries
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


# Markers for operation types (color-blind accessible)
LOG_TAG_BUS = "[•]"      # Deterministic routing
LOG_TAG_LLM = "[AI]"     # LLM call
LOG_TAG_ERROR = "[!]"    # Error/retry
LOG_TAG_SUCCESS = "[✓]"  # Success
LOG_TAG_INFO = "[i]"     # Information


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if AGENT_WORLD_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("AGENT_WORLD_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def debug_enabled(category: str) -> bool:
    """Return True when debug output is enabled for ``category``.

    ``DEBUG_<CATEGORY>=1`` enables a single category; ``AGENT_WORLD_DEBUG``
    accepts ``all`` or a comma separated list of categories.
    """
    flag = os.getenv(f"DEBUG_{category.upper()}", "")
    if flag.lower() in ("1", "true", "yes"):
        return True

    selected = os.getenv("AGENT_WORLD_DEBUG", "")
    if not selected:
        return False
    names = {part.strip().lower() for part in selected.split(",") if part.strip()}
    return "all" in names or category.lower() in names


def log_bus(message: str) -> None:
    """Log a routing/bus operation (blue)."""
    print(colored(f"{LOG_TAG_BUS} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log an LLM operation (yellow)."""
    print(colored(f"{LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or retry (red)."""
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))


def log_debug(category: str, message: str) -> None:
    """Log a debug line for ``category`` when that category is enabled."""
    if debug_enabled(category):
        print(colored(f"  [DEBUG_{category.upper()}] {message}", Color.CYAN))


def preview(text: str, limit: int = 80) -> str:
    """Single-line preview of ``text`` for log output."""
    flat = " ".join(text.split())
    if len(flat) > limit:
        return flat[: limit - 3] + "..."
    return flat
