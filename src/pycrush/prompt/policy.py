from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ContextPolicy:
    """Knobs for keeping the prompt within a reasonable size."""

    # Maximum number of history messages sent to the model.
    max_messages: int = 200

    # Max characters for a single tool result kept in the session/prompt.
    max_tool_result_chars: int = 30000

    # Max characters for assistant/user messages (safety against huge pastes).
    max_message_chars: int = 50000


def truncate_middle(text: str, max_chars: int, *, marker: str = "... (truncated) ...") -> str:
    """Keep head and tail; errors tend to be at the end of long outputs."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    half = max(1, max_chars // 2)
    return text[:half] + "\n\n" + marker + "\n\n" + text[-half:]
