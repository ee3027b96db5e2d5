from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

from ..agents.models import AgentProfile
from ..session.models import Message
from .context_files import combine_context, load_context_files
from .policy import ContextPolicy, truncate_middle
from .system import render_system_prompt


def build_system_prompt(profile: AgentProfile, *, cwd: Path) -> str:
    """Template for the profile, plus its custom prompt and project context files."""
    parts = [render_system_prompt(profile.prompt, cwd=cwd).strip()]
    if profile.system_prompt.strip():
        parts.append(profile.system_prompt.strip())
    ctx = combine_context(load_context_files(cwd, profile.context_paths))
    if ctx:
        parts.append("# Project-specific context\nMake sure to follow the instructions in the context below.\n\n" + ctx)
    return "\n\n".join(parts)


def drop_dangling_tool_messages(msgs: list[Message]) -> list[Message]:
    """Drop tool messages not preceded by an assistant message with tool_calls."""
    cleaned: list[Message] = []
    for m in msgs:
        if m.role == "tool":
            prev = next((c for c in reversed(cleaned) if c.role != "tool"), None)
            if prev is None or prev.role != "assistant" or not prev.tool_calls:
                continue
        cleaned.append(m)
    return cleaned


def build_prompt_messages(
    *,
    system_prompt: str,
    history: list[Message],
    policy: ContextPolicy,
) -> list[dict[str, Any]]:
    """Build the message list sent to the model.

    - System prompt first (never persisted).
    - Only a rolling window of recent history, never starting on a tool result.
    - Overlong message contents are truncated head+tail.
    """
    msgs = drop_dangling_tool_messages([m for m in history if m.role != "system"])

    if len(msgs) > policy.max_messages:
        msgs = msgs[-policy.max_messages :]
        while msgs and msgs[0].role == "tool":
            msgs.pop(0)

    safe: list[Message] = []
    for m in msgs:
        if m.content is None:
            safe.append(m)
            continue
        limit = policy.max_message_chars
        if m.role == "tool":
            limit = min(limit, policy.max_tool_result_chars)
        if len(m.content) > limit:
            safe.append(dataclasses.replace(m, content=truncate_middle(m.content, limit)))
        else:
            safe.append(m)

    return [{"role": "system", "content": system_prompt}] + [m.to_openai() for m in safe]
