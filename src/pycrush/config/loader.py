from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from .models import AgentConfig, BehaviorConfig, RetryConfig
from ..errors import ConfigError
from ..tools.permissions import PermissionRule

APP_NAME = "pycrush"

logger = logging.getLogger(__name__)


def _candidate_paths(cwd: Path) -> list[Path]:
    # project-level (higher priority)
    return [
        cwd / ".pycrush.json",
        cwd / "pycrush.json",
        cwd / ".crush.json",
        cwd / "crush.json",
    ]


def _global_candidate_paths() -> list[Path]:
    cfg_dir = Path(user_config_dir(APP_NAME))
    return [
        cfg_dir / "pycrush.json",
        cfg_dir / "crush.json",
    ]


def _load_json(p: Path) -> dict[str, Any] | None:
    try:
        obj = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("ignoring unreadable config %s: %s", p, e)
        return None
    if isinstance(obj, dict):
        return obj
    logger.warning("ignoring config %s: top level must be an object", p)
    return None


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dicts(out[k], v)  # type: ignore
        else:
            out[k] = v
    return out


def _str_list(v: Any) -> list[str]:
    if not isinstance(v, list):
        return []
    return [x.strip() for x in v if isinstance(x, str) and x.strip()]


def load_behavior_config(
    *,
    cwd: Path,
    explicit_path: Path | None = None,
    research: bool = False,
    include_global: bool = True,
) -> BehaviorConfig:
    """Load behavior config.

    Merge order: global < project < explicit_path. ``research=True`` forces the
    research mode regardless of what the files say.
    """
    merged: dict[str, Any] = {}
    loaded_from: Path | None = None

    if include_global:
        for p in _global_candidate_paths():
            if p.exists() and p.is_file():
                obj = _load_json(p)
                if obj is not None:
                    merged = _merge_dicts(merged, obj)
                    loaded_from = p

    for p in _candidate_paths(cwd):
        if p.exists() and p.is_file():
            obj = _load_json(p)
            if obj is not None:
                merged = _merge_dicts(merged, obj)
                loaded_from = p
                break  # first match wins for project-level

    if explicit_path is not None:
        p = explicit_path.expanduser().resolve()
        if not p.is_file():
            raise ConfigError(f"Behavior config not found: {p}")
        obj = _load_json(p)
        if obj is None:
            raise ConfigError(f"Behavior config is not a JSON object: {p}")
        merged = _merge_dicts(merged, obj)
        loaded_from = p

    cfg = build_behavior_config(merged)
    cfg.loaded_from = loaded_from
    if research:
        cfg.mode = "research"
    return cfg


def build_behavior_config(merged: dict[str, Any]) -> BehaviorConfig:
    cfg = BehaviorConfig()

    # "options.mode" is the layout crush.json files use.
    opts = merged.get("options") if isinstance(merged.get("options"), dict) else {}
    mode = merged.get("mode", opts.get("mode"))
    if isinstance(mode, str) and mode.strip():
        cfg.mode = mode.strip()

    rt = merged.get("research_tools")
    if rt is not None:
        if rt not in {"coder", "task"}:
            raise ConfigError(f"research_tools must be 'coder' or 'task', got {rt!r}")
        cfg.research_tools = rt

    cfg.auto_approve = bool(merged.get("auto_approve", False))
    cfg.allowed_tools = _str_list(merged.get("allowed_tools"))
    cfg.disabled_tools = _str_list(merged.get("disabled_tools"))

    perms = merged.get("permissions", [])
    if isinstance(perms, list):
        for it in perms:
            r = PermissionRule.from_obj(it)
            if r is not None:
                cfg.permissions.append(r)

    agents = merged.get("agents", {})
    if isinstance(agents, dict):
        for agent_id, obj in agents.items():
            if not isinstance(agent_id, str):
                continue
            ac = AgentConfig.from_obj(agent_id, obj)
            if ac is None:
                raise ConfigError(f"Invalid agent config for '{agent_id}'")
            cfg.agents[agent_id] = ac

    cp = merged.get("context_paths")
    if isinstance(cp, list):
        cfg.context_paths = _str_list(cp)

    depth = merged.get("max_queue_depth")
    if depth is not None:
        if not isinstance(depth, int) or depth < 0:
            raise ConfigError("max_queue_depth must be a non-negative integer")
        cfg.max_queue_depth = depth

    buf = merged.get("event_buffer")
    if isinstance(buf, int) and buf > 0:
        cfg.event_buffer = buf

    ms = merged.get("max_steps")
    if isinstance(ms, int) and ms > 0:
        cfg.max_steps = ms

    retry = merged.get("retry")
    if isinstance(retry, dict):
        cfg.retry = RetryConfig(
            attempts=int(retry.get("attempts", cfg.retry.attempts)),
            backoff=float(retry.get("backoff", cfg.retry.backoff)),
        )

    return cfg
