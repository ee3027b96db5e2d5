from __future__ import annotations

import json
from pathlib import Path

import pytest

from pycrush.agents.registry import TASK_TOOLS, AgentRegistry
from pycrush.config.loader import load_behavior_config
from pycrush.errors import ConfigError


def _write(p: Path, obj) -> Path:
    p.write_text(json.dumps(obj), encoding="utf-8")
    return p


@pytest.mark.parametrize(
    "file_mode, research, expected",
    [
        (None, False, "coder"),
        (None, True, "research"),
        ("research", False, "research"),
        ("coder", True, "research"),
        ("coder", False, "coder"),
    ],
)
def test_research_flag_and_config_mode(tmp_path, file_mode, research, expected):
    if file_mode is not None:
        _write(tmp_path / "crush.json", {"options": {"mode": file_mode}})
    cfg = load_behavior_config(cwd=tmp_path, research=research, include_global=False)
    assert cfg.mode == expected


def test_project_file_precedence_and_keys(tmp_path):
    _write(tmp_path / ".pycrush.json", {
        "mode": "task",
        "auto_approve": True,
        "allowed_tools": ["bash:bash"],
        "disabled_tools": ["write"],
        "permissions": [{"match": "bash", "decision": "deny"}, {"match": "x", "decision": "nope"}],
        "max_queue_depth": 4,
        "event_buffer": 32,
        "max_steps": 7,
        "retry": {"attempts": 5, "backoff": 0.1},
        "context_paths": ["NOTES.md"],
    })
    _write(tmp_path / "crush.json", {"mode": "research"})

    cfg = load_behavior_config(cwd=tmp_path, include_global=False)

    assert cfg.mode == "task"
    assert cfg.loaded_from == tmp_path / ".pycrush.json"
    assert cfg.auto_approve
    assert cfg.allowed_tools == ["bash:bash"]
    assert cfg.disabled_tools == ["write"]
    assert [(r.match, r.decision) for r in cfg.permissions] == [("bash", "deny")]
    assert (cfg.max_queue_depth, cfg.event_buffer, cfg.max_steps) == (4, 32, 7)
    assert (cfg.retry.attempts, cfg.retry.backoff) == (5, 0.1)
    assert cfg.context_paths == ["NOTES.md"]


def test_explicit_file_overrides_project(tmp_path):
    _write(tmp_path / "pycrush.json", {"mode": "task", "max_steps": 3})
    explicit = _write(tmp_path / "other.json", {"mode": "coder"})
    cfg = load_behavior_config(cwd=tmp_path, explicit_path=explicit, include_global=False)
    assert cfg.mode == "coder"
    assert cfg.max_steps == 3


def test_missing_explicit_file_is_an_error(tmp_path):
    with pytest.raises(ConfigError):
        load_behavior_config(cwd=tmp_path, explicit_path=tmp_path / "nope.json", include_global=False)


@pytest.mark.parametrize("obj", [{"research_tools": "all"}, {"max_queue_depth": -1}, {"agents": {"x": {"model": "huge"}}}])
def test_invalid_values_are_rejected(tmp_path, obj):
    _write(tmp_path / "pycrush.json", obj)
    with pytest.raises(ConfigError):
        load_behavior_config(cwd=tmp_path, include_global=False)


def test_research_tool_set_follows_config(tmp_path):
    cfg = load_behavior_config(cwd=tmp_path, research=True, include_global=False)
    research = AgentRegistry.from_behavior(cfg).for_mode()
    assert research.id == "research"
    assert research.allowed_tools == TASK_TOOLS + ("journal",)

    _write(tmp_path / "pycrush.json", {"research_tools": "coder"})
    cfg = load_behavior_config(cwd=tmp_path, research=True, include_global=False)
    assert AgentRegistry.from_behavior(cfg).for_mode().allowed_tools is None


def test_agent_overrides_and_custom_agents(tmp_path):
    _write(tmp_path / "pycrush.json", {
        "agents": {
            "task": {"allowed_tools": ["grep"], "max_steps": 4, "permission_overrides": {"read": "ask", "bogus": "x"}},
            "reviewer": {"name": "Reviewer", "model": "small", "allowed_tools": ["view"]},
            "research": {"disabled": True},
        }
    })
    reg = AgentRegistry.from_behavior(load_behavior_config(cwd=tmp_path, include_global=False))

    task = reg.get("task")
    assert task.allowed_tools == ("grep",)
    assert task.max_steps == 4
    assert task.permission_overrides == {"edit": "deny", "bash": "deny", "read": "ask"}
    reviewer = reg.get("reviewer")
    assert (reviewer.name, reviewer.model, reviewer.restricted) == ("Reviewer", "small", True)
    with pytest.raises(ConfigError):
        reg.get("research")
    with pytest.raises(ConfigError):
        reg.get("ghost")
