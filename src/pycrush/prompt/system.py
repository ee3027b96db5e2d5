from __future__ import annotations

import datetime
import importlib.resources
import platform
from pathlib import Path

from ..errors import ConfigError

TEMPLATE_IDS = ("coder", "task", "research")


def load_template(name: str) -> str:
    try:
        return (
            importlib.resources.files("pycrush.prompt")
            .joinpath("templates")
            .joinpath(f"{name}.md")
            .read_text(encoding="utf-8")
        )
    except FileNotFoundError:
        raise ConfigError(f"Unknown prompt template: {name}") from None


def initialize_prompt() -> str:
    """Prompt used by ``pycrush init`` to write a CRUSH.md for the project."""
    return load_template("initialize")


def _is_git_repo(cwd: Path) -> bool:
    for p in (cwd, *cwd.parents):
        if (p / ".git").exists():
            return True
    return False


def render(template: str, values: dict[str, str]) -> str:
    """Replace ``{{key}}`` placeholders; unknown placeholders are left as-is."""
    text = template
    for k, v in values.items():
        text = text.replace("{{" + k + "}}", v)
    return text


def render_system_prompt(name: str, *, cwd: Path, today: datetime.date | None = None) -> str:
    values = {
        "working_dir": str(cwd),
        "is_git_repo": "yes" if _is_git_repo(cwd) else "no",
        "platform": platform.system().lower(),
        "date": (today or datetime.date.today()).strftime("%m/%d/%Y"),
    }
    return render(load_template(name), values)
