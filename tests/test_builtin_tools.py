from __future__ import annotations

import shutil
from datetime import datetime

import pytest

from pycrush.errors import ToolError
from pycrush.tools.base import ToolContext
from pycrush.tools.builtin_tools.agent_tool import AgentTool
from pycrush.tools.builtin_tools.bash_tool import BashTool, command_names
from pycrush.tools.builtin_tools.glob_tool import GlobTool
from pycrush.tools.builtin_tools.grep_tool import GrepTool
from pycrush.tools.builtin_tools.journal_tool import JournalTool, format_entry
from pycrush.tools.builtin_tools.ls_tool import LsTool
from pycrush.tools.builtin_tools.view_tool import ViewTool
from pycrush.tools.builtin_tools.write_tool import WriteTool
from pycrush.util.fs import FsError


@pytest.fixture
def ctx(tmp_path) -> ToolContext:
    return ToolContext(cwd=str(tmp_path), session_id="s")


def test_write_then_view_with_line_numbers(ctx, tmp_path):
    w = WriteTool()
    out = w.execute(ctx, {"file_path": "pkg/a.txt", "content": "hello\nworld\n"})
    assert not out.is_error
    assert (tmp_path / "pkg" / "a.txt").read_text(encoding="utf-8") == "hello\nworld\n"

    again = w.execute(ctx, {"file_path": "pkg/a.txt", "content": "hello\nworld\n"})
    assert "No changes made" in again.content

    v = ViewTool().execute(ctx, {"file_path": "pkg/a.txt", "offset": 1})
    assert "     2|world" in v.content
    assert "hello" not in v.content


def test_view_reports_more_lines(ctx, tmp_path):
    (tmp_path / "big.txt").write_text("\n".join(str(i) for i in range(10)), encoding="utf-8")
    out = ViewTool().execute(ctx, {"file_path": "big.txt", "limit": 3})
    assert "     3|2" in out.content
    assert "offset" in out.content


def test_paths_outside_cwd_are_rejected(ctx):
    with pytest.raises(FsError):
        ViewTool().execute(ctx, {"file_path": "../etc/passwd"})
    assert issubclass(FsError, ToolError)


def test_edit_tools_may_write_outside_cwd(ctx, tmp_path):
    target = tmp_path.parent / f"{tmp_path.name}-notes.txt"
    journal = tmp_path.parent / f"{tmp_path.name}-journal.md"
    try:
        out = WriteTool().execute(ctx, {"file_path": str(target), "content": "kept"})
        assert not out.is_error
        assert target.read_text(encoding="utf-8") == "kept"

        JournalTool().execute(ctx, {"title": "t", "content": "c", "file_path": str(journal)})
        assert journal.read_text(encoding="utf-8").startswith("# ")
    finally:
        target.unlink(missing_ok=True)
        journal.unlink(missing_ok=True)


def test_ls_prints_tree_and_skips_hidden(ctx, tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "README.md").write_text("", encoding="utf-8")

    out = LsTool().execute(ctx, {}).content

    assert "  - src/" in out
    assert "    - main.py" in out
    assert "  - README.md" in out
    assert ".git" not in out
    assert "node_modules" not in out


def test_glob_and_grep(ctx, tmp_path):
    (tmp_path / "a.py").write_text("import os\nx = 1\n", encoding="utf-8")
    (tmp_path / "b.py").write_text("y = 2  # x.y\n", encoding="utf-8")
    (tmp_path / "c.txt").write_text("x = 3\n", encoding="utf-8")

    globbed = GlobTool().execute(ctx, {"pattern": "*.py"}).content.splitlines()
    assert sorted(globbed) == ["a.py", "b.py"]
    assert GlobTool().execute(ctx, {"pattern": "*.rs"}).content == "No files found"

    found = GrepTool().execute(ctx, {"pattern": "x.y", "literal_text": True}).content
    assert found.startswith("Found 1 matches")
    assert "b.py:" in found

    rx = GrepTool().execute(ctx, {"pattern": r"^x = \d", "include": "*.py"}).content
    assert "a.py:" in rx and "Line 2" in rx
    assert "c.txt" not in rx

    bad = GrepTool().execute(ctx, {"pattern": "("})
    assert bad.is_error


def test_journal_prepends_timestamped_entries(ctx, tmp_path):
    times = iter([datetime(2025, 1, 2, 9, 5), datetime(2025, 1, 3, 10, 30)])
    tool = JournalTool(clock=lambda: next(times))

    first = tool.execute(ctx, {"title": "First", "content": " findings one "})
    second = tool.execute(ctx, {"title": "Second", "content": "findings two"})

    body = (tmp_path / "JOURNAL.md").read_text(encoding="utf-8")
    assert body == (
        "# 2025-01-03 10:30: Second\n\nfindings two\n\n---\n\n"
        "# 2025-01-02 09:05: First\n\nfindings one\n\n---\n\n"
    )
    assert "Created new journal file" in first.content
    assert "Created new journal file" not in second.content
    assert format_entry(" T ", "c", datetime(2024, 12, 31, 23, 59)).startswith("# 2024-12-31 23:59: T\n")


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
def test_bash_runs_commands_and_blocks_network_clients(ctx):
    ok = BashTool().execute(ctx, {"command": "echo hi"})
    assert "hi" in ok.content
    assert "EXIT_CODE: 0" in ok.content
    assert not ok.is_error

    failed = BashTool().execute(ctx, {"command": "exit 3"})
    assert failed.is_error
    assert "EXIT_CODE: 3" in failed.content

    banned = BashTool().execute(ctx, {"command": "curl https://example.com"})
    assert banned.is_error
    assert "not allowed" in banned.content


@pytest.mark.asyncio
async def test_agent_tool_delegates(tmp_path):
    prompts: list[str] = []

    async def fake_delegate(prompt: str) -> str:
        prompts.append(prompt)
        return "report"

    ctx = ToolContext(cwd=str(tmp_path), session_id="s", delegate=fake_delegate)
    out = await AgentTool().execute(ctx, {"prompt": "look around"})
    assert out.content == "report"
    assert prompts == ["look around"]

    with pytest.raises(ToolError):
        await AgentTool().execute(ToolContext(cwd=str(tmp_path), session_id="s"), {"prompt": "x"})


def test_command_names_cover_every_segment():
    assert command_names("echo a | grep b; (cd x && ls)") == ["echo", "grep", "cd", "ls"]
    assert command_names("FOO=1 /usr/bin/wget x") == ["wget"]
    assert command_names("echo 'a && curl b'") == ["echo"]


@pytest.mark.parametrize(
    "command",
    [
        "echo x && curl https://example.com",
        "true; wget https://example.com",
        "ls | nc example.com 80",
        "echo ok\nssh host",
        "echo $(curl https://example.com)",
    ],
)
def test_bash_blocks_network_clients_anywhere_in_the_line(ctx, command):
    out = BashTool().execute(ctx, {"command": command})
    assert out.is_error
    assert "not allowed" in out.content
