from __future__ import annotations
from dataclasses import dataclass
from typing import Any
import os
import re
import shlex
import shutil

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.subprocess import run_cmd

BANNED_COMMANDS = {
    "curl", "wget", "nc", "telnet", "ssh", "scp", "sftp", "ftp",
    "http-prompt", "lynx", "w3m", "links", "chrome", "firefox", "safari",
}
MAX_OUTPUT_CHARS = 30000
_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")


def command_names(cmd: str) -> list[str]:
    """Program names of every simple command in a shell line (after ; && || | & and parens)."""
    lex = shlex.shlex(cmd.replace("\n", ";"), posix=True, punctuation_chars=True)
    lex.whitespace_split = True
    try:
        tokens = list(lex)
    except ValueError:
        tokens = cmd.split()
    names: list[str] = []
    expect_command = True
    for tok in tokens:
        if tok and set(tok) <= set(";&|()"):
            expect_command = True
            continue
        if expect_command:
            if _ASSIGNMENT.match(tok):
                continue
            names.append(os.path.basename(tok))
            expect_command = False
    return names


@dataclass
class BashTool:
    spec: ToolSpec = ToolSpec(
        name="bash",
        description="Run a shell command in the working directory. Returns stdout/stderr and exit code. Network clients are not allowed.",
        permission_key="bash",
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to run."},
                "timeout": {"type": "integer", "default": 120, "description": "Timeout seconds (max 600)."},
            },
            "required": ["command"],
        },
    )

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cmd = (args.get("command") or "").strip()
        timeout = min(int(args.get("timeout", 120)), 600)
        if not cmd:
            return ToolResult("Empty command.", is_error=True)
        banned = [n for n in command_names(cmd) if n in BANNED_COMMANDS]
        if banned:
            return ToolResult(f"Command '{banned[0]}' is not allowed.", is_error=True)

        if os.name == "nt":
            parts = ["cmd.exe", "/c", cmd]
        else:
            shell = "bash" if shutil.which("bash") else "sh"
            parts = [shell, "-lc", cmd]

        res = run_cmd(parts, cwd=ctx.cwd, timeout=timeout)

        out = ""
        if res.stdout:
            out += f"STDOUT:\n{res.stdout[-MAX_OUTPUT_CHARS:]}\n"
        if res.stderr:
            out += f"STDERR:\n{res.stderr[-MAX_OUTPUT_CHARS:]}\n"
        if res.timed_out:
            out += f"Command timed out after {timeout}s"
            return ToolResult(out, is_error=True)
        out += f"EXIT_CODE: {res.returncode}"
        return ToolResult(out, is_error=(res.returncode != 0))
