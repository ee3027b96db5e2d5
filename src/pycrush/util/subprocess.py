from __future__ import annotations
import subprocess
from dataclasses import dataclass
from typing import Sequence, Optional

@dataclass
class CmdResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

def run_cmd(cmd: Sequence[str], cwd: str, timeout: Optional[int]=120) -> CmdResult:
    try:
        p = subprocess.run(
            list(cmd),
            cwd=cwd,
            text=True,
            capture_output=True,
            timeout=timeout,
            shell=False,
        )
    except subprocess.TimeoutExpired as e:
        out = e.stdout.decode("utf-8", "replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
        err = e.stderr.decode("utf-8", "replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
        return CmdResult(-1, out, err, timed_out=True)
    return CmdResult(p.returncode, p.stdout, p.stderr)
