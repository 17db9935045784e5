"""Shared utility helpers for subprocess execution, paths, and command formatting."""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

log = logger


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.code == 0


class CmdError(RuntimeError):
    def __init__(self, cmd: Sequence[str] | str, result: CmdResult):
        self.cmd = cmd
        self.result = result
        if not isinstance(cmd, str):
            cmd = shell_join(cmd)
        super().__init__(
            f'Command failed (code={result.code}): {cmd}\n{result.stderr}'.strip()
        )


def shell_join(cmd: Sequence[str]) -> str:
    return ' '.join(shlex.quote(c) for c in cmd)


def run_cmd(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
    cwd: Optional[Path] = None,
) -> CmdResult:
    """
    Run an external command to completion.

    With ``capture=False`` the child inherits the terminal, which is how
    interactive sessions (console, ssh) and long downloads are run. There is
    no timeout: a hung command hangs the caller.
    """
    cmd = [str(c) for c in cmd]
    log.opt(depth=1).debug('RUN: {}', shell_join(cmd))
    p = subprocess.run(
        cmd,
        capture_output=capture,
        text=True,
        cwd=None if cwd is None else str(cwd),
    )
    res = CmdResult(p.returncode, p.stdout or '', p.stderr or '')
    if check and p.returncode != 0:
        log.opt(depth=1).error(
            'Command failed code={} cmd={} stderr={} stdout={}',
            p.returncode,
            shell_join(cmd),
            res.stderr.strip(),
            res.stdout.strip(),
        )
        raise CmdError(cmd, res)
    if p.returncode == 0:
        log.opt(depth=1).debug('Command ok code=0 cmd={}', shell_join(cmd))
    return res


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path
