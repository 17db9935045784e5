"""Usage text for the top-level `help` command."""

from __future__ import annotations

import os
import sys
import textwrap

import scriptconfig as scfg
import ubelt as ub

from ..config import KEYS
from ._common import PROG

COMMANDS = [
    ('help', 'Show this help'),
    ('status', 'Show VM status'),
    ('start', 'Start or create VM'),
    ('stop', 'Stop VM gracefully'),
    ('destroy', 'Destroy VM and remove disk'),
    ('ssh', 'SSH into VM'),
    ('console', 'Connect to VM console (Ctrl+] to exit)'),
    ('snapshot', 'Save VM state'),
    ('restore', 'Restore VM from snapshot'),
]

OPTIONS = [
    ('--config FILE', 'Source environment variables from config file'),
    ('--disk-size SIZE', 'Main VM disk size (default: 100G)'),
    ('--additional-disks COUNT', 'Number of additional storage disks (default: 3)'),
    ('--additional-disk-size SIZE', 'Size of each additional disk (default: 1G)'),
    ('--no-workspace', 'Disable workspace folder mounting'),
    ('--workspace-path PATH', 'Custom workspace source path to mount'),
    ('--memory SIZE', 'VM memory in MB (default: 16384)'),
    ('--cpus COUNT', 'Number of vCPUs (default: 16)'),
    ('--network CONFIG', 'Network configuration (default: bridge=virbr0)'),
    ('--workdir PATH', 'Directory for disk images and snapshot (default: cwd)'),
    ('-v, --verbose', 'Increase log verbosity (-vv for debug)'),
    ('-h, --help', 'Show this help'),
]


def _examples() -> str:
    return textwrap.dedent(f"""
    {PROG} start --memory 8192 --cpus 8
    {PROG} start --disk-size 50G --additional-disks 5 --additional-disk-size 2G
    {PROG} start --no-workspace
    {PROG} start --config my-vm-config.env
    """).strip()


def _table(rows: list[tuple[str, str]]) -> list[str]:
    width = max(len(left) for left, _ in rows)
    return [f'  {left.ljust(width)}  - {right}' for left, right in rows]


def usage_text(*, color: bool = False) -> str:
    lines = [f'Usage: {PROG} <command> [options]', '', 'Commands:']
    lines += _table(COMMANDS)
    lines += ['', 'VM Configuration Options:']
    lines += _table(OPTIONS)
    lines += ['', 'Environment Variables (overridden by --config, then flags):']
    lines += _table([(k.env, k.help) for k in KEYS])
    lines += ['', 'Examples:']
    examples = _examples()
    if color:
        examples = ub.highlight_code(examples, lexer_name='bash')
    lines += ['  ' + line for line in examples.splitlines()]
    return '\n'.join(lines)


def _want_color() -> bool:
    return sys.stdout.isatty() and os.getenv('NO_COLOR') is None


class HelpCLI(scfg.DataConfig):
    """Show usage, commands, options and environment variables."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        cls.cli(argv=argv, data=kwargs)
        print(usage_text(color=_want_color()))
        return 0
