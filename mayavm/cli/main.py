"""Top-level modal CLI wiring, argv normalization, and logging setup."""

from __future__ import annotations

import os
import sys

import scriptconfig as scfg
from loguru import logger

from ..errors import ConfigError, MayaVMError
from ..util import CmdError
from ._common import PROG, log
from .help import COMMANDS, HelpCLI
from .vm import (
    ConsoleCLI,
    DestroyCLI,
    RestoreCLI,
    SnapshotCLI,
    SSHCLI,
    StartCLI,
    StatusCLI,
    StopCLI,
)

COMMAND_NAMES = frozenset(name for name, _ in COMMANDS)


class MayaVMModalCLI(scfg.ModalCLI):
    """Create, start, stop, snapshot and destroy the Mayastor test VM."""

    help = HelpCLI
    status = StatusCLI
    start = StartCLI
    stop = StopCLI
    destroy = DestroyCLI
    ssh = SSHCLI
    console = ConsoleCLI
    snapshot = SnapshotCLI
    restore = RestoreCLI


def main(argv: list[str] | None = None) -> None:
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)
    if not argv or argv[0] in {'-h', '--help'}:
        argv = ['help', *argv[1:]]
    command = argv[0]
    if command not in COMMAND_NAMES:
        print(f'Unknown command: {command}', file=sys.stderr)
        print(f"Run '{PROG} help' for usage", file=sys.stderr)
        sys.exit(1)
    argv = _normalize_argv(argv)
    _setup_logging(_count_verbose(argv), quiet=_has_quiet(argv))

    try:
        rc = MayaVMModalCLI.main(argv=argv, _noexit=True)
    except ConfigError as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        print(f"Run '{PROG} help' for usage", file=sys.stderr)
        sys.exit(1)
    except CmdError as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        sys.exit(ex.result.code or 1)
    except MayaVMError as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        sys.exit(1)
    except Exception as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        log.error('Unhandled mayavm error: {}', ex)
        sys.exit(2)

    if any(flag in argv for flag in ('-h', '--help')):
        sys.exit(0)
    if isinstance(rc, int):
        sys.exit(rc)
    sys.exit(0)


def _setup_logging(args_verbose: int, *, quiet: bool = False) -> None:
    logger.remove()
    level = 'INFO'
    if quiet:
        level = 'WARNING'
    elif args_verbose >= 2:
        level = 'DEBUG'
    colorize = sys.stderr.isatty() and os.getenv('NO_COLOR') is None
    logger.add(
        sys.stderr,
        level=level,
        colorize=colorize,
        format='<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>',
    )
    log.debug(
        'Logging configured at {} (verbose={}, colorize={})',
        level,
        args_verbose,
        colorize,
    )


def _normalize_argv(argv: list[str]) -> list[str]:
    """Normalize hyphenated option spellings to scriptconfig option names.

    ``--additional-disks 5`` becomes ``--additional_disks 5``; values and
    everything after a bare ``--`` are left alone.
    """
    out: list[str] = []
    for idx, item in enumerate(argv):
        if item == '--':
            out.extend(argv[idx:])
            break
        if not item.startswith('--'):
            out.append(item)
            continue
        name, sep, value = item[2:].partition('=')
        out.append('--' + name.replace('-', '_') + sep + value)
    return out


def _count_verbose(argv: list[str]) -> int:
    count = 0
    for item in argv:
        if item == '--verbose':
            count += 1
        elif item.startswith('-') and not item.startswith('--'):
            short = item[1:]
            if short and set(short) <= {'v'}:
                count += len(short)
    return count


def _has_quiet(argv: list[str]) -> bool:
    return any(item in {'-q', '--quiet'} for item in argv)
