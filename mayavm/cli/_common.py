from __future__ import annotations

import scriptconfig as scfg
from loguru import logger

from ..config import VMConfig, flag_values, load
from ..virt import Virt

log = logger

PROG = 'mayavm'


class _BaseCommand(scfg.DataConfig):
    """Options accepted by every command."""

    config = scfg.Value(
        None,
        type=str,
        help='Source KEY=value settings from this file (missing file only warns).',
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )
    quiet = scfg.Value(
        False,
        short_alias=['q'],
        isflag=True,
        help='Only log warnings and errors.',
    )
    memory = scfg.Value(None, type=str, help='VM memory in MB (default: 16384).')
    cpus = scfg.Value(None, type=str, help='Number of vCPUs (default: 16).')
    disk_size = scfg.Value(
        None, type=str, help='Main VM disk size (default: 100G).'
    )
    additional_disks = scfg.Value(
        None,
        type=str,
        help='Number of additional storage disks (default: 3).',
    )
    additional_disk_size = scfg.Value(
        None, type=str, help='Size of each additional disk (default: 1G).'
    )
    no_workspace = scfg.Value(
        False, isflag=True, help='Disable workspace folder mounting.'
    )
    workspace_path = scfg.Value(
        None, type=str, help='Custom workspace source path to mount.'
    )
    network = scfg.Value(
        None,
        type=str,
        help='Network configuration (default: bridge=virbr0).',
    )
    workdir = scfg.Value(
        None,
        type=str,
        help='Directory holding disk images and the snapshot (default: cwd).',
    )


def _load_cfg(args: _BaseCommand) -> VMConfig:
    return load(args.config, flag_values(args.to_dict()))


def _make_virt(cfg: VMConfig) -> Virt:
    return Virt(cfg.libvirt_uri)


__all__ = [name for name in globals() if not name.startswith('__')]
