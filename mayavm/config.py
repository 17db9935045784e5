"""
VM configuration record and the resolver that builds it.

Sources are layered in increasing precedence::

    built-in defaults < environment < --config FILE < CLI flags

Every key is named by its environment variable (``VM_MEMORY``,
``ADDITIONAL_DISK_COUNT``, ...). Config files use the same names as shell-style
``KEY=value`` assignments, and CLI flags are mapped onto them by
:func:`flag_values`. Layering happens over raw strings; each value is parsed
exactly once, after the last layer has been applied, so a bad value from any
source fails before anything is done with it.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

from dotenv import dotenv_values
from loguru import logger

from .errors import ConfigError

log = logger

VM_NAME = 'mayastor-test'

DEFAULT_UBUNTU_NOBLE_IMG_URL = (
    'https://cloud-images.ubuntu.com/noble/current/'
    'noble-server-cloudimg-amd64.img'
)

_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off'}


@dataclass(frozen=True)
class VMConfig:
    name: str = VM_NAME
    memory_mb: int = 16384
    cpus: int = 16
    disk_size: str = '100G'
    additional_disk_count: int = 3
    additional_disk_size: str = '1G'
    workspace_mount: bool = True
    workspace_path: str = ''
    network: str = 'bridge=virbr0'
    workdir: str = ''
    image_url: str = DEFAULT_UBUNTU_NOBLE_IMG_URL
    image_dir: str = ''
    user_data: str = 'user-data.yaml'
    ssh_user: str = 'ubuntu'
    libvirt_uri: str = ''

    @property
    def workdir_path(self) -> Path:
        return Path(self.workdir or '.')

    @property
    def image_dir_path(self) -> Path:
        if self.image_dir:
            return Path(self.image_dir)
        return self.workdir_path / 'isos'

    @property
    def user_data_path(self) -> Path:
        p = Path(self.user_data)
        return p if p.is_absolute() else self.workdir_path / p

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


def _parse_str(key: str, raw: str) -> str:
    return raw


def _parse_bool(key: str, raw: str) -> bool:
    low = raw.strip().lower()
    if low in _TRUE:
        return True
    if low in _FALSE:
        return False
    raise ConfigError(f'{key} must be a boolean (true/false), got {raw!r}')


def _int_parser(minimum: int) -> Callable[[str, str], int]:
    def _parse(key: str, raw: str) -> int:
        try:
            value = int(raw.strip())
        except ValueError:
            raise ConfigError(
                f'{key} must be an integer, got {raw!r}'
            ) from None
        if value < minimum:
            raise ConfigError(f'{key} must be >= {minimum}, got {value}')
        return value

    return _parse


@dataclass(frozen=True)
class ConfigKey:
    env: str
    attr: str
    parse: Callable[[str, str], object]
    help: str = ''


KEYS: tuple[ConfigKey, ...] = (
    ConfigKey('VM_MEMORY', 'memory_mb', _int_parser(1), 'VM memory in MB'),
    ConfigKey('VM_CPUS', 'cpus', _int_parser(1), 'Number of vCPUs'),
    ConfigKey('VM_DISK_SIZE', 'disk_size', _parse_str, 'Main VM disk size'),
    ConfigKey(
        'ADDITIONAL_DISK_COUNT',
        'additional_disk_count',
        _int_parser(0),
        'Number of additional storage disks',
    ),
    ConfigKey(
        'ADDITIONAL_DISK_SIZE',
        'additional_disk_size',
        _parse_str,
        'Size of each additional disk',
    ),
    ConfigKey(
        'WORKSPACE_MOUNT_ENABLED',
        'workspace_mount',
        _parse_bool,
        'Mount the workspace folder into the guest',
    ),
    ConfigKey(
        'WORKSPACE_SOURCE_PATH',
        'workspace_path',
        _parse_str,
        'Host path mounted as the workspace',
    ),
    ConfigKey('VM_NETWORK', 'network', _parse_str, 'virt-install --network value'),
    ConfigKey('VM_WORKDIR', 'workdir', _parse_str, 'Directory for disks and snapshot'),
    ConfigKey('VM_IMAGE_URL', 'image_url', _parse_str, 'Base cloud image URL'),
    ConfigKey('VM_IMAGE_DIR', 'image_dir', _parse_str, 'Base image cache directory'),
    ConfigKey('VM_USER_DATA', 'user_data', _parse_str, 'cloud-init user-data file'),
    ConfigKey('VM_SSH_USER', 'ssh_user', _parse_str, 'Guest login user'),
    ConfigKey('VM_LIBVIRT_URI', 'libvirt_uri', _parse_str, 'libvirt connection URI'),
)

KEY_NAMES = frozenset(k.env for k in KEYS)

# CLI option name -> config key.
FLAG_KEYS = {
    'memory': 'VM_MEMORY',
    'cpus': 'VM_CPUS',
    'disk_size': 'VM_DISK_SIZE',
    'additional_disks': 'ADDITIONAL_DISK_COUNT',
    'additional_disk_size': 'ADDITIONAL_DISK_SIZE',
    'workspace_path': 'WORKSPACE_SOURCE_PATH',
    'network': 'VM_NETWORK',
    'workdir': 'VM_WORKDIR',
}


def default_values(cwd: Optional[Path] = None) -> dict[str, str]:
    cwd = Path(cwd) if cwd is not None else Path.cwd()
    d = VMConfig()
    return {
        'VM_MEMORY': str(d.memory_mb),
        'VM_CPUS': str(d.cpus),
        'VM_DISK_SIZE': d.disk_size,
        'ADDITIONAL_DISK_COUNT': str(d.additional_disk_count),
        'ADDITIONAL_DISK_SIZE': d.additional_disk_size,
        'WORKSPACE_MOUNT_ENABLED': 'true' if d.workspace_mount else 'false',
        'WORKSPACE_SOURCE_PATH': str(cwd),
        'VM_NETWORK': d.network,
        'VM_WORKDIR': str(cwd),
        'VM_IMAGE_URL': d.image_url,
        'VM_IMAGE_DIR': '',
        'VM_USER_DATA': d.user_data,
        'VM_SSH_USER': d.ssh_user,
        'VM_LIBVIRT_URI': d.libvirt_uri,
    }


def flag_values(options: Mapping[str, object]) -> dict[str, str]:
    """Translate parsed CLI options into config-key assignments.

    Options that were not given are ``None`` and contribute nothing.
    ``--workspace-path`` implies the mount is enabled; ``--no-workspace``
    disables it and wins when both are given.
    """
    out: dict[str, str] = {}
    for opt, key in FLAG_KEYS.items():
        value = options.get(opt, None)
        if value is None:
            continue
        out[key] = str(value)
    if 'WORKSPACE_SOURCE_PATH' in out:
        out['WORKSPACE_MOUNT_ENABLED'] = 'true'
    if options.get('no_workspace', False):
        out['WORKSPACE_MOUNT_ENABLED'] = 'false'
    return out


def load_config_file(path: str | os.PathLike) -> dict[str, str]:
    """
    Read shell-style ``KEY=value`` assignments from a config file.

    The file is parsed, never executed. A missing file is not an error: a
    warning is logged and an empty mapping is returned so resolution can
    continue with the remaining sources.
    """
    fpath = Path(path).expanduser()
    if not fpath.is_file():
        log.warning('Config file not found: {}', fpath)
        return {}
    log.info('Sourcing config file: {}', fpath)
    raw = dotenv_values(fpath, interpolate=True)
    values: dict[str, str] = {}
    for key, value in raw.items():
        if key not in KEY_NAMES:
            log.debug('Ignoring unrecognized config key {} in {}', key, fpath)
            continue
        if value is None:
            continue
        values[key] = value
    return values


def _apply_layer(
    raw: dict[str, str], layer: Mapping[str, object], *, skip_empty: bool
) -> None:
    for key in KEY_NAMES:
        if key not in layer:
            continue
        value = layer[key]
        if value is None:
            continue
        value = str(value)
        # Matches ${VAR:-default}: an empty assignment keeps the lower layer.
        if skip_empty and value == '':
            continue
        raw[key] = value


def resolve_config(
    environ: Mapping[str, str],
    file_values: Optional[Mapping[str, str]] = None,
    flags: Optional[Mapping[str, str]] = None,
    *,
    cwd: Optional[Path] = None,
) -> VMConfig:
    """
    Build the immutable configuration record from the four ordered sources.

    Example:
        >>> from mayavm.config import resolve_config
        >>> cfg = resolve_config(
        ...     {'VM_CPUS': '4'},
        ...     {'VM_MEMORY': '8192'},
        ...     {'VM_MEMORY': '32768'},
        ...     cwd='/tmp',
        ... )
        >>> (cfg.memory_mb, cfg.cpus, cfg.disk_size)
        (32768, 4, '100G')
    """
    cwd = Path(cwd) if cwd is not None else Path.cwd()
    raw = default_values(cwd)
    _apply_layer(raw, environ, skip_empty=True)
    _apply_layer(raw, file_values or {}, skip_empty=True)
    _apply_layer(raw, flags or {}, skip_empty=False)

    kwargs: dict[str, object] = {}
    for key in KEYS:
        kwargs[key.attr] = key.parse(key.env, raw[key.env])

    workdir = Path(str(kwargs['workdir'])).expanduser()
    if not workdir.is_absolute():
        workdir = cwd / workdir
    kwargs['workdir'] = str(workdir)
    kwargs['workspace_path'] = os.path.expanduser(str(kwargs['workspace_path']))
    if kwargs['image_dir']:
        image_dir = Path(str(kwargs['image_dir'])).expanduser()
        if not image_dir.is_absolute():
            image_dir = workdir / image_dir
        kwargs['image_dir'] = str(image_dir)
    return VMConfig(**kwargs)


def load(
    config_path: Optional[str] = None,
    flags: Optional[Mapping[str, str]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
) -> VMConfig:
    """Resolve the configuration for one invocation."""
    environ = os.environ if environ is None else environ
    file_values = load_config_file(config_path) if config_path else None
    cfg = resolve_config(environ, file_values, flags, cwd=cwd)
    log.debug('Resolved config: {}', cfg.as_dict())
    return cfg
