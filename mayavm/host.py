"""Host tool preflight checks."""

from __future__ import annotations

from shutil import which

from loguru import logger

log = logger

REQUIRED_CMDS = [
    'virsh',
    'virt-install',
    'qemu-img',
    'curl',
]
OPTIONAL_CMDS = ['ssh']


def check_commands() -> tuple[list[str], list[str]]:
    missing = [c for c in REQUIRED_CMDS if which(c) is None]
    missing_opt = [c for c in OPTIONAL_CMDS if which(c) is None]
    return missing, missing_opt


def warn_missing_commands() -> list[str]:
    """Log a warning for each missing host tool and return the required ones."""
    missing, missing_opt = check_commands()
    if missing:
        log.warning(
            'Missing host tools: {}. Install libvirt-clients, virtinst, '
            'qemu-utils and curl before creating the VM.',
            ', '.join(missing),
        )
    if missing_opt:
        log.debug('Missing optional host tools: {}', ', '.join(missing_opt))
    return missing
