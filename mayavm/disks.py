"""Disk set naming and reconciliation for the VM's image files."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from loguru import logger

from .config import VMConfig

log = logger


def main_disk_name(vm_name: str) -> str:
    return f'{vm_name}-vm.qcow2'


def storage_disk_name(vm_name: str, index: int) -> str:
    if index < 1:
        raise ValueError(f'storage disk index starts at 1, got {index}')
    return f'{vm_name}-storage{index}.qcow2'


def snapshot_name(vm_name: str) -> str:
    return f'{vm_name}.snapshot'


def storage_disk_pattern(vm_name: str) -> re.Pattern[str]:
    return re.compile(rf'^{re.escape(vm_name)}-storage([1-9][0-9]*)\.qcow2$')


def base_image_name(url: str) -> str:
    name = url.rstrip('/').rsplit('/', 1)[-1]
    return name or 'base.img'


@dataclass(frozen=True)
class DiskSet:
    """The files one VM owns in its working directory.

    Computed purely from the VM name, the disk count and the directory, so
    both ``start`` and ``destroy`` agree on which files belong to the VM.
    """

    workdir: Path
    vm_name: str
    storage_count: int

    @classmethod
    def from_config(cls, cfg: VMConfig) -> 'DiskSet':
        return cls(
            workdir=cfg.workdir_path,
            vm_name=cfg.name,
            storage_count=cfg.additional_disk_count,
        )

    @property
    def main(self) -> Path:
        return self.workdir / main_disk_name(self.vm_name)

    @property
    def storage(self) -> tuple[Path, ...]:
        return tuple(
            self.workdir / storage_disk_name(self.vm_name, i)
            for i in range(1, self.storage_count + 1)
        )

    @property
    def snapshot(self) -> Path:
        return self.workdir / snapshot_name(self.vm_name)

    @property
    def disks(self) -> tuple[Path, ...]:
        """Boot disk first, then storage disks in index order."""
        return (self.main, *self.storage)

    def owns_storage_path(self, path: str | Path) -> bool:
        """True if ``path`` is a storage disk of this VM in this workdir."""
        p = Path(path)
        if p.parent.resolve() != self.workdir.resolve():
            return False
        return storage_disk_pattern(self.vm_name).match(p.name) is not None


def ensure_absent(paths: Iterable[Path]) -> list[Path]:
    """Remove each path that exists; return the ones that were removed."""
    removed: list[Path] = []
    for path in paths:
        if path.exists() or path.is_symlink():
            log.debug('Removing {}', path)
            path.unlink()
            removed.append(path)
    return removed
