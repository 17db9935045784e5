"""CLI commands for the VM lifecycle."""

from __future__ import annotations

from ..lifecycle import (
    console_vm,
    destroy_vm,
    restore_vm,
    snapshot_vm,
    ssh_vm,
    start_vm,
    stop_vm,
    vm_status,
)
from . import _common
from ._common import _BaseCommand, _load_cfg, log


class StatusCLI(_BaseCommand):
    """Show VM status."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args)
        code, report = vm_status(cfg, _common._make_virt(cfg))
        print(report)
        return code


class StartCLI(_BaseCommand):
    """Start or create VM."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args)
        log.debug(
            'start vm={} memory_mb={} cpus={} disk={} storage={}x{} workspace={}',
            cfg.name,
            cfg.memory_mb,
            cfg.cpus,
            cfg.disk_size,
            cfg.additional_disk_count,
            cfg.additional_disk_size,
            cfg.workspace_path if cfg.workspace_mount else '(disabled)',
        )
        return start_vm(cfg, _common._make_virt(cfg))


class StopCLI(_BaseCommand):
    """Stop VM gracefully."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args)
        return stop_vm(cfg, _common._make_virt(cfg))


class DestroyCLI(_BaseCommand):
    """Destroy VM and remove its disks and snapshot."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args)
        return destroy_vm(cfg, _common._make_virt(cfg))


class SSHCLI(_BaseCommand):
    """SSH into VM."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args)
        return ssh_vm(cfg, _common._make_virt(cfg))


class ConsoleCLI(_BaseCommand):
    """Connect to VM console (Ctrl+] to exit)."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args)
        return console_vm(cfg, _common._make_virt(cfg))


class SnapshotCLI(_BaseCommand):
    """Save VM state."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args)
        return snapshot_vm(cfg, _common._make_virt(cfg))


class RestoreCLI(_BaseCommand):
    """Restore VM from snapshot."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args)
        return restore_vm(cfg, _common._make_virt(cfg))
