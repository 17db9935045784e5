"""Tests for VM lifecycle orchestration against a fake libvirt."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
from conftest import FakeVirt

from mayavm.disks import DiskSet
from mayavm.errors import (
    DomainQueryError,
    GuestNotReadyError,
    SnapshotNotFoundError,
)
from mayavm.lifecycle import (
    console_vm,
    destroy_vm,
    fetch_image,
    resolve_ip,
    restore_vm,
    snapshot_vm,
    ssh_vm,
    start_vm,
    stop_vm,
    virt_install_args,
    vm_status,
)
from mayavm.util import CmdError, CmdResult

AGENT_DOMIFADDR = """
 Name       MAC address          Protocol     Address
-------------------------------------------------------------------------------
 lo         00:00:00:00:00:00    ipv4         127.0.0.1/8
 enp1s0     52:54:00:12:34:56    ipv6         fe80::5054:ff:fe12:3456/64
 -          -                    ipv4         192.168.122.50/24
"""


def _snapshot_tree(root: Path) -> dict[str, str]:
    return {
        str(p.relative_to(root)): p.read_text(encoding='utf-8')
        for p in sorted(root.rglob('*'))
        if p.is_file()
    }


def test_start_twice_creates_then_resumes(vm_cfg, fake_virt) -> None:
    assert start_vm(vm_cfg, fake_virt) == 0
    assert fake_virt.counts['install'] == 1
    assert fake_virt.counts['create_overlay'] == 1
    assert fake_virt.counts['create_blank'] == 3
    assert fake_virt.counts['download'] == 1
    assert fake_virt.counts['start'] == 0

    assert start_vm(vm_cfg, fake_virt) == 0
    assert fake_virt.counts['install'] == 1
    assert fake_virt.counts['create_overlay'] == 1
    assert fake_virt.counts['create_blank'] == 3
    assert fake_virt.counts['download'] == 1
    assert fake_virt.counts['start'] == 1


def test_start_creates_exact_storage_disk_set(vm_cfg, fake_virt) -> None:
    cfg = replace(vm_cfg, additional_disk_count=4)
    start_vm(cfg, fake_virt)
    workdir = Path(cfg.workdir)
    created = {p.name for p in workdir.glob('mayastor-test-storage*.qcow2')}
    assert created == {f'mayastor-test-storage{i}.qcow2' for i in range(1, 5)}
    blank_sizes = [c[2] for c in fake_virt.calls if c[0] == 'create_blank']
    assert blank_sizes == ['1G'] * 4


def test_start_reuses_cached_image(vm_cfg, fake_virt) -> None:
    image = vm_cfg.image_dir_path / 'noble-server-cloudimg-amd64.img'
    image.parent.mkdir(parents=True)
    image.write_text('cached', encoding='utf-8')
    assert fetch_image(vm_cfg, fake_virt) == image
    start_vm(vm_cfg, fake_virt)
    assert fake_virt.counts['download'] == 0
    overlay = [c for c in fake_virt.calls if c[0] == 'create_overlay'][0]
    assert overlay[1] == image
    assert overlay[3] == '100G'


def test_start_rebuilds_stale_disks(vm_cfg, fake_virt) -> None:
    disks = DiskSet.from_config(vm_cfg)
    disks.main.write_text('old data', encoding='utf-8')
    disks.storage[0].write_text('old data', encoding='utf-8')
    start_vm(vm_cfg, fake_virt)
    assert disks.main.read_text(encoding='utf-8') == 'overlay 100G'
    assert disks.storage[0].read_text(encoding='utf-8') == 'blank 1G'


def test_start_without_additional_disks(vm_cfg, fake_virt) -> None:
    cfg = replace(vm_cfg, additional_disk_count=0)
    start_vm(cfg, fake_virt)
    assert fake_virt.counts['create_blank'] == 0
    args = [c for c in fake_virt.calls if c[0] == 'install'][0][1]
    assert args.count('--disk') == 1


def test_start_existing_returns_power_on_code(vm_cfg) -> None:
    virt = FakeVirt(defined=True, start_code=1)
    assert start_vm(vm_cfg, virt) == 1
    assert virt.counts['install'] == 0
    assert virt.counts['create_overlay'] == 0


def test_start_unknown_state_is_fatal(vm_cfg) -> None:
    virt = FakeVirt(reachable=False)
    with pytest.raises(DomainQueryError):
        start_vm(vm_cfg, virt)
    assert virt.counts['download'] == 0
    assert virt.counts['create_overlay'] == 0
    assert list(Path(vm_cfg.workdir).glob('*.qcow2')) == []


def test_start_failure_propagates_and_leaves_disks(vm_cfg) -> None:
    class FailingInstall(FakeVirt):
        def install(self, args):
            self._record('install', list(args))
            raise CmdError(['virt-install'], CmdResult(3, '', 'boom'))

    virt = FailingInstall()
    with pytest.raises(CmdError) as excinfo:
        start_vm(vm_cfg, virt)
    assert excinfo.value.result.code == 3
    # No rollback: files created before the failure remain.
    assert all(p.exists() for p in DiskSet.from_config(vm_cfg).disks)


def test_start_stops_at_first_disk_failure(vm_cfg) -> None:
    class FailingBlank(FakeVirt):
        def create_blank(self, path, size):
            self._record('create_blank', Path(path), size)
            raise CmdError(['qemu-img'], CmdResult(1, '', 'Invalid size'))

    virt = FailingBlank()
    with pytest.raises(CmdError):
        start_vm(replace(vm_cfg, additional_disk_size='lots'), virt)
    assert virt.counts['create_blank'] == 1
    assert virt.counts['install'] == 0


def test_virt_install_args(vm_cfg) -> None:
    cfg = replace(vm_cfg, memory_mb=8192, cpus=8, network='network=default')
    disks = DiskSet.from_config(cfg)
    args = virt_install_args(cfg, disks)
    assert args[args.index('--name') + 1] == 'mayastor-test'
    assert args[args.index('--memory') + 1] == '8192'
    assert args[args.index('--vcpus') + 1] == '8'
    assert args[args.index('--os-variant') + 1] == 'ubuntu24.04'
    assert args[args.index('--network') + 1] == 'network=default'
    assert args[args.index('--machine') + 1] == 'q35'
    assert args[args.index('--iommu') + 1] == 'model=intel'
    assert '--import' in args
    assert '--noautoconsole' in args
    disk_args = [args[i + 1] for i, a in enumerate(args) if a == '--disk']
    assert disk_args == [f'bus=virtio,path={p}' for p in disks.disks]
    fs = args[args.index('--filesystem') + 1]
    assert f'source={cfg.workspace_path}' in fs
    assert 'target=workspace' in fs
    assert 'accessmode=passthrough' in fs
    ci = args[args.index('--cloud-init') + 1]
    assert ci == f'user-data={Path(cfg.workdir) / "user-data.yaml"}'


def test_virt_install_args_without_workspace(vm_cfg) -> None:
    cfg = replace(vm_cfg, workspace_mount=False)
    args = virt_install_args(cfg, DiskSet.from_config(cfg))
    assert '--filesystem' not in args


def test_stop_returns_shutdown_code(vm_cfg) -> None:
    assert stop_vm(vm_cfg, FakeVirt(defined=True)) == 0
    virt = FakeVirt(defined=False)
    assert stop_vm(vm_cfg, virt) == 1
    assert virt.counts['shutdown'] == 1


def test_destroy_absent_vm_is_noop(vm_cfg, fake_virt) -> None:
    workdir = Path(vm_cfg.workdir)
    (workdir / 'notes.txt').write_text('keep me', encoding='utf-8')
    before = _snapshot_tree(workdir)
    assert destroy_vm(vm_cfg, fake_virt) == 0
    assert destroy_vm(vm_cfg, fake_virt) == 0
    assert _snapshot_tree(workdir) == before


def test_destroy_removes_what_start_created(vm_cfg, fake_virt) -> None:
    workdir = Path(vm_cfg.workdir)
    before = set(_snapshot_tree(workdir))
    start_vm(vm_cfg, fake_virt)
    disks = DiskSet.from_config(vm_cfg)
    fake_virt.xml = (
        '<domain><devices>'
        + ''.join(
            f"<disk type='file' device='disk'><source file='{p}'/></disk>"
            for p in disks.disks
        )
        + '</devices></domain>'
    )
    snapshot_vm(vm_cfg, fake_virt)
    assert destroy_vm(vm_cfg, fake_virt) == 0
    after = set(_snapshot_tree(workdir))
    # Only the cached base image survives.
    assert after - before == {'isos/noble-server-cloudimg-amd64.img'}


def test_destroy_leaves_unowned_storage_disks(vm_cfg, fake_virt) -> None:
    cfg = replace(vm_cfg, additional_disk_count=2)
    workdir = Path(cfg.workdir)
    for i in (1, 2, 3, 7):
        (workdir / f'mayastor-test-storage{i}.qcow2').write_text('x', encoding='utf-8')
    destroy_vm(cfg, fake_virt)
    left = sorted(p.name for p in workdir.glob('mayastor-test-storage*.qcow2'))
    assert left == ['mayastor-test-storage3.qcow2', 'mayastor-test-storage7.qcow2']


def test_destroy_removes_storage_referenced_by_definition(vm_cfg) -> None:
    cfg = replace(vm_cfg, additional_disk_count=1)
    workdir = Path(cfg.workdir)
    main = workdir / 'mayastor-test-vm.qcow2'
    paths = [main] + [workdir / f'mayastor-test-storage{i}.qcow2' for i in (1, 2, 3)]
    for p in paths:
        p.write_text('x', encoding='utf-8')
    stray = workdir / 'mayastor-test-storage9.qcow2'
    stray.write_text('x', encoding='utf-8')
    xml = '<domain><devices>' + ''.join(
        f"<disk device='disk'><source file='{p}'/></disk>" for p in paths
    ) + '</devices></domain>'
    virt = FakeVirt(defined=True, xml=xml)
    destroy_vm(cfg, virt)
    assert not any(p.exists() for p in paths)
    assert stray.exists()


def test_destroy_reads_definition_before_undefine(vm_cfg) -> None:
    virt = FakeVirt(defined=True, xml='<domain/>')
    destroy_vm(vm_cfg, virt)
    ops = [c[0] for c in virt.calls]
    assert ops.index('destroy') < ops.index('dumpxml') < ops.index('undefine')


def test_destroy_primary_disk_from_definition(vm_cfg, tmp_path) -> None:
    elsewhere = tmp_path / 'elsewhere'
    elsewhere.mkdir()
    primary = elsewhere / 'custom.qcow2'
    primary.write_text('x', encoding='utf-8')
    xml = f"<domain><devices><disk device='disk'><source file='{primary}'/></disk></devices></domain>"
    destroy_vm(vm_cfg, FakeVirt(defined=True, xml=xml))
    assert not primary.exists()


def test_ssh_without_address_fails_fast(vm_cfg) -> None:
    text = AGENT_DOMIFADDR.replace('192.168.122.50', '10.0.0.5')
    virt = FakeVirt(defined=True, domifaddr_text=text)
    with pytest.raises(GuestNotReadyError, match='guest agent'):
        ssh_vm(vm_cfg, virt)
    assert virt.counts['ssh'] == 0


def test_ssh_on_absent_vm_fails_fast(vm_cfg, fake_virt) -> None:
    with pytest.raises(GuestNotReadyError):
        ssh_vm(vm_cfg, fake_virt)
    assert fake_virt.counts['ssh'] == 0


def test_ssh_connects_to_agent_address(vm_cfg) -> None:
    virt = FakeVirt(defined=True, domifaddr_text=AGENT_DOMIFADDR)
    assert ssh_vm(vm_cfg, virt) == 0
    assert ('ssh', 'ubuntu', '192.168.122.50') in virt.calls
    assert ('domifaddr', 'mayastor-test', 'agent') in virt.calls


def test_resolve_ip_ignores_other_interfaces(vm_cfg) -> None:
    text = AGENT_DOMIFADDR.replace('enp1s0', 'docker0')
    virt = FakeVirt(defined=True, domifaddr_text=text)
    with pytest.raises(GuestNotReadyError):
        resolve_ip(vm_cfg, virt)


def test_console_passthrough(vm_cfg) -> None:
    virt = FakeVirt(defined=True)
    assert console_vm(vm_cfg, virt) == 0
    assert virt.calls == [('console', 'mayastor-test')]


def test_status_absent(vm_cfg, fake_virt) -> None:
    code, report = vm_status(vm_cfg, fake_virt)
    assert code == 0
    assert 'VM Status for: mayastor-test' in report
    assert 'VM not found' in report
    assert 'Network Info' not in report


def test_status_defined_without_network(vm_cfg) -> None:
    virt = FakeVirt(defined=True)
    code, report = vm_status(vm_cfg, virt)
    assert code == 0
    assert 'mayastor-test   running' in report
    assert 'VM Info:' in report
    assert 'No network info available' in report


def test_status_defined_with_network(vm_cfg) -> None:
    virt = FakeVirt(defined=True, domifaddr_text=AGENT_DOMIFADDR)
    _, report = vm_status(vm_cfg, virt)
    assert '192.168.122.50/24' in report


def test_snapshot_and_restore(vm_cfg) -> None:
    virt = FakeVirt(defined=True)
    snap = DiskSet.from_config(vm_cfg).snapshot
    assert snapshot_vm(vm_cfg, virt) == 0
    assert ('save', 'mayastor-test', snap) in virt.calls
    assert restore_vm(vm_cfg, virt) == 0
    assert ('restore', snap) in virt.calls
    assert snap.exists()


def test_restore_without_snapshot(vm_cfg, fake_virt) -> None:
    with pytest.raises(SnapshotNotFoundError, match='mayastor-test.snapshot'):
        restore_vm(vm_cfg, fake_virt)
    assert fake_virt.counts['restore'] == 0
