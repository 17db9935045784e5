"""VM lifecycle implementation: image, disks, create/start, stop, destroy, access."""

from __future__ import annotations

import ipaddress
import re
from pathlib import Path

from loguru import logger

from .config import VMConfig
from .disks import DiskSet, base_image_name, ensure_absent
from .errors import DomainQueryError, GuestNotReadyError, SnapshotNotFoundError
from .host import warn_missing_commands
from .util import CmdResult, ensure_dir
from .virt import STATE_DEFINED, STATE_UNKNOWN, Virt, disk_sources

log = logger

OS_VARIANT = 'ubuntu24.04'
WORKSPACE_TAG = 'workspace'
GUEST_IFACE_PATTERN = re.compile(r'^enp[0-9]+s[0-9]+$')
GUEST_SUBNET = ipaddress.ip_network('192.168.0.0/16')


def _report_failure(res: CmdResult, what: str) -> int:
    if res.code != 0:
        log.error(
            '{} failed (code={}): {}',
            what,
            res.code,
            (res.stderr or res.stdout).strip(),
        )
    return res.code


def fetch_image(cfg: VMConfig, virt: Virt) -> Path:
    base_img = cfg.image_dir_path / base_image_name(cfg.image_url)
    if base_img.exists():
        log.info('Cloud image already exists: {}', base_img)
        return base_img
    log.info('Downloading cloud image to {} (showing progress)', base_img)
    virt.download(cfg.image_url, base_img)
    log.info('Downloaded cloud image: {}', base_img)
    return base_img


def provision_disks(cfg: VMConfig, virt: Virt, base_img: Path) -> DiskSet:
    """Build a fresh boot overlay and fresh storage disks for a new VM."""
    disks = DiskSet.from_config(cfg)
    ensure_dir(disks.workdir)
    if ensure_absent([disks.main]):
        log.warning(
            'Removed old disk image {}; creating a VM always starts from a '
            'fresh boot disk.',
            disks.main,
        )
    log.info('Creating new {} disk image...', cfg.disk_size)
    virt.create_overlay(base_img, disks.main, cfg.disk_size)

    if not disks.storage:
        log.info('No additional storage devices requested (additional-disks=0)')
        return disks
    log.info(
        'Creating {}x{} storage devices for Mayastor testing...',
        len(disks.storage),
        cfg.additional_disk_size,
    )
    for path in disks.storage:
        ensure_absent([path])
        virt.create_blank(path, cfg.additional_disk_size)
    return disks


def virt_install_args(cfg: VMConfig, disks: DiskSet) -> list[str]:
    args = [
        '--name',
        cfg.name,
        '--noautoconsole',
        '--import',
        '--memory',
        str(cfg.memory_mb),
        '--vcpus',
        str(cfg.cpus),
        '--os-variant',
        OS_VARIANT,
    ]
    for path in disks.disks:
        args += ['--disk', f'bus=virtio,path={path}']
    if cfg.workspace_mount:
        args += [
            '--filesystem',
            'type=mount,accessmode=passthrough,'
            f'source={cfg.workspace_path},target={WORKSPACE_TAG}',
        ]
    args += [
        '--network',
        cfg.network,
        # q35 + intel IOMMU are needed for the NVMe-oF/vfio paths under test.
        '--machine',
        'q35',
        '--iommu',
        'model=intel',
        '--cloud-init',
        f'user-data={cfg.user_data_path}',
    ]
    return args


def _warn_on_missing_inputs(cfg: VMConfig) -> None:
    warn_missing_commands()
    if cfg.workspace_mount and not Path(cfg.workspace_path).is_dir():
        log.warning(
            'Workspace mount is enabled but {} is not a directory',
            cfg.workspace_path,
        )
    if not cfg.user_data_path.exists():
        log.warning('cloud-init user-data not found: {}', cfg.user_data_path)


def start_vm(cfg: VMConfig, virt: Virt) -> int:
    """
    Start the VM, creating it first when libvirt does not know it.

    An existing domain is only powered on; disks are never touched on that
    path. An absent domain is built from scratch: base image (cached),
    fresh boot overlay, fresh storage disks, then ``virt-install``. A failure
    part way through leaves the files created so far in place.
    """
    state = virt.domain_state(cfg.name)
    if state == STATE_DEFINED:
        log.info('VM {} exists, starting...', cfg.name)
        return _report_failure(virt.start(cfg.name), f'virsh start {cfg.name}')
    if state == STATE_UNKNOWN:
        raise DomainQueryError(
            f'Could not determine whether VM {cfg.name} exists; '
            'check that libvirtd is running and reachable.'
        )

    log.info("VM {} doesn't exist, creating new VM...", cfg.name)
    _warn_on_missing_inputs(cfg)
    base_img = fetch_image(cfg, virt)
    disks = provision_disks(cfg, virt, base_img)
    virt.install(virt_install_args(cfg, disks))
    log.info('VM created: {}', cfg.name)
    return 0


def stop_vm(cfg: VMConfig, virt: Virt) -> int:
    log.info('Requesting graceful shutdown of {}', cfg.name)
    return _report_failure(virt.shutdown(cfg.name), f'virsh shutdown {cfg.name}')


def destroy_vm(cfg: VMConfig, virt: Virt) -> int:
    """
    Force-stop and undefine the domain, then remove every file it owns.

    Every step tolerates the domain or files being absent, so this is safe on
    a half-built or already destroyed VM.
    """
    name = cfg.name
    disks = DiskSet.from_config(cfg)
    log.info('Destroying VM and cleaning up...')

    res = virt.destroy(name)
    if res.code != 0:
        log.debug('virsh destroy {} ignored: {}', name, res.stderr.strip())

    # Disk paths must be read before undefine; the definition is gone after.
    sources = disk_sources(virt.dumpxml(name))

    res = virt.undefine(name)
    if res.code != 0:
        log.debug('virsh undefine {} ignored: {}', name, res.stderr.strip())

    main = Path(sources[0]) if sources else disks.main
    for path in ensure_absent([main]):
        log.info('Removing disk image: {}', path)

    storage = list(disks.storage)
    for src in sources[1:]:
        path = Path(src)
        if disks.owns_storage_path(path) and path not in storage:
            storage.append(path)
    removed = ensure_absent(storage)
    if removed:
        log.info('Removed {} additional storage disk(s)', len(removed))

    if ensure_absent([disks.snapshot]):
        log.info('Removed snapshot file: {}', disks.snapshot)

    log.info('VM {} destroyed and cleaned up', name)
    return 0


def _list_rows_for(listing: str, name: str) -> list[str]:
    rows: list[str] = []
    for line in listing.splitlines():
        parts = line.split()
        if not parts:
            continue
        if parts[0] == 'Id' or (len(parts) >= 2 and parts[1] == name):
            rows.append(line.rstrip())
    return rows


def vm_status(cfg: VMConfig, virt: Virt) -> tuple[int, str]:
    """Return ``(exit_code, report)``; read failures degrade, never abort."""
    name = cfg.name
    lines = [f'VM Status for: {name}']
    listing = virt.list_all()
    if listing.code != 0:
        lines.append(
            f'Could not list domains: {(listing.stderr or listing.stdout).strip()}'
        )
    else:
        rows = _list_rows_for(listing.stdout, name)
        if any(r.split()[0] != 'Id' for r in rows):
            lines.extend(rows)
        else:
            lines.append('VM not found')
    info = virt.dominfo(name)
    if info.code == 0:
        lines += ['', 'VM Info:', info.stdout.rstrip(), '', 'Network Info:']
        net = virt.domifaddr(name)
        if net.code == 0 and net.stdout.strip():
            lines.append(net.stdout.rstrip())
        else:
            lines.append('No network info available')
    return listing.code, '\n'.join(lines)


def resolve_ip(cfg: VMConfig, virt: Virt) -> str:
    for row in virt.interface_addresses(cfg.name, source='agent'):
        if row.protocol != 'ipv4' or not GUEST_IFACE_PATTERN.match(row.name):
            continue
        try:
            ip = ipaddress.ip_address(row.address)
        except ValueError:
            continue
        if ip in GUEST_SUBNET:
            return str(ip)
    raise GuestNotReadyError(
        f'Could not get VM IP address for {cfg.name}. '
        'Make sure the VM is running and the qemu guest agent is installed '
        'and ready.'
    )


def ssh_vm(cfg: VMConfig, virt: Virt) -> int:
    ip = resolve_ip(cfg, virt)
    log.info('Connecting to VM at {}...', ip)
    return virt.ssh(cfg.ssh_user, ip).code


def console_vm(cfg: VMConfig, virt: Virt) -> int:
    log.info('Connecting to VM console (Ctrl+] to exit)...')
    return virt.console(cfg.name).code


def snapshot_vm(cfg: VMConfig, virt: Virt) -> int:
    disks = DiskSet.from_config(cfg)
    if disks.snapshot.exists():
        log.info('Replacing existing snapshot {}', disks.snapshot)
    res = virt.save(cfg.name, disks.snapshot)
    if res.code == 0:
        log.info('VM state saved to {}', disks.snapshot)
    return _report_failure(res, f'virsh save {cfg.name}')


def restore_vm(cfg: VMConfig, virt: Virt) -> int:
    disks = DiskSet.from_config(cfg)
    if not disks.snapshot.exists():
        raise SnapshotNotFoundError(
            f'No snapshot for {cfg.name}: {disks.snapshot} does not exist. '
            'Run snapshot first.'
        )
    res = virt.restore(disks.snapshot)
    if res.code == 0:
        log.info('VM restored from {}', disks.snapshot)
    return _report_failure(res, f'virsh restore {disks.snapshot}')
