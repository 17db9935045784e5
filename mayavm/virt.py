"""
Thin wrapper over the virtualization tools the VM manager drives.

Each method maps to exactly one external call. Query and lifecycle methods
return the :class:`CmdResult` so callers decide what a failure means;
provisioning methods (download, disk creation, domain install) raise
:class:`CmdError` on failure. Nothing here retries or times out.
"""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from loguru import logger

from .util import CmdError, CmdResult, ensure_dir, run_cmd

log = logger

STATE_DEFINED = 'defined'
STATE_ABSENT = 'absent'
STATE_UNKNOWN = 'unknown'

_NOT_FOUND_MARKERS = (
    'failed to get domain',
    'domain not found',
    'no domain with matching name',
)


@dataclass(frozen=True)
class InterfaceAddress:
    name: str
    mac: str
    protocol: str
    address: str
    prefix: int | None = None


def parse_domifaddr(text: str) -> list[InterfaceAddress]:
    """
    Parse the table printed by ``virsh domifaddr``.

    Continuation rows (extra addresses of the same interface) show ``-`` in
    the name and MAC columns and inherit them from the row above.

    Example:
        >>> text = '''
        ...  Name       MAC address          Protocol     Address
        ... -------------------------------------------------------------
        ...  lo         00:00:00:00:00:00    ipv4         127.0.0.1/8
        ...  enp1s0     52:54:00:aa:bb:cc    ipv4         192.168.122.5/24
        ...  -          -                    ipv6         fe80::1/64
        ... '''
        >>> rows = parse_domifaddr(text)
        >>> [(r.name, r.protocol, r.address) for r in rows]
        [('lo', 'ipv4', '127.0.0.1'), ('enp1s0', 'ipv4', '192.168.122.5'), ('enp1s0', 'ipv6', 'fe80::1')]
    """
    rows: list[InterfaceAddress] = []
    prev_name = ''
    prev_mac = ''
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or set(stripped) <= {'-'}:
            continue
        parts = stripped.split()
        if len(parts) < 4 or parts[0].lower() == 'name':
            continue
        name, mac, proto, addr = parts[0], parts[-3], parts[-2], parts[-1]
        if name == '-':
            name = prev_name
        if mac == '-':
            mac = prev_mac
        prev_name, prev_mac = name, mac
        prefix = None
        if '/' in addr:
            addr, _, plen = addr.partition('/')
            prefix = int(plen) if plen.isdigit() else None
        rows.append(InterfaceAddress(name, mac, proto.lower(), addr, prefix))
    return rows


def disk_sources(xml_text: str) -> list[str]:
    """Return ``source file`` paths of the domain's ``device='disk'`` disks."""
    if not xml_text.strip():
        return []
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        log.debug('Could not parse domain XML')
        return []
    out: list[str] = []
    for disk in root.findall('.//devices/disk'):
        if disk.attrib.get('device', 'disk') != 'disk':
            continue
        src = disk.find('source')
        path = src.attrib.get('file', '') if src is not None else ''
        if path:
            out.append(path)
    return out


def primary_disk_path(xml_text: str) -> str:
    sources = disk_sources(xml_text)
    return sources[0] if sources else ''


class Virt:
    """Operations against libvirt and the disk/image tooling."""

    def __init__(self, uri: str = ''):
        self.uri = uri

    def virsh_cmd(self, *args: str) -> list[str]:
        if self.uri:
            return ['virsh', '-c', self.uri, *args]
        return ['virsh', *args]

    def _virsh(self, *args: str, capture: bool = True) -> CmdResult:
        return run_cmd(self.virsh_cmd(*args), check=False, capture=capture)

    # -- queries ----------------------------------------------------------

    def dominfo(self, name: str) -> CmdResult:
        return self._virsh('dominfo', name)

    def domain_state(self, name: str) -> str:
        res = self.dominfo(name)
        if res.code == 0:
            return STATE_DEFINED
        text = f'{res.stderr}\n{res.stdout}'.lower()
        if any(marker in text for marker in _NOT_FOUND_MARKERS):
            return STATE_ABSENT
        log.debug(
            'dominfo {} failed without a not-found marker: {}',
            name,
            res.stderr.strip(),
        )
        return STATE_UNKNOWN

    def domain_exists(self, name: str) -> bool:
        return self.domain_state(name) == STATE_DEFINED

    def list_all(self) -> CmdResult:
        return self._virsh('list', '--all')

    def dumpxml(self, name: str) -> str:
        res = self._virsh('dumpxml', name)
        return res.stdout if res.code == 0 else ''

    def domifaddr(self, name: str, source: str | None = None) -> CmdResult:
        args = ['domifaddr', name]
        if source:
            args += ['--source', source]
        return self._virsh(*args)

    def interface_addresses(
        self, name: str, source: str | None = 'agent'
    ) -> list[InterfaceAddress]:
        res = self.domifaddr(name, source=source)
        if res.code != 0:
            log.debug(
                'domifaddr {} (source={}) failed: {}',
                name,
                source,
                res.stderr.strip(),
            )
            return []
        return parse_domifaddr(res.stdout)

    # -- lifecycle --------------------------------------------------------

    def start(self, name: str) -> CmdResult:
        return self._virsh('start', name)

    def shutdown(self, name: str) -> CmdResult:
        return self._virsh('shutdown', name)

    def destroy(self, name: str) -> CmdResult:
        return self._virsh('destroy', name)

    def undefine(self, name: str) -> CmdResult:
        return self._virsh('undefine', name)

    def save(self, name: str, path: Path) -> CmdResult:
        return self._virsh('save', name, str(path))

    def restore(self, path: Path) -> CmdResult:
        return self._virsh('restore', str(path))

    def console(self, name: str) -> CmdResult:
        return self._virsh('console', name, capture=False)

    def ssh(self, user: str, host: str, extra: Sequence[str] = ()) -> CmdResult:
        cmd = [
            'ssh',
            '-o',
            'StrictHostKeyChecking=no',
            '-o',
            'UserKnownHostsFile=/dev/null',
            *extra,
            f'{user}@{host}',
        ]
        return run_cmd(cmd, check=False, capture=False)

    # -- provisioning -----------------------------------------------------

    def install(self, args: Sequence[str]) -> CmdResult:
        return run_cmd(['virt-install', *args], check=True, capture=True)

    def create_overlay(self, backing: Path, path: Path, size: str) -> CmdResult:
        return run_cmd(
            [
                'qemu-img',
                'create',
                '-f',
                'qcow2',
                '-F',
                'qcow2',
                '-b',
                str(backing),
                str(path),
                size,
            ],
            check=True,
            capture=True,
        )

    def create_blank(self, path: Path, size: str) -> CmdResult:
        return run_cmd(
            ['qemu-img', 'create', '-f', 'qcow2', str(path), size],
            check=True,
            capture=True,
        )

    def download(self, url: str, dest: Path) -> Path:
        """Download ``url`` to ``dest`` via a ``.part`` file and atomic rename."""
        ensure_dir(dest.parent)
        tmp = Path(str(dest) + '.part')
        tmp.unlink(missing_ok=True)
        try:
            run_cmd(
                ['curl', '-L', '--fail', '--progress-bar', '-o', str(tmp), url],
                check=True,
                capture=False,
            )
        except CmdError:
            tmp.unlink(missing_ok=True)
            raise
        os.replace(tmp, dest)
        return dest
