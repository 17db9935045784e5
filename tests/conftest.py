"""Shared test fixtures: a recording fake for the virtualization tools."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

import pytest

from mayavm.config import VMConfig
from mayavm.util import CmdResult
from mayavm.virt import Virt

LIST_HEADER = """\
 Id   Name            State
--------------------------------
"""


class FakeVirt(Virt):
    """In-memory libvirt: tracks one domain and records every call."""

    def __init__(
        self,
        *,
        defined: bool = False,
        xml: str = '',
        domifaddr_text: str = '',
        start_code: int = 0,
        reachable: bool = True,
    ):
        super().__init__('')
        self.defined = defined
        self.xml = xml
        self.domifaddr_text = domifaddr_text
        self.start_code = start_code
        self.reachable = reachable
        self.calls: list[tuple] = []
        self.counts: Counter = Counter()

    def _record(self, op: str, *args) -> None:
        self.calls.append((op, *args))
        self.counts[op] += 1

    def dominfo(self, name):
        self._record('dominfo', name)
        if not self.reachable:
            return CmdResult(1, '', 'error: failed to connect to the hypervisor')
        if self.defined:
            return CmdResult(0, f'Name:           {name}\nState:          running\n', '')
        return CmdResult(1, '', f"error: failed to get domain '{name}'\n")

    def list_all(self):
        self._record('list_all')
        text = LIST_HEADER
        if self.defined:
            text += ' 1    mayastor-test   running\n'
        return CmdResult(0, text, '')

    def dumpxml(self, name):
        self._record('dumpxml', name)
        return self.xml if self.defined else ''

    def domifaddr(self, name, source=None):
        self._record('domifaddr', name, source)
        if not self.defined:
            return CmdResult(1, '', 'error: failed to get domain')
        return CmdResult(0, self.domifaddr_text, '')

    def start(self, name):
        self._record('start', name)
        return CmdResult(self.start_code, '', '')

    def shutdown(self, name):
        self._record('shutdown', name)
        return CmdResult(0 if self.defined else 1, '', '')

    def destroy(self, name):
        self._record('destroy', name)
        return CmdResult(0 if self.defined else 1, '', 'error: domain is not running')

    def undefine(self, name):
        self._record('undefine', name)
        code = 0 if self.defined else 1
        self.defined = False
        return CmdResult(code, '', '')

    def save(self, name, path):
        self._record('save', name, Path(path))
        Path(path).write_text('state', encoding='utf-8')
        return CmdResult(0, '', '')

    def restore(self, path):
        self._record('restore', Path(path))
        return CmdResult(0, '', '')

    def console(self, name):
        self._record('console', name)
        return CmdResult(0, '', '')

    def ssh(self, user, host, extra=()):
        self._record('ssh', user, host)
        return CmdResult(0, '', '')

    def install(self, args):
        self._record('install', list(args))
        self.defined = True
        return CmdResult(0, '', '')

    def create_overlay(self, backing, path, size):
        self._record('create_overlay', Path(backing), Path(path), size)
        Path(path).write_text(f'overlay {size}', encoding='utf-8')
        return CmdResult(0, '', '')

    def create_blank(self, path, size):
        self._record('create_blank', Path(path), size)
        Path(path).write_text(f'blank {size}', encoding='utf-8')
        return CmdResult(0, '', '')

    def download(self, url, dest):
        self._record('download', url, Path(dest))
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        Path(dest).write_text('image', encoding='utf-8')
        return Path(dest)


@pytest.fixture
def fake_virt() -> FakeVirt:
    return FakeVirt()


@pytest.fixture
def vm_cfg(tmp_path: Path) -> VMConfig:
    """Default config rooted in a temporary working directory."""
    workspace = tmp_path / 'workspace'
    workspace.mkdir()
    return VMConfig(workdir=str(tmp_path), workspace_path=str(workspace))
