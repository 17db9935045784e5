"""Project-specific exception types."""

from __future__ import annotations


class MayaVMError(RuntimeError):
    """Base error for domain-level mayavm failures."""


class ConfigError(MayaVMError):
    """Raised when configuration input cannot be turned into a VM config."""


class DomainQueryError(MayaVMError):
    """Raised when libvirt cannot tell whether the domain exists."""


class GuestNotReadyError(MayaVMError):
    """Raised when the guest has no resolvable address yet."""


class SnapshotNotFoundError(MayaVMError):
    """Raised when restore is requested but no snapshot file exists."""
