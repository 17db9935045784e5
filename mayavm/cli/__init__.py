"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import MayaVMModalCLI, main

__all__ = ['MayaVMModalCLI', 'main']
