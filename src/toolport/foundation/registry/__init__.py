"""Capability registry with copy-on-write snapshots."""

from .registry import CapabilityRegistry, Catalogs, ChangeListener

__all__ = ["CapabilityRegistry", "Catalogs", "ChangeListener"]
