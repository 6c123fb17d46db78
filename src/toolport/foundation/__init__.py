"""Foundation - core building blocks for toolport.

Contains: capability definitions, URI templates, error taxonomy, registry, config.
"""

from __future__ import annotations

__all__ = [
    # Core
    "Arguments", "Capability", "CapabilityKind", "EmptyArguments", "Prompt", "Resource", "Tool",
    "UriTemplate", "prompt", "resource", "tool",
    # Errors
    "ErrorBody", "ErrorKind", "ToolportError",
    # Registry
    "CapabilityRegistry", "Catalogs",
    # Config
    "ToolportSettings", "get_settings", "clear_settings_cache",
]


def __getattr__(name: str):
    """Lazy imports to avoid circular dependencies."""
    if name in ("Arguments", "Capability", "CapabilityKind", "EmptyArguments", "Prompt", "Resource", "Tool",
                "UriTemplate", "prompt", "resource", "tool"):
        from . import core
        return getattr(core, name)

    if name in ("ErrorBody", "ErrorKind", "ToolportError"):
        from . import errors
        return getattr(errors, name)

    if name in ("CapabilityRegistry", "Catalogs"):
        from . import registry
        return getattr(registry, name)

    if name in ("ToolportSettings", "get_settings", "clear_settings_cache"):
        from . import config
        return getattr(config, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
