"""Core capability abstractions.

Provides:
- Tool / Resource / Prompt: immutable capability values
- tool / resource / prompt: decorator helpers building them from functions
- UriTemplate: resource URI template matching and overlap analysis
"""

from .capability import (
    Arguments,
    Capability,
    CapabilityKind,
    EmptyArguments,
    Handler,
    Prompt,
    Resource,
    Tool,
    prompt,
    resource,
    tool,
)
from .template import UriTemplate

__all__ = [
    "Arguments",
    "Capability",
    "CapabilityKind",
    "EmptyArguments",
    "Handler",
    "Prompt",
    "Resource",
    "Tool",
    "UriTemplate",
    "prompt",
    "resource",
    "tool",
]
