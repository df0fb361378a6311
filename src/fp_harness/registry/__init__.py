"""Registry of buildable fault-proof VMs (platforms) and programs."""

from fp_harness.registry.model import (
    NO_BUILD,
    BuildSpec,
    NoBuild,
    PlatformSpec,
    ProgramSpec,
    Registry,
)
from fp_harness.registry.parser import (
    RegistryIssue,
    RegistryValidationError,
    load_registry,
    parse_registry,
)

__all__ = [
    "BuildSpec",
    "NO_BUILD",
    "NoBuild",
    "PlatformSpec",
    "ProgramSpec",
    "Registry",
    "RegistryIssue",
    "RegistryValidationError",
    "load_registry",
    "parse_registry",
]
