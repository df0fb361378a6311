"""Build resolution: artifact cache, source checkout, and build orchestration."""

from fp_harness.build.cache import Artifact, ArtifactCache, CacheEntry, cache_key
from fp_harness.build.orchestrator import BuildError, BuildOrchestrator, BuildReport
from fp_harness.build.source import (
    GitCommandError,
    GitSourceFetcher,
    SourceFetcher,
    SourceFetchError,
    resolve_remote,
)

__all__ = [
    "Artifact",
    "ArtifactCache",
    "BuildError",
    "BuildOrchestrator",
    "BuildReport",
    "CacheEntry",
    "GitCommandError",
    "GitSourceFetcher",
    "SourceFetchError",
    "SourceFetcher",
    "cache_key",
    "resolve_remote",
]
