"""Execution profiles for parsing behavior.

Every caller uses the same schema language and engine; profiles only
configure execution parameters (limits, windows, caching, timeouts), never
parsing semantics.
"""

from __future__ import annotations

from dataclasses import dataclass, field

KIB = 1024
MIB = 1024 * KIB


@dataclass(frozen=True)
class EngineLimits:
    """Safety limits applied by the interpretation engine.

    Attributes:
        max_repeat_items: Hard ceiling on iterations of any repeated field
        max_depth: Maximum nesting of user types
        max_string_bytes: Longest str/bytes value kept in a node
    """

    max_repeat_items: int = 10_000
    max_depth: int = 64
    max_string_bytes: int = 1_000_000


@dataclass(frozen=True)
class RuntimeProfile:
    """Configuration for a `Runtime` and its worker.

    Attributes:
        name: Profile identifier
        limits: Engine safety limits
        cache_capacity: Number of parse results kept in the LRU cache
        large_file_threshold: Buffers above this size are parsed by window in parse_range
        viewport_context: Bytes parsed on each side of a requested range
        max_viewport: Largest range parse_range will honor
        detect_prefix: Bytes scanned for signatures during detection
        worker_timeout: Seconds before a worker request is reported as failed
        worker_threads: Size of the worker thread pool
    """

    name: str
    limits: EngineLimits = field(default_factory=EngineLimits)
    cache_capacity: int = 128
    large_file_threshold: int = 10 * MIB
    viewport_context: int = 1 * MIB
    max_viewport: int = 2 * MIB
    detect_prefix: int = 64 * KIB
    worker_timeout: float = 30.0
    worker_threads: int = 2


# ============================================================================
# PROFILE DEFINITIONS
# ============================================================================

INTERACTIVE_PROFILE = RuntimeProfile(
    name="interactive",
    cache_capacity=128,  # Keep recent viewport parses around while scrolling
    worker_threads=2,
)

BATCH_PROFILE = RuntimeProfile(
    name="batch",
    limits=EngineLimits(max_repeat_items=1_000_000, max_depth=128),
    cache_capacity=16,  # Files are usually parsed once
    large_file_threshold=256 * MIB,
    worker_timeout=300.0,
    worker_threads=4,
)


# ============================================================================
# PROFILE REGISTRY
# ============================================================================

PROFILES = {
    "interactive": INTERACTIVE_PROFILE,
    "batch": BATCH_PROFILE,
}

DEFAULT_PROFILE = INTERACTIVE_PROFILE


def get_profile(name: str) -> RuntimeProfile:
    """Get runtime profile by name.

    Args:
        name: Profile name (interactive, batch)

    Returns:
        RuntimeProfile instance

    Raises:
        KeyError: If profile name not found
    """
    return PROFILES[name]
