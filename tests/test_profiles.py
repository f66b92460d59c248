from __future__ import annotations

import dataclasses

import pytest

from bytelens.core.profiles import (
    BATCH_PROFILE,
    DEFAULT_PROFILE,
    INTERACTIVE_PROFILE,
    MIB,
    PROFILES,
    EngineLimits,
    get_profile,
)


def test_registry_contains_profiles() -> None:
    assert get_profile("interactive") is INTERACTIVE_PROFILE
    assert get_profile("batch") is BATCH_PROFILE
    assert DEFAULT_PROFILE is INTERACTIVE_PROFILE
    assert set(PROFILES) == {"interactive", "batch"}


def test_unknown_profile() -> None:
    with pytest.raises(KeyError):
        get_profile("turbo")


def test_interactive_defaults() -> None:
    p = INTERACTIVE_PROFILE
    assert p.max_viewport == 2 * MIB
    assert p.large_file_threshold == 10 * MIB
    assert p.viewport_context == 1 * MIB
    assert p.limits == EngineLimits()


def test_batch_is_more_permissive() -> None:
    assert BATCH_PROFILE.limits.max_repeat_items > INTERACTIVE_PROFILE.limits.max_repeat_items
    assert BATCH_PROFILE.worker_timeout > INTERACTIVE_PROFILE.worker_timeout


def test_profiles_are_frozen() -> None:
    with pytest.raises(dataclasses.FrozenInstanceError):
        INTERACTIVE_PROFILE.cache_capacity = 1  # type: ignore[misc]
