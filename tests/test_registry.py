# tests/test_registry.py

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from deadline_relay.core.locks import KeyedLocks
from deadline_relay.identity.linking import build_link_hint, connection_status, link_channel
from deadline_relay.identity.registry import UNLINKED_OWNER, BindOutcome, IdentityRegistry


@pytest.fixture()
def registry(tmp_path: Path) -> IdentityRegistry:
    return IdentityRegistry(tmp_path / "bindings.sqlite3")


def test_start_without_owner_then_link(registry: IdentityRegistry) -> None:
    assert registry.bind("chat-1") == BindOutcome.CREATED
    binding = registry.get("chat-1")
    assert binding is not None
    assert binding.owner_id == UNLINKED_OWNER
    assert binding.is_linked is False
    assert registry.resolve(UNLINKED_OWNER) == set()

    assert registry.bind("chat-1", "u1") == BindOutcome.UPDATED
    assert registry.resolve("u1") == {"chat-1"}


def test_placeholder_never_replaces_a_real_owner(registry: IdentityRegistry) -> None:
    registry.bind("chat-1", "u1")

    assert registry.bind("chat-1") == BindOutcome.UNCHANGED
    assert registry.bind("chat-1", "  ") == BindOutcome.UNCHANGED
    assert registry.bind("chat-1", UNLINKED_OWNER) == BindOutcome.UNCHANGED
    assert registry.get("chat-1").owner_id == "u1"


def test_last_write_wins_between_command_and_linking_call(registry: IdentityRegistry) -> None:
    registry.bind("chat-1", "u1")  # /start u1 from the chat
    assert link_channel(registry, owner_id="u2", channel_id="chat-1") == BindOutcome.UPDATED
    assert registry.resolve("u1") == set()
    assert registry.resolve("u2") == {"chat-1"}

    registry.bind("chat-1", "u1")
    assert registry.get("chat-1").owner_id == "u1"


def test_bind_and_unbind_are_idempotent(registry: IdentityRegistry) -> None:
    assert registry.bind("chat-1", "u1") == BindOutcome.CREATED
    assert registry.bind("chat-1", "u1") == BindOutcome.UNCHANGED
    assert registry.count() == 1

    assert registry.unbind("chat-1") is True
    assert registry.unbind("chat-1") is False
    assert registry.unbind("never-seen") is False
    assert registry.is_bound("chat-1") is False


def test_empty_channel_is_rejected(registry: IdentityRegistry) -> None:
    with pytest.raises(ValueError):
        registry.bind("  ", "u1")
    with pytest.raises(ValueError):
        link_channel(registry, owner_id="", channel_id="chat-1")
    with pytest.raises(ValueError):
        link_channel(registry, owner_id="u1", channel_id="")


def test_concurrent_binds_leave_one_row_per_channel(registry: IdentityRegistry) -> None:
    owners = [f"u{i}" for i in range(8)]
    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(lambda o: registry.bind("chat-1", o), owners))

    assert outcomes.count(BindOutcome.CREATED) == 1
    assert registry.count() == 1
    final = registry.get("chat-1").owner_id
    assert final in owners
    assert registry.resolve(final) == {"chat-1"}


def test_connection_status_and_link_hint(registry: IdentityRegistry) -> None:
    assert connection_status(registry, "u1") is False
    registry.bind("chat-1", "u1")
    assert connection_status(registry, "u1") is True

    assert build_link_hint("@relay_bot", "user 42") == "https://t.me/relay_bot?start=user%2042"
    assert build_link_hint("", "u1") is None


def test_keyed_locks_drop_unused_keys() -> None:
    locks = KeyedLocks()
    seen: list[int] = []

    with locks.hold("a"):
        assert len(locks) == 1
        t = threading.Thread(target=lambda: seen.append(len(locks)))
        t.start()
        t.join()

    assert seen == [1]
    assert len(locks) == 0
