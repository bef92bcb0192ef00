"""Tests for the await registry."""

import threading
import pytest

from commandinator.bot.awaits import Await, AwaitRegistry
from commandinator.bot.types import Normalized, SentMessage
from commandinator.errors import AwaitStateError, ConfigurationError


def _prefixed(content):
    return Normalized(content=content, prefixed=True)


def _plain(content):
    return Normalized(content=content, prefixed=False)


@pytest.fixture
def registry():
    registry = AwaitRegistry()
    yield registry
    registry.clear_all()


class TestRegister:
    """Tests for arming awaits."""

    def test_fallbacks_bind_key(self, registry):
        wait = Await(handler=lambda ctx: None)
        response = SentMessage(id="r1", channel_id="chan")

        registry.register(wait, fallback_channel="chan", fallback_user="user", trigger_response=response)

        assert wait.armed
        assert wait.key == "chanuser"
        assert wait.bound_channel_id == "chan"
        assert wait.bound_user_id == "user"
        assert wait.trigger_response is response
        assert registry.get("chan", "user") is wait
        assert wait in registry

    def test_explicit_ids_win(self, registry):
        wait = Await(handler=lambda ctx: None, channel_id="other", user_id="someone")

        registry.register([wait], fallback_channel="chan", fallback_user="user")

        assert registry.get("other", "someone") is wait
        assert registry.get("chan", "user") is None

    def test_rejects_non_await(self, registry):
        with pytest.raises(TypeError):
            registry.register(["not an await"], "chan", "user")

    def test_missing_channel(self, registry):
        with pytest.raises(ConfigurationError):
            registry.register(Await(handler=lambda ctx: None), fallback_user="user")

    def test_missing_user(self, registry):
        with pytest.raises(ConfigurationError):
            registry.register(Await(handler=lambda ctx: None), fallback_channel="chan")

    def test_second_registration_replaces_first(self, registry):
        first = Await(handler=lambda ctx: None)
        second = Await(handler=lambda ctx: None)

        registry.register(first, "chan", "user")
        registry.register(second, "chan", "user")

        assert registry.get("chan", "user") is second
        assert len(registry) == 1

    def test_separate_users_coexist(self, registry):
        registry.register(Await(handler=lambda ctx: None), "chan", "alice")
        registry.register(Await(handler=lambda ctx: None), "chan", "bob")

        assert len(registry) == 2

    def test_rearming_moves_entry(self, registry):
        """Test that re-registering an armed await drops its old key."""
        cancelled = []
        wait = Await(handler=lambda ctx: None, on_cancel=cancelled.append)

        registry.register(wait, "chan-a", "user")
        registry.register(wait, "chan-b", "user")

        assert len(registry) == 1
        assert registry.get("chan-a", "user") is None
        assert registry.get("chan-b", "user") is wait

        registry.clear(wait)

        assert len(registry) == 0
        assert cancelled == [wait]

    def test_rearming_keeps_other_await(self, registry):
        first = Await(handler=lambda ctx: None)
        moved = Await(handler=lambda ctx: None)
        registry.register(moved, "chan-a", "user")
        registry.register(first, "chan-a", "user")

        registry.register(moved, "chan-b", "user")

        assert registry.get("chan-a", "user") is first
        assert registry.get("chan-b", "user") is moved


class TestLookup:
    """Tests for matching messages to awaits."""

    def test_match(self, registry, make_message, author, group_channel):
        wait = Await(handler=lambda ctx: None)
        registry.register(wait, group_channel.id, author.id)

        assert registry.lookup(make_message("yes"), _plain("yes")) is wait

    def test_other_user_ignored(self, registry, make_message, owner, group_channel):
        registry.register(Await(handler=lambda ctx: None), group_channel.id, "someone-else")

        assert registry.lookup(make_message("yes", user=owner), _plain("yes")) is None

    def test_check_receives_normalized_content(self, registry, make_message, author, group_channel):
        seen = []

        def check(message, content):
            seen.append(content)
            return content == "ok"

        wait = Await(handler=lambda ctx: None, check=check)
        registry.register(wait, group_channel.id, author.id)

        assert registry.lookup(make_message("!ok"), _prefixed("ok")) is wait
        assert seen == ["ok"]

    def test_failed_check_keeps_await(self, registry, make_message, author, group_channel):
        wait = Await(handler=lambda ctx: None, check=lambda m, c: c == "yes")
        registry.register(wait, group_channel.id, author.id)

        assert registry.lookup(make_message("no"), _plain("no")) is None
        assert wait.armed
        assert registry.lookup(make_message("yes"), _plain("yes")) is wait

    def test_one_time_cleared_after_rejection(self, registry, make_message, author, group_channel):
        cancelled = []
        wait = Await(
            handler=lambda ctx: None,
            check=lambda m, c: c == "yes",
            one_time=True,
            on_cancel=cancelled.append,
        )
        registry.register(wait, group_channel.id, author.id)

        assert registry.lookup(make_message("no"), _plain("no")) is None
        assert not wait.armed
        assert registry.get(group_channel.id, author.id) is None
        assert cancelled == [wait]

        assert registry.lookup(make_message("yes"), _plain("yes")) is None

    def test_require_prefix(self, registry, make_message, author, group_channel):
        wait = Await(handler=lambda ctx: None, require_prefix=True, one_time=True)
        registry.register(wait, group_channel.id, author.id)

        assert registry.lookup(make_message("go"), _plain("go")) is None
        assert wait.armed
        assert registry.lookup(make_message("!go"), _prefixed("go")) is wait


class TestClearAndRefresh:
    """Tests for retiring and refreshing awaits."""

    def test_clear_before_arming(self):
        wait = Await(handler=lambda ctx: None)

        with pytest.raises(AwaitStateError):
            wait.clear()

    def test_refresh_before_arming(self, registry):
        with pytest.raises(AwaitStateError):
            registry.refresh(Await(handler=lambda ctx: None))

    def test_clear_runs_on_cancel_once(self, registry):
        cancelled = []
        wait = Await(handler=lambda ctx: None, on_cancel=cancelled.append)
        registry.register(wait, "chan", "user")

        assert registry.clear(wait) is True
        assert registry.clear(wait) is False
        assert cancelled == [wait]
        assert len(registry) == 0

    def test_clear_through_await(self, registry):
        wait = Await(handler=lambda ctx: None)
        registry.register(wait, "chan", "user")

        assert wait.clear() is wait
        assert not wait.armed

    def test_clear_replaced_await_keeps_replacement(self, registry):
        first = Await(handler=lambda ctx: None)
        second = Await(handler=lambda ctx: None)
        registry.register(first, "chan", "user")
        registry.register(second, "chan", "user")

        registry.clear(first)

        assert registry.get("chan", "user") is second

    def test_refresh_restarts_timer(self, registry):
        wait = Await(handler=lambda ctx: None, timeout=60)
        registry.register(wait, "chan", "user")
        old_timer = wait._timer

        assert registry.refresh(wait) is True
        assert wait._timer is not old_timer
        assert old_timer.finished.is_set()

    def test_refresh_after_clear(self, registry):
        wait = Await(handler=lambda ctx: None)
        registry.register(wait, "chan", "user")
        registry.clear(wait)

        assert registry.refresh(wait) is False

    def test_clear_all_skips_callbacks(self, registry):
        cancelled = []
        wait = Await(handler=lambda ctx: None, on_cancel=cancelled.append)
        registry.register(wait, "chan", "user")

        registry.clear_all()

        assert len(registry) == 0
        assert not wait.armed
        assert cancelled == []

    def test_await_does_not_keep_registry_alive(self):
        registry = AwaitRegistry()
        wait = Await(handler=lambda ctx: None, timeout=60)
        registry.register(wait, "chan", "user")
        registry.clear_all()
        del registry

        with pytest.raises(AwaitStateError):
            wait.refresh()


class TestExpiry:
    """Tests for await timeouts."""

    def test_expiry_runs_on_cancel(self, registry):
        expired = threading.Event()
        wait = Await(handler=lambda ctx: None, timeout=0.05, on_cancel=lambda w: expired.set())
        registry.register(wait, "chan", "user")

        assert expired.wait(timeout=2)
        assert not wait.armed
        assert registry.get("chan", "user") is None

    def test_stale_timer_leaves_replacement(self, registry):
        """Test that the first await's timer does not remove its replacement."""
        expired = threading.Event()
        first = Await(handler=lambda ctx: None, timeout=0.05, on_cancel=lambda w: expired.set())
        second = Await(handler=lambda ctx: None, timeout=60)
        registry.register(first, "chan", "user")
        registry.register(second, "chan", "user")

        assert expired.wait(timeout=2)
        assert registry.get("chan", "user") is second
        assert second.armed

    def test_superseded_generation_is_ignored(self, registry):
        cancelled = []
        wait = Await(handler=lambda ctx: None, timeout=60, on_cancel=cancelled.append)
        registry.register(wait, "chan", "user")
        stale = wait._generation
        registry.refresh(wait)

        registry._expire(wait, stale)

        assert wait.armed
        assert cancelled == []

    def test_failing_cancel_callback_is_logged(self, registry, caplog):
        def explode(wait):
            raise RuntimeError("boom")

        wait = Await(handler=lambda ctx: None, timeout=60, on_cancel=explode)
        registry.register(wait, "chan", "user")

        registry._expire(wait, wait._generation)

        assert not wait.armed
        assert "Await cancel callback failed" in caplog.text
