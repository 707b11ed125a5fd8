"""Unit tests for the change notification bus."""

from __future__ import annotations

from ticketforge.events import ChangeNotifier, Disposable


class TestDisposable:
    """Test Disposable handles."""

    def test_dispose_runs_callback_once(self) -> None:
        """Test that disposing twice invokes the callback once."""
        calls: list[str] = []
        handle = Disposable(lambda: calls.append("disposed"))

        assert handle.disposed is False
        handle.dispose()
        handle.dispose()

        assert handle.disposed is True
        assert calls == ["disposed"]


class TestChangeNotifier:
    """Test ChangeNotifier fan-out and isolation."""

    def test_notify_in_registration_order(self) -> None:
        """Test that listeners run in the order they subscribed."""
        bus = ChangeNotifier("test")
        calls: list[str] = []
        bus.subscribe(lambda: calls.append("first"))
        bus.subscribe(lambda: calls.append("second"))

        bus.notify()

        assert calls == ["first", "second"]

    def test_dispose_stops_delivery(self) -> None:
        """Test that a disposed listener is no longer called."""
        bus = ChangeNotifier("test")
        calls: list[str] = []
        handle = bus.subscribe(lambda: calls.append("hit"))

        handle.dispose()
        bus.notify()

        assert calls == []
        assert bus.listener_count == 0

    def test_same_callable_registered_twice(self) -> None:
        """Test that each registration of one callable is independent."""
        bus = ChangeNotifier("test")
        calls: list[str] = []

        def listener() -> None:
            calls.append("hit")

        first = bus.subscribe(listener)
        bus.subscribe(listener)
        first.dispose()
        bus.notify()

        assert calls == ["hit"]
        assert bus.listener_count == 1

    def test_failing_listener_is_isolated(self) -> None:
        """Test that one raising listener does not stop the others."""
        bus = ChangeNotifier("test")
        calls: list[str] = []

        def broken() -> None:
            raise RuntimeError("listener bug")

        bus.subscribe(broken)
        bus.subscribe(lambda: calls.append("after"))

        bus.notify()

        assert calls == ["after"]

    def test_subscribe_during_notify_waits_for_next_round(self) -> None:
        """Test that a listener added mid-delivery is not called in that round."""
        bus = ChangeNotifier("test")
        calls: list[str] = []

        def adder() -> None:
            calls.append("adder")
            bus.subscribe(lambda: calls.append("late"))

        bus.subscribe(adder)
        bus.notify()
        assert calls == ["adder"]

        bus.notify()
        assert calls == ["adder", "adder", "late"]

    def test_clear_removes_all(self) -> None:
        """Test that clear drops every listener."""
        bus = ChangeNotifier("test")
        bus.subscribe(lambda: None)
        bus.subscribe(lambda: None)

        bus.clear()

        assert bus.listener_count == 0
