"""In-process change notification bus.

A minimal observer registry used in two places: ticket stores announce
"something changed" to the scheduler, and the scheduler announces queue
composition changes to UI panels and other in-process observers.

Notifications carry no payload; listeners re-query whatever state they
care about. Fan-out is synchronous and in registration order. A listener
that raises is logged and skipped so the remaining listeners, and the
operation that triggered the notification, are unaffected.
"""

from __future__ import annotations

from typing import Callable

import structlog

logger = structlog.get_logger(__name__)

Listener = Callable[[], None]


class Disposable:
    """Handle returned by :meth:`ChangeNotifier.subscribe`.

    Calling :meth:`dispose` deregisters the listener. Disposing more than
    once is a no-op.
    """

    def __init__(self, on_dispose: Callable[[], None]) -> None:
        self._on_dispose: Callable[[], None] | None = on_dispose

    @property
    def disposed(self) -> bool:
        return self._on_dispose is None

    def dispose(self) -> None:
        if self._on_dispose is None:
            return
        callback, self._on_dispose = self._on_dispose, None
        callback()


class ChangeNotifier:
    """Synchronous publish/subscribe registry with listener isolation.

    Attributes:
        name: Label used in log events to tell buses apart.
    """

    def __init__(self, name: str = "changes") -> None:
        self.name = name
        self._listeners: list[Listener] = []
        self._logger = logger.bind(component="ChangeNotifier", bus=name)

    def subscribe(self, listener: Listener) -> Disposable:
        """Register a callback.

        The same callable may be registered more than once; each
        registration is independent and is removed by its own handle.

        Args:
            listener: Zero-argument callable invoked on every notification.

        Returns:
            Disposable whose ``dispose()`` deregisters this registration.
        """
        entry = _Registration(listener)
        self._listeners.append(entry)

        def _remove() -> None:
            try:
                self._listeners.remove(entry)
            except ValueError:
                pass

        return Disposable(_remove)

    def notify(self) -> None:
        """Invoke every registered listener.

        Iterates over a snapshot so listeners may subscribe or dispose
        during delivery without affecting the current round.
        """
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                self._logger.error(
                    "change_listener_failed",
                    error=str(e),
                    exc_info=True,
                )

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def clear(self) -> None:
        """Drop all listeners."""
        self._listeners.clear()


class _Registration:
    """Wraps a listener so identical callables get distinct identities."""

    __slots__ = ("listener",)

    def __init__(self, listener: Listener) -> None:
        self.listener = listener

    def __call__(self) -> None:
        self.listener()
