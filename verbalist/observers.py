"""Minimal change-notification plumbing shared by the view models."""

from __future__ import annotations

import logging
from typing import Callable, Generic, List, TypeVar

T = TypeVar("T")


class Subscribers(Generic[T]):
    """An ordered list of callbacks notified with a single value."""

    def __init__(self) -> None:
        self._callbacks: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def notify(self, value: T) -> None:
        for callback in list(self._callbacks):
            try:
                callback(value)
            except Exception:  # noqa: BLE001 - one bad subscriber must not starve the rest
                logging.exception("Subscriber %r failed", callback)

    def __len__(self) -> int:
        return len(self._callbacks)
