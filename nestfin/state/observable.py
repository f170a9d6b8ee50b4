"""Reactive state container with Qt signal integration.

Observable wraps a single value and notifies listeners when it changes.
What counts as a change is decided by an equality function chosen per
observable: value equality by default, reference identity for large
immutable snapshots that are always replaced wholesale.
"""

import operator
from typing import Callable, Generic, Optional, TypeVar

from PySide6.QtCore import QObject, Signal

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class Observable(QObject, Generic[T]):
    """Reactive state container with Qt signal integration.

    Example:
        >>> counter = Observable(0)
        >>> counter.changed.connect(lambda val: print(f"New value: {val}"))
        >>> counter.set(5)  # Prints: "New value: 5"

        >>> snapshot = Observable(state, is_equal=operator.is_)
        >>> snapshot.set(state)  # Same object, no emission
    """

    changed = Signal(object)  # Emitted when value changes

    def __init__(
        self,
        initial: T,
        is_equal: Callable[[T, T], bool] = operator.eq,
        parent: Optional[QObject] = None,
    ):
        """Initialize observable with initial value.

        Args:
            initial: Initial value
            is_equal: Equality used to suppress redundant emissions
            parent: Optional Qt parent object
        """
        super().__init__(parent)
        self._value = initial
        self._is_equal = is_equal

    @property
    def value(self) -> T:
        """Get current value."""
        return self._value

    def set(self, new_value: T) -> bool:
        """Set new value and emit change signal if different.

        Returns:
            True if the value changed and listeners were notified
        """
        if self._is_equal(self._value, new_value):
            return False
        self._value = new_value
        self.changed.emit(new_value)
        return True

    def update(self, fn: Callable[[T], T]) -> bool:
        """Update value using a function of the current value."""
        return self.set(fn(self._value))

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """Subscribe to value changes.

        Args:
            callback: Function called with new value when changed

        Returns:
            Callable that disconnects the callback

        Example:
            >>> counter = Observable(0)
            >>> unsubscribe = counter.subscribe(lambda val: print(val))
            >>> counter.set(5)  # Prints: 5
            >>> unsubscribe()
        """
        self.changed.connect(callback)

        def unsubscribe() -> None:
            try:
                self.changed.disconnect(callback)
            except (RuntimeError, TypeError):
                pass  # Already disconnected

        return unsubscribe

    def emit_changed(self) -> None:
        """Force emit the changed signal with current value."""
        self.changed.emit(self._value)
