"""Alert gate: a single open/closed flag."""

from __future__ import annotations


class Gate:
    """Open/closed flag consulted before an alert may start.

    The control surface owns the value; the display surface holds a mirror.
    """

    def __init__(self, is_open: bool = True) -> None:
        self._is_open = is_open

    @property
    def is_open(self) -> bool:
        return self._is_open

    def set(self, is_open: bool) -> bool:
        """Set the gate. Returns True if the value changed."""
        changed = self._is_open != is_open
        self._is_open = is_open
        return changed

    def toggle(self) -> bool:
        """Flip the gate and return the new value."""
        self._is_open = not self._is_open
        return self._is_open

    def __repr__(self) -> str:
        return f"Gate({'open' if self._is_open else 'closed'})"
