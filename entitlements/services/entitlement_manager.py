"""
Entitlement Manager - Observable "has pro" flag.

The flag is the only state the application keeps; it is written by the
subscriptions manager and read by the UI layer.
"""

import json
from collections.abc import Callable
from pathlib import Path

from structlog import get_logger

logger = get_logger(__name__)

EntitlementListener = Callable[[bool], None]


class EntitlementManager:
    """Holds the entitlement flag and notifies listeners when it flips."""

    def __init__(self, state_path: str | Path | None = None) -> None:
        """
        Initialize entitlement manager.

        Args:
            state_path: JSON file the flag is persisted to (in-memory when None)
        """
        self._state_path = Path(state_path) if state_path else None
        self._listeners: list[EntitlementListener] = []
        self._has_pro = self._load()

    def _load(self) -> bool:
        if self._state_path is None or not self._state_path.exists():
            return False
        try:
            data = json.loads(self._state_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "entitlement_state_unreadable",
                path=str(self._state_path),
                error=str(exc),
            )
            return False
        return bool(data.get("has_pro", False)) if isinstance(data, dict) else False

    def _save(self) -> None:
        if self._state_path is None:
            return
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        self._state_path.write_text(json.dumps({"has_pro": self._has_pro}), encoding="utf-8")

    @property
    def has_pro(self) -> bool:
        """Whether the user currently holds an active, validated subscription."""
        return self._has_pro

    @has_pro.setter
    def has_pro(self, value: bool) -> None:
        if value == self._has_pro:
            return
        self._has_pro = value
        self._save()
        logger.info("entitlement_changed", has_pro=value)
        for listener in list(self._listeners):
            listener(value)

    def subscribe(self, listener: EntitlementListener) -> Callable[[], None]:
        """
        Register a listener called with the new value on every change.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
