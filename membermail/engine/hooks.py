"""Hook handler table for queued jobs and listeners for lifecycle events."""

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

_HOOK_ID_RE = re.compile(r"[^a-z0-9_\-]")


def normalize_hook_id(hook_id: Any) -> str:
    """Lowercase hook ids and drop characters outside `[a-z0-9_-]`."""
    if not isinstance(hook_id, str):
        return ""
    return _HOOK_ID_RE.sub("", hook_id.strip().lower())


class HookRegistry:
    """Map of hook id to the single handler that serves it."""

    def __init__(self):
        self._handlers: Dict[str, Callable[..., Any]] = {}

    def register(self, hook_id: str, handler: Callable[..., Any]) -> None:
        key = normalize_hook_id(hook_id)
        if not key:
            raise ValueError(f"Invalid hook id: {hook_id!r}")
        self._handlers[key] = handler

    def resolve(self, hook_id: str) -> Optional[Callable[..., Any]]:
        return self._handlers.get(normalize_hook_id(hook_id))

    def is_registered(self, hook_id: str) -> bool:
        return self.resolve(hook_id) is not None

    def dispatch(self, hook_id: str, args: Sequence[Any] = ()) -> bool:
        """Invoke the handler for `hook_id`.

        Returns:
            False when no handler is registered, True otherwise. Handler
            exceptions propagate to the caller.
        """
        handler = self.resolve(hook_id)
        if handler is None:
            return False
        handler(*args)
        return True


class EventBus:
    """Named lifecycle events with any number of listeners."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}

    def subscribe(self, event: str, listener: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> int:
        """Call every listener; failures are logged and do not stop the others.

        Returns:
            Number of listeners that completed
        """
        completed = 0
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(*args, **kwargs)
                completed += 1
            except Exception as e:
                logger.error(f"Listener for event {event} failed: {type(e).__name__}: {str(e)}")
        return completed
