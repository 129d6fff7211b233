"""Registry of message handlers keyed by string identifiers."""

import logging
from typing import Callable, Dict, Generic, Hashable, Iterator, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
H = TypeVar("H", bound=Callable)

logger = logging.getLogger(__name__)


class HandlerRegistry(Generic[K, H]):
    """
    Owned mapping from identifier to handler.

    Registration never silently replaces an existing handler; both
    register() and unregister() report whether they changed anything.
    """

    def __init__(self, name: str = "handlers") -> None:
        self.name = name
        self._handlers: Dict[K, H] = {}

    def register(self, key: K, handler: H) -> bool:
        """Add a handler. Returns False if the key is already taken."""
        if key in self._handlers:
            logger.debug("%s: %r already registered", self.name, key)
            return False
        self._handlers[key] = handler
        return True

    def unregister(self, key: K) -> bool:
        """Remove a handler. Returns False if the key was not registered."""
        return self._handlers.pop(key, None) is not None

    def get(self, key: K) -> Optional[H]:
        return self._handlers.get(key)

    def clear(self) -> None:
        self._handlers.clear()

    def items(self) -> Iterator[Tuple[K, H]]:
        """Snapshot of registered pairs, safe against mutation during dispatch."""
        return iter(list(self._handlers.items()))

    def __contains__(self, key: object) -> bool:
        return key in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
