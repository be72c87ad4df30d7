import inspect
import logging
from typing import Any, Callable, List

from src.domain.models import RepositoryChanges

logger = logging.getLogger(__name__)

ChangesListener = Callable[[RepositoryChanges], Any]


class ChangeEmitter:
    """
    Ordered observer list for the ``changes`` event of one repository.
    Listeners may be plain callables or coroutine functions.
    """

    def __init__(self) -> None:
        self._listeners: List[ChangesListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: ChangesListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangesListener) -> None:
        """Removes the earliest registration of ``listener``; unknown listeners are ignored."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            logger.debug(f"Listener {listener!r} was not subscribed.")

    def clear(self) -> None:
        self._listeners.clear()

    async def emit(self, changes: RepositoryChanges) -> None:
        """
        Invokes every listener in registration order with the same changes value.
        A failing listener is logged and skipped so later listeners still run.
        """
        # Copy so listeners may (un)subscribe while being notified
        for listener in list(self._listeners):
            try:
                result = listener(changes)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Listener {listener!r} failed while handling changes.")
