from __future__ import annotations

import threading
from types import TracebackType

from coordinator.errors import ReentrantCallError


class NonReentrantGuard:
    """Scoped mutual exclusion for the whole settle operation.

    Another thread entering waits its turn; the thread already holding the
    guard (e.g. a token transfer calling back into the engine) is refused
    with ReentrantCallError instead of deadlocking or interleaving.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owner: int | None = None

    @property
    def held(self) -> bool:
        return self._owner is not None

    def __enter__(self) -> "NonReentrantGuard":
        me = threading.get_ident()
        if self._owner == me:
            raise ReentrantCallError()
        self._lock.acquire()
        self._owner = me
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._owner = None
        self._lock.release()
