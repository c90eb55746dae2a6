"""Process-wide memoization for documents loaded once (schema, model config).

The first caller starts the load; every caller that arrives while it is in
flight awaits the same task, so the backing resource is read at most once
per successful load. A failed load is not cached: all callers waiting on
that attempt receive the error and the next call starts a fresh load.
"""

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoadState(enum.Enum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"


def _consume_exception(task: asyncio.Future) -> None:
    # Every waiter may have been cancelled; the error was already logged in _load
    if not task.cancelled():
        task.exception()


class AsyncLoader(Generic[T]):
    def __init__(self, loader: Callable[[], Awaitable[T]], name: str):
        self._loader = loader
        self._name = name
        self._value: Optional[T] = None
        self._state = LoadState.NOT_LOADED
        self._inflight: Optional[asyncio.Task] = None

    @property
    def state(self) -> LoadState:
        return self._state

    async def get(self) -> T:
        if self._state is LoadState.LOADED:
            return self._value  # type: ignore[return-value]

        if self._inflight is None:
            self._state = LoadState.LOADING
            self._inflight = asyncio.ensure_future(self._load())
            self._inflight.add_done_callback(_consume_exception)
        else:
            logger.debug("Waiting for in-flight %s load", self._name)

        # One caller being cancelled must not cancel the load the others share
        return await asyncio.shield(self._inflight)

    async def _load(self) -> T:
        try:
            value = await self._loader()
        except Exception:
            self._state = LoadState.NOT_LOADED
            logger.warning("Loading %s failed; next call will retry", self._name)
            raise
        finally:
            self._inflight = None

        self._value = value
        self._state = LoadState.LOADED
        logger.info("%s loaded and cached", self._name)
        return value

    def reset(self) -> None:
        self._value = None
        self._state = LoadState.NOT_LOADED
        self._inflight = None
