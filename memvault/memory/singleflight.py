"""
Single-flight async initialization.

Runs an expensive async factory at most once per process, shares the
in-flight call between concurrent first callers, and caches only
successful results.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Memoized async initializer with de-duplicated concurrent calls.

    The first caller starts the factory; every caller that arrives while it
    is running awaits the same task. A successful result is cached until
    ``reset()``; a failure is handed to every waiting caller and then
    forgotten, so the next call starts a fresh attempt.

    Example:
        >>> config = SingleFlight(load_config_async, name="ledger-config")
        >>> value = await config.get_or_init()
    """

    def __init__(self, factory: Callable[[], Awaitable[T]], name: str = "single-flight"):
        """
        Initialize the single-flight cell.

        Args:
            factory: Coroutine function producing the value
            name: Name used in log messages
        """
        self._factory = factory
        self.name = name
        self._value: Optional[T] = None
        self._ready = False
        self._inflight: Optional["asyncio.Future[T]"] = None

    @property
    def is_ready(self) -> bool:
        """Whether a value has been successfully produced."""
        return self._ready

    @property
    def in_flight(self) -> bool:
        """Whether an initialization is currently running."""
        return self._inflight is not None

    async def get_or_init(self) -> T:
        """
        Get the cached value, initializing it if needed.

        Returns:
            The value produced by the factory

        Raises:
            Whatever the factory raised, for every caller of the failed attempt
        """
        if self._ready:
            return self._value

        if self._inflight is None:
            logger.debug(f"Starting initialization: {self.name}")
            self._inflight = asyncio.ensure_future(self._run())

        # Shield so one caller's cancellation does not abort the shared task
        return await asyncio.shield(self._inflight)

    async def _run(self) -> T:
        try:
            value = await self._factory()
        except Exception as e:
            logger.warning(f"Initialization failed for {self.name}: {e}")
            raise
        else:
            self._value = value
            self._ready = True
            logger.debug(f"Initialization complete: {self.name}")
            return value
        finally:
            self._inflight = None

    def reset(self, factory: Optional[Callable[[], Awaitable[T]]] = None) -> None:
        """
        Forget the cached value, optionally swapping the factory.

        Primarily for testing and for reconfiguring a process.
        """
        if factory is not None:
            self._factory = factory
        self._value = None
        self._ready = False
        self._inflight = None
