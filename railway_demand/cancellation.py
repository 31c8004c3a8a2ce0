import asyncio
from typing import Awaitable, TypeVar

from .errors import FetchCancelledError

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by one batch run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, context: str = "fetch") -> None:
        if self._event.is_set():
            raise FetchCancelledError(f"{context} cancelled")

    async def sleep(self, delay: float) -> None:
        """Wait `delay` seconds, raising FetchCancelledError if cancelled first."""
        self.raise_if_cancelled("wait")
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise FetchCancelledError("wait cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, aborting it as soon as the token fires."""
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise FetchCancelledError("fetch cancelled")

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        # the aborted request's own outcome is irrelevant once cancelled
        await asyncio.gather(task, return_exceptions=True)
        raise FetchCancelledError("fetch cancelled in flight")
