"""
Settle-once deferred used to hand results from the dispatch queue to callers.
"""

import asyncio
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Deferred(Generic[T]):
    """A resolve/reject handle bound to one asyncio future.

    Must be created while an event loop is running. Only the first call to
    ``resolve`` or ``reject`` has an effect; later calls return ``False``.
    """

    __slots__ = ("result",)

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.result: "asyncio.Future[T]" = (loop or asyncio.get_running_loop()).create_future()

    @property
    def settled(self) -> bool:
        return self.result.done()

    def resolve(self, value: T) -> bool:
        if self.result.done():
            return False
        self.result.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self.result.done():
            return False
        self.result.set_exception(error)
        return True

    def __repr__(self) -> str:
        state = "pending"
        if self.result.done():
            state = "resolved"
            if self.result.cancelled() or self.result.exception() is not None:
                state = "rejected"
        return f"<Deferred {state}>"

