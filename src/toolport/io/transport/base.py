"""Transport interface shared by the stream and request/push variants."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Self

if TYPE_CHECKING:
    from types import TracebackType

    from toolport.protocol import Message


class Transport(ABC):
    """One connected channel carrying discrete messages for one session.

    ``receive()`` suspends until a full message arrives and raises
    ``TransportClosedError`` once the channel is gone; an undecodable frame
    raises ``InvalidMessageError`` and leaves the channel usable. ``send()``
    writes one message atomically with respect to concurrent senders.

    Lifecycle is explicit: ``open()`` before use, ``close()`` exactly once
    effective (further calls are no-ops). ``async with`` does both.
    """

    kind: str = "transport"

    @abstractmethod
    async def open(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def receive(self) -> Message: ...

    @abstractmethod
    async def send(self, message: Message) -> None: ...

    @property
    @abstractmethod
    def closed(self) -> bool: ...

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
