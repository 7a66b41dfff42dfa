"""Host collaborators of the login flow.

The flow never talks to a browser or to the editor host directly. It goes
through a :class:`Host`:

* :meth:`Host.open_external` opens a URL in the system browser. Returning
  ``False`` means the user declined (for example in a "do you want to open
  this website?" prompt).
* :meth:`Host.as_external_uri` turns a host-internal URI into one that an
  outside redirect can reach (port forwarding, web hosts).
* :attr:`Host.supports_loopback` is ``False`` for pure web hosts, which
  cannot bind local sockets. Those hosts deliver the final redirect URI
  through a :class:`UriChannel` instead.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)


class Host(Protocol):
    """What the login flow needs from the process hosting it."""

    supports_loopback: bool
    uri_scheme: str

    async def open_external(self, url: str) -> Optional[bool]:
        ...

    async def as_external_uri(self, uri: str) -> str:
        ...


class DesktopHost:
    """Host for a regular desktop process: loopback sockets and a system browser.

    Args:
        opener: Callable that opens a URL, run in a worker thread so a slow
            browser launch does not block the event loop. Defaults to
            :func:`webbrowser.open`.
        uri_scheme: Scheme of the host's own URIs.
    """

    supports_loopback = True

    def __init__(
        self,
        opener: Callable[[str], bool] = webbrowser.open,
        uri_scheme: str = "loopauth",
    ) -> None:
        self._opener = opener
        self.uri_scheme = uri_scheme

    async def open_external(self, url: str) -> Optional[bool]:
        opened = await asyncio.to_thread(self._opener, url)
        if not opened:
            # No usable browser is not the user declining; the stall
            # notification tells them to open the URL by hand.
            logger.debug("No browser could be launched for %s", url)
        return None

    async def as_external_uri(self, uri: str) -> str:
        return uri


class Subscription:
    """One login attempt's view of a :class:`UriChannel`.

    Receives every URI delivered while it is active. Once :meth:`settle`
    has been called, later deliveries are dropped.
    """

    def __init__(self, channel: UriChannel) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._settled = False

    @property
    def settled(self) -> bool:
        return self._settled

    def put(self, uri: str) -> None:
        if not self._settled:
            self._queue.put_nowait(uri)

    async def next(self) -> str:
        """Wait for the next delivered URI."""
        return await self._queue.get()

    def settle(self) -> None:
        """Stop receiving; the attempt has its answer."""
        self._settled = True
        self._channel._unsubscribe(self)


class UriChannel:
    """Queue between the host's URI handler and waiting login attempts.

    The host calls :meth:`deliver` for every URI routed to the application;
    each active :class:`Subscription` gets a copy.

    Example::

        channel = UriChannel()
        host.register_uri_handler(channel.deliver)

        with channel.subscribe() as subscription:
            uri = await subscription.next()
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def deliver(self, uri: str) -> None:
        for subscription in list(self._subscriptions):
            subscription.put(uri)

    @contextmanager
    def subscribe(self) -> Iterator[Subscription]:
        subscription = Subscription(self)
        self._subscriptions.append(subscription)
        try:
            yield subscription
        finally:
            subscription.settle()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
