"""Loopback HTTP server that receives the browser side of the login.

:class:`LoopbackServer` listens on ``127.0.0.1`` for the duration of one
login attempt and exposes two futures:

* :attr:`LoopbackServer.redirect` -- settled when the browser opens
  ``/signin``. The flow answers that request with a redirect to the
  identity provider.
* :attr:`LoopbackServer.code` -- settled when the redirect service sends
  the browser to ``/callback`` with the authorization code (or an error).

Both futures settle exactly once and always carry the still-open
:class:`PendingResponse`, so the flow can send the browser to the result
page once it knows the outcome. Failures are delivered as results with an
``error`` set rather than as future exceptions.

Requests are handled one per connection (``Connection: close``). Every
connection is tracked by an incrementing id so :meth:`LoopbackServer.terminate`
can tear down a server that still has browsers attached.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import urlsplit

from loopauth.exceptions import (
    LoopauthError,
    NonceMismatchError,
    PortBindError,
    ProviderError,
    ServerClosedError,
)
from loopauth.login.state import decode_state, encode_component, nonce_matches, parse_query
from loopauth.models import CallbackQuery

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
PORT_TIMEOUT = 5.0
STATIC_DIR = Path(__file__).parent / "static"

_STATIC_ROUTES = {
    "/": ("index.html", "text/html; charset=utf-8"),
    "/main.css": ("main.css", "text/css; charset=utf-8"),
}


def error_location(message: Optional[str]) -> str:
    """Return the local result-page path that displays *message* as an error."""
    return f"/?error={encode_component(message or 'Unknown error')}"


@dataclass
class Request:
    """The parts of an inbound HTTP request the login flow looks at.

    Header names are lower-cased.
    """

    method: str
    path: str
    query: str
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def host(self) -> Optional[str]:
        return self.headers.get("host")


class PendingResponse:
    """An HTTP response held open until the flow decides where the browser goes.

    The connection handler waits on :meth:`wait` and closes the connection
    once :meth:`redirect` has been written or the response is abandoned.
    """

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        self._writer = writer
        self._done = asyncio.Event()

    @property
    def sent(self) -> bool:
        return self._done.is_set()

    async def redirect(self, location: str) -> None:
        """Answer with ``302 Found`` to *location*. Only the first call writes."""
        if self._done.is_set():
            return
        try:
            await _write_response(
                self._writer, HTTPStatus.FOUND, {"Location": location}
            )
        except ConnectionError as exc:
            logger.debug("Browser went away before redirect to %s: %s", location, exc)
        finally:
            self._done.set()

    def abandon(self) -> None:
        """Release the connection without writing anything."""
        self._done.set()

    async def wait(self) -> None:
        await self._done.wait()


@dataclass
class RedirectResult:
    """Outcome of the browser opening ``/signin``.

    ``response`` is ``None`` only when the server closed before any browser
    arrived.
    """

    response: Optional[PendingResponse]
    request: Optional[Request] = None
    error: Optional[LoopauthError] = None


@dataclass
class CodeResult:
    """Outcome of the browser arriving at ``/callback``."""

    response: Optional[PendingResponse]
    code: Optional[str] = None
    error: Optional[LoopauthError] = None


_Result = Union[RedirectResult, CodeResult]


def check_callback(query: CallbackQuery, nonce: str) -> str:
    """Validate the ``/callback`` query and return the authorization code.

    Provider errors take precedence over everything else, then the state
    nonce is checked, and only then is the code required.

    Raises:
        ProviderError: The provider sent ``error``/``error_description``,
            or no code was present.
        NonceMismatchError: The nonce embedded in ``state`` is not ours.
    """
    if query.error_message:
        raise ProviderError(query.error_message)
    if not nonce_matches(decode_state(query.state or "").nonce, nonce):
        raise NonceMismatchError("Nonce does not match.")
    if not query.code:
        raise ProviderError("No code received.")
    return query.code


class LoopbackServer:
    """Single-use HTTP server bound to the loopback interface.

    Must be created inside a running event loop.

    Args:
        nonce: The session nonce checked on ``/signin`` and ``/callback``.
        static_dir: Directory holding ``index.html`` and ``main.css``.

    Example::

        server = LoopbackServer(make_nonce())
        port = await server.start()
        result = await server.redirect
    """

    def __init__(self, nonce: str, static_dir: Path = STATIC_DIR) -> None:
        loop = asyncio.get_running_loop()
        self.nonce = nonce
        self.port: Optional[int] = None
        self.redirect: asyncio.Future[RedirectResult] = loop.create_future()
        self.code: asyncio.Future[CodeResult] = loop.create_future()

        self._loop = loop
        self._static_dir = static_dir
        self._server: Optional[asyncio.AbstractServer] = None
        self._closed: asyncio.Future[None] = loop.create_future()
        self._close_handle: Optional[asyncio.TimerHandle] = None
        self._connections: dict[int, asyncio.StreamWriter] = {}
        self._next_connection_id = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._pending: set[PendingResponse] = set()

    @property
    def closed(self) -> bool:
        return self._closed.done()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, port: Optional[int] = None, timeout: float = PORT_TIMEOUT) -> int:
        """Bind and start listening.

        Args:
            port: Fixed port to bind, or ``None`` for an OS-assigned one.
            timeout: Seconds to wait for the listening socket.

        Returns:
            The bound port.

        Raises:
            PortBindError: Binding failed or did not finish within *timeout*.
            ServerClosedError: :meth:`close` was called before a port was
                obtained.
        """
        if self.closed:
            raise ServerClosedError("Closed")

        bind = asyncio.ensure_future(
            asyncio.start_server(self._handle_connection, LOOPBACK_HOST, port or 0)
        )
        done, _ = await asyncio.wait(
            {bind, self._closed},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if bind not in done:
            bind.cancel()
            if self.closed:
                raise ServerClosedError("Closed")
            raise PortBindError("Timeout waiting for port")

        try:
            server = bind.result()
        except OSError as exc:
            raise PortBindError(
                f"Cannot listen on {LOOPBACK_HOST}:{port or 0}: {exc}"
            ) from exc

        if self.closed:
            server.close()
            raise ServerClosedError("Closed")

        sockets = server.sockets
        if not sockets:
            server.close()
            raise PortBindError("Server started without a listening socket")

        self._server = server
        self.port = sockets[0].getsockname()[1]
        logger.debug("Loopback server listening on %s:%d", LOOPBACK_HOST, self.port)
        return self.port

    def close(self) -> None:
        """Stop listening and release everything still waiting on this server.

        Unanswered responses are abandoned and unsettled futures settle with
        :class:`~loopauth.exceptions.ServerClosedError`. Idempotent.
        """
        if self._close_handle is not None:
            self._close_handle.cancel()
            self._close_handle = None
        if not self._closed.done():
            self._closed.set_result(None)
        if self._server is not None:
            self._server.close()

        for response in list(self._pending):
            response.abandon()

        if not self.redirect.done():
            self.redirect.set_result(
                RedirectResult(None, error=ServerClosedError("Server closed."))
            )
        if not self.code.done():
            self.code.set_result(CodeResult(None, error=ServerClosedError("Server closed.")))

    async def wait_closed(self) -> None:
        """Wait until :meth:`close` has run, whether scheduled or direct."""
        await asyncio.shield(self._closed)

    def on_closed(self, callback: Callable[[LoopbackServer], None]) -> None:
        """Call *callback* with this server once :meth:`close` has run."""
        self._closed.add_done_callback(lambda _: callback(self))

    def close_later(self, delay: float) -> asyncio.TimerHandle:
        """Schedule :meth:`close` after *delay* seconds and return the handle."""
        if self._close_handle is not None:
            self._close_handle.cancel()
        self._close_handle = self._loop.call_later(delay, self.close)
        return self._close_handle

    async def terminate(self) -> None:
        """Close immediately, destroying every open connection.

        Returns once every tracked connection has been cleaned up and the
        server itself reports closed. ``Server.wait_closed`` does not wait
        for connection handlers before Python 3.12, so the handlers are
        awaited separately.
        """
        server = self._server
        self.close()
        for connection_id, writer in list(self._connections.items()):
            logger.debug("Aborting loopback connection %d", connection_id)
            writer.transport.abort()
        await self._idle.wait()
        if server is not None:
            await server.wait_closed()

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        connection_id = self._next_connection_id
        self._next_connection_id += 1
        self._connections[connection_id] = writer
        self._idle.clear()
        try:
            request = await _read_request(reader)
            if request is not None:
                await self._route(request, writer)
        except (ConnectionError, asyncio.IncompleteReadError) as exc:
            logger.debug("Loopback connection %d dropped: %s", connection_id, exc)
        finally:
            self._connections.pop(connection_id, None)
            if not self._connections:
                self._idle.set()
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError as exc:
                logger.debug("Loopback connection %d closed uncleanly: %s", connection_id, exc)

    async def _route(self, request: Request, writer: asyncio.StreamWriter) -> None:
        if request.path == "/signin":
            await self._on_signin(request, writer)
        elif request.path == "/callback":
            await self._on_callback(request, writer)
        elif request.path in _STATIC_ROUTES:
            filename, content_type = _STATIC_ROUTES[request.path]
            await self._send_static(writer, filename, content_type)
        else:
            await _write_response(writer, HTTPStatus.NOT_FOUND)

    async def _on_signin(self, request: Request, writer: asyncio.StreamWriter) -> None:
        query = parse_query(request.query)
        response = PendingResponse(writer)
        if nonce_matches(query.nonce, self.nonce):
            result = RedirectResult(response, request=request)
        else:
            result = RedirectResult(response, error=NonceMismatchError("Nonce does not match."))
        await self._settle(self.redirect, result)

    async def _on_callback(self, request: Request, writer: asyncio.StreamWriter) -> None:
        response = PendingResponse(writer)
        try:
            result = CodeResult(response, code=check_callback(parse_query(request.query), self.nonce))
        except LoopauthError as exc:
            result = CodeResult(response, error=exc)
        await self._settle(self.code, result)

    async def _settle(self, future: asyncio.Future, result: _Result) -> None:
        response = result.response
        assert response is not None
        if future.done():
            logger.debug("Ignoring repeated request; the login already moved on")
            await response.redirect("/")
            return

        self._pending.add(response)
        future.set_result(result)
        try:
            await response.wait()
        finally:
            self._pending.discard(response)

    async def _send_static(
        self, writer: asyncio.StreamWriter, filename: str, content_type: str
    ) -> None:
        path = self._static_dir / filename
        try:
            body = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            await _write_response(writer, HTTPStatus.INTERNAL_SERVER_ERROR)
            return
        await _write_response(writer, HTTPStatus.OK, {"Content-Type": content_type}, body)


async def _read_request(reader: asyncio.StreamReader) -> Optional[Request]:
    """Read the request line and headers; the body is ignored."""
    request_line = await reader.readline()
    parts = request_line.decode("latin-1").split()
    if len(parts) < 2:
        return None

    headers: dict[str, str] = {}
    while True:
        line = await reader.readline()
        if line in (b"\r\n", b"\n", b""):
            break
        name, _, value = line.decode("latin-1").partition(":")
        headers[name.strip().lower()] = value.strip()

    target = urlsplit(parts[1])
    return Request(
        method=parts[0].upper(),
        path=target.path,
        query=target.query,
        headers=headers,
    )


async def _write_response(
    writer: asyncio.StreamWriter,
    status: HTTPStatus,
    headers: Optional[dict[str, str]] = None,
    body: bytes = b"",
) -> None:
    all_headers = {"Content-Length": str(len(body)), "Connection": "close"}
    all_headers.update(headers or {})
    head = f"HTTP/1.1 {status.value} {status.phrase}\r\n"
    head += "".join(f"{name}: {value}\r\n" for name, value in all_headers.items())
    writer.write(head.encode("latin-1") + b"\r\n" + body)
    await writer.drain()
