"""Login flow orchestration.

:class:`LoginFlow` runs one interactive login at a time and picks between
two variants:

**Loopback flow** (desktop hosts). A :class:`~loopauth.login.server.LoopbackServer`
is bound to ``127.0.0.1`` and the browser is sent to its ``/signin`` page,
which redirects to the identity provider. The provider redirects to the
redirect service, which forwards the browser to ``/callback`` on the
loopback port (read from ``state``). Each stage has its own timeout; there
is no single end-to-end deadline.

**No-local-server flow** (web hosts). The provider's redirect ends at a
host URI that the host hands to a :class:`~loopauth.login.host.UriChannel`.
The whole pipeline is raced against one login timeout.

ADFS authorities redirect straight to a fixed loopback port, so only one
ADFS server can exist at a time. :class:`SessionRegistry` tracks it and a
new ADFS attempt terminates the previous server first.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import urlsplit

import httpx

from loopauth.exceptions import (
    CodeTimeoutError,
    LoginTimeoutError,
    LoopauthError,
    NonceMismatchError,
    ProviderError,
    UserCanceledError,
)
from loopauth.login.exchange import exchange_code
from loopauth.login.host import Host, Subscription, UriChannel
from loopauth.login.server import LoopbackServer, error_location
from loopauth.login.state import (
    callback_environment,
    encode_component,
    encode_state,
    make_nonce,
    parse_query,
    port_from_host_header,
    state_matches,
)
from loopauth.login.urls import authorize_url, is_adfs
from loopauth.models import (
    DEFAULT_ADFS_PORT,
    DEFAULT_REDIRECT_URL,
    AzureEnvironment,
    FlowTimeouts,
    TokenResponse,
)

logger = logging.getLogger(__name__)

StallCallback = Callable[[], Union[None, Awaitable[None]]]


class FlowState(str, enum.Enum):
    """Where a login attempt currently is."""

    IDLE = "idle"
    AWAITING_PORT = "awaiting_port"
    AWAITING_REDIRECT = "awaiting_redirect"
    AWAITING_CODE = "awaiting_code"
    EXCHANGING = "exchanging"
    DONE = "done"
    FAILED = "failed"


class FlowVariant(str, enum.Enum):
    """Loopback server kinds tracked by :class:`SessionRegistry`."""

    LOOPBACK = "loopback"
    ADFS = "adfs"


class SessionRegistry:
    """Servers that must not outlive the next login attempt of their variant."""

    def __init__(self) -> None:
        self._servers: dict[FlowVariant, LoopbackServer] = {}

    def track(self, variant: FlowVariant, server: LoopbackServer) -> None:
        self._servers[variant] = server

    def get(self, variant: FlowVariant) -> Optional[LoopbackServer]:
        return self._servers.get(variant)

    async def terminate(self, variant: FlowVariant) -> None:
        """Forcefully shut down the tracked server of *variant*, if any."""
        server = self._servers.pop(variant, None)
        if server is not None:
            logger.debug("Terminating previous %s server", variant.value)
            await server.terminate()


class FlowTimers:
    """Cancelable timers owned by one login attempt."""

    def __init__(self) -> None:
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        self.cancel(name)
        self._handles[name] = asyncio.get_running_loop().call_later(delay, callback)

    def spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for name in list(self._handles):
            self.cancel(name)
        for task in list(self._tasks):
            task.cancel()


class LoginFlow:
    """Interactive authorization code login.

    A flow object may run several attempts in sequence; :attr:`state`
    reflects the most recent one.

    Args:
        host: The hosting process (browser access, URI handling).
        timeouts: Per-stage timeouts. Defaults are 5 s for the port,
            10 s before the stall notice, 5 min for the code, 5 min overall
            without a local server and a 5 s close grace period.
        registry: Server registry shared between attempts. A private one is
            created when omitted.
        channel: URI channel used by hosts without loopback support.
        http_client: Optional client for the token exchange.
        redirect_url: Redirect service URL for non-ADFS logins.
        adfs_port: Fixed loopback port for ADFS logins.
        extension_id: Authority of the host callback URI in the
            no-local-server flow.

    Example::

        flow = LoginFlow(DesktopHost())
        token = await flow.login(DEFAULT_CLIENT_ID, BUILTIN_ENVIRONMENTS["AzureCloud"])
    """

    def __init__(
        self,
        host: Host,
        timeouts: Optional[FlowTimeouts] = None,
        registry: Optional[SessionRegistry] = None,
        channel: Optional[UriChannel] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        redirect_url: str = DEFAULT_REDIRECT_URL,
        adfs_port: int = DEFAULT_ADFS_PORT,
        extension_id: str = "ms-vscode.azure-account",
    ) -> None:
        self.host = host
        self.timeouts = timeouts or FlowTimeouts()
        self.registry = registry or SessionRegistry()
        self.channel = channel or UriChannel()
        self.state = FlowState.IDLE
        self._http_client = http_client
        self._redirect_url = redirect_url
        self._adfs_port = adfs_port
        self._extension_id = extension_id
        self._closing: set[LoopbackServer] = set()

    async def drain(self) -> None:
        """Wait until the servers of finished attempts have closed.

        Callers that own the event loop (a CLI running :func:`asyncio.run`)
        await this before returning so the browser can still load the
        result page.
        """
        for server in list(self._closing):
            await server.wait_closed()

    @property
    def adfs_redirect_url(self) -> str:
        return f"http://127.0.0.1:{self._adfs_port}/callback"

    async def login(
        self,
        client_id: str,
        environment: AzureEnvironment,
        tenant: str = "common",
        *,
        adfs: Optional[bool] = None,
        on_redirect_stall: Optional[StallCallback] = None,
    ) -> TokenResponse:
        """Run one login attempt and return the token response.

        Args:
            client_id: The public client id.
            environment: Authority and resource of the target cloud.
            tenant: Tenant id or ``common``.
            adfs: Force or suppress the ADFS variant. Detected from the
                authority URL when ``None``.
            on_redirect_stall: Called when the browser has not reached the
                loopback server within the stall timeout. The login keeps
                waiting either way.

        Returns:
            The token endpoint's response.

        Raises:
            LoopauthError: One of its subclasses, depending on the stage
                that failed. Nothing is retried.
        """
        if adfs is None:
            adfs = is_adfs(environment.active_directory_endpoint_url)

        self.state = FlowState.IDLE
        try:
            if not self.host.supports_loopback:
                token = await self._login_without_local_server(
                    client_id, environment, tenant, adfs
                )
            else:
                token = await self._login_with_local_server(
                    client_id, environment, tenant, adfs, on_redirect_stall
                )
        except BaseException:
            self.state = FlowState.FAILED
            raise
        self.state = FlowState.DONE
        return token

    # ------------------------------------------------------------------
    # Loopback flow
    # ------------------------------------------------------------------

    async def _login_with_local_server(
        self,
        client_id: str,
        environment: AzureEnvironment,
        tenant: str,
        adfs: bool,
        on_redirect_stall: Optional[StallCallback],
    ) -> TokenResponse:
        if adfs:
            await self.registry.terminate(FlowVariant.ADFS)

        nonce = make_nonce()
        server = LoopbackServer(nonce)
        if adfs:
            self.registry.track(FlowVariant.ADFS, server)

        timers = FlowTimers()
        try:
            self.state = FlowState.AWAITING_PORT
            port = await server.start(
                self._adfs_port if adfs else None, timeout=self.timeouts.port
            )

            self.state = FlowState.AWAITING_REDIRECT
            await self._open(f"http://localhost:{port}/signin?nonce={encode_component(nonce)}")
            if on_redirect_stall is not None:
                timers.call_later(
                    "redirect_stall",
                    self.timeouts.redirect_stall,
                    lambda: timers.spawn(_notify_stall(on_redirect_stall)),
                )

            redirect = await server.redirect
            if redirect.error is not None:
                if redirect.response is not None:
                    await redirect.response.redirect(error_location(str(redirect.error)))
                raise redirect.error
            timers.cancel("redirect_stall")

            assert redirect.request is not None and redirect.response is not None
            updated_port = port_from_host_header(redirect.request.host, port)
            redirect_url = self.adfs_redirect_url if adfs else self._redirect_url
            sign_in_url = authorize_url(
                environment.active_directory_endpoint_url,
                adfs=adfs,
                client_id=client_id,
                tenant=tenant,
                redirect_url=redirect_url,
                resource=environment.active_directory_resource_id,
                state=encode_state(updated_port, nonce),
                encode_redirect=False,
            )
            await redirect.response.redirect(sign_in_url)

            self.state = FlowState.AWAITING_CODE
            try:
                code_result = await asyncio.wait_for(
                    asyncio.shield(server.code), self.timeouts.code
                )
            except asyncio.TimeoutError:
                raise CodeTimeoutError("Timeout waiting for code") from None

            response = code_result.response
            try:
                if code_result.error is not None:
                    raise code_result.error
                assert code_result.code is not None
                self.state = FlowState.EXCHANGING
                token = await exchange_code(
                    client_id,
                    environment.active_directory_endpoint_url,
                    redirect_url,
                    tenant,
                    code_result.code,
                    resource=environment.active_directory_resource_id,
                    adfs=adfs,
                    client=self._http_client,
                )
            except LoopauthError as exc:
                if response is not None:
                    await response.redirect(error_location(str(exc)))
                raise

            if response is not None:
                await response.redirect("/")
            return token
        finally:
            timers.cancel_all()
            if server.port is None:
                server.close()
            else:
                # Keep serving the result page for a moment.
                server.close_later(self.timeouts.close_delay)
                self._closing.add(server)
                server.on_closed(self._closing.discard)

    # ------------------------------------------------------------------
    # No-local-server flow
    # ------------------------------------------------------------------

    async def _login_without_local_server(
        self,
        client_id: str,
        environment: AzureEnvironment,
        tenant: str,
        adfs: bool,
    ) -> TokenResponse:
        callback_uri = urlsplit(
            await self.host.as_external_uri(f"{self.host.uri_scheme}://{self._extension_id}")
        )
        port = callback_uri.port or (443 if callback_uri.scheme == "https" else 80)
        state = encode_state(
            port,
            make_nonce(),
            env_tag=callback_environment(callback_uri.netloc),
            extra=callback_uri.query,
        )
        sign_in_url = authorize_url(
            environment.active_directory_endpoint_url,
            adfs=adfs,
            client_id=client_id,
            tenant=tenant,
            redirect_url=self._redirect_url,
            resource=environment.active_directory_resource_id,
            state=state,
            encode_redirect=True,
        )

        with self.channel.subscribe() as subscription:
            self.state = FlowState.AWAITING_CODE
            await self._open(sign_in_url)
            try:
                return await asyncio.wait_for(
                    self._exchange_delivered_code(
                        subscription, state, client_id, environment, tenant, adfs
                    ),
                    self.timeouts.login,
                )
            except asyncio.TimeoutError:
                raise LoginTimeoutError("Login timed out.") from None

    async def _exchange_delivered_code(
        self,
        subscription: Subscription,
        state: str,
        client_id: str,
        environment: AzureEnvironment,
        tenant: str,
        adfs: bool,
    ) -> TokenResponse:
        uri = await subscription.next()
        subscription.settle()

        # Compare raw text: the state was encoded by us and may come back
        # with or without one more encoding layer. Nothing else in the URI
        # is trusted until the state matches.
        raw = parse_query(urlsplit(uri).query, decode=False)
        if not state_matches(raw.state, state):
            raise NonceMismatchError("State does not match.")
        query = parse_query(urlsplit(uri).query)
        if query.error_message:
            raise ProviderError(query.error_message)
        if not query.code:
            raise ProviderError("No code received.")

        self.state = FlowState.EXCHANGING
        return await exchange_code(
            client_id,
            environment.active_directory_endpoint_url,
            self._redirect_url,
            tenant,
            query.code,
            resource=environment.active_directory_resource_id,
            adfs=adfs,
            client=self._http_client,
        )

    async def _open(self, url: str) -> None:
        if await self.host.open_external(url) is False:
            raise UserCanceledError("Login canceled.")


async def _notify_stall(callback: StallCallback) -> None:
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Redirect stall callback failed")
