"""Reachability check for the redirect service.

The loopback flow relies on an external redirect service that forwards the
identity provider's redirect to ``http://127.0.0.1:<port>/callback``. Callers
run :func:`check_redirect_server` first and pick a different login mode when
it is unreachable (for example behind a proxy that blocks it).
"""

from __future__ import annotations

import logging

import httpx

from loopauth.models import DEFAULT_REDIRECT_URL

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 5.0
_PROBE_PORT = 3333


async def check_redirect_server(
    adfs: bool,
    redirect_url: str = DEFAULT_REDIRECT_URL,
    *,
    timeout: float = PROBE_TIMEOUT,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Return True when the redirect service answers the way the flow needs.

    ADFS logins redirect straight to the fixed loopback port, so they never
    need the service.

    Args:
        adfs: Whether the login targets an ADFS authority.
        redirect_url: The redirect service URL.
        timeout: Seconds before the probe gives up.
        client: Optional client to send the probe with.

    Returns:
        ``True`` if the service replied ``302`` to a loopback ``/callback``
        location; ``False`` on any other reply, error, or timeout.
    """
    if adfs:
        return True

    url = f"{redirect_url}?state={_PROBE_PORT},cccc"
    expected = f"http://127.0.0.1:{_PROBE_PORT}/callback"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.get(url, follow_redirects=False)
        else:
            response = await client.get(url, follow_redirects=False, timeout=timeout)
    except httpx.HTTPError as exc:
        logger.warning("Redirect service %s is unreachable: %s", redirect_url, exc)
        return False

    location = response.headers.get("location", "")
    return response.status_code == 302 and location.startswith(expected)
