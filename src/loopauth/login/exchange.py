"""Authorization code exchange at the token endpoint.

:func:`exchange_code` performs the back-channel half of the authorization
code grant: it posts the code received on ``/callback`` to the authority's
``oauth2/token`` endpoint and returns the parsed
:class:`~loopauth.models.TokenResponse`.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError

from loopauth.exceptions import TokenExchangeError
from loopauth.exit_codes import EXIT_CONNECTION_ERROR
from loopauth.login.urls import token_url
from loopauth.models import TokenResponse

TOKEN_TIMEOUT = 30.0


async def exchange_code(
    client_id: str,
    endpoint: str,
    redirect_url: str,
    tenant: str,
    code: str,
    *,
    resource: str,
    adfs: bool = False,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = TOKEN_TIMEOUT,
) -> TokenResponse:
    """Exchange an authorization code for tokens.

    Args:
        client_id: The public client id used in the authorization request.
        endpoint: The authority base URL.
        redirect_url: The redirect URI used in the authorization request.
            Must match exactly.
        tenant: Tenant id or ``common``. Ignored for ADFS.
        code: The authorization code from ``/callback``.
        resource: The resource the token is requested for.
        adfs: ADFS authorities skip the ``https`` authority check.
        client: Optional client to send the request with. A short-lived
            client is created when omitted.
        timeout: Request timeout in seconds.

    Returns:
        The token response.

    Raises:
        TokenExchangeError: The endpoint returned an error payload, an
            unusable response, or could not be reached.
    """
    url = token_url(endpoint, adfs=adfs, tenant=tenant)
    if not adfs and urlparse(url).scheme != "https":
        raise TokenExchangeError(f"Authority must use https: {endpoint}")

    data = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "code": code,
        "redirect_uri": redirect_url,
        "resource": resource,
    }

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await _post(own_client, url, data)
        else:
            response = await _post(client, url, data)
    except httpx.HTTPError as exc:
        raise TokenExchangeError(
            f"Token exchange failed: {exc}", exit_code=EXIT_CONNECTION_ERROR
        ) from exc

    try:
        payload: Any = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and payload.get("error"):
        error = str(payload["error"])
        description = payload.get("error_description")
        message = f"{error}: {description}" if description else error
        raise TokenExchangeError(message, error=error, error_description=description)

    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise TokenExchangeError(
            f"Token exchange failed with status {response.status_code}: {response.text}"
        ) from exc

    if not isinstance(payload, dict):
        raise TokenExchangeError("Token response is not a JSON object")

    try:
        return TokenResponse.model_validate(payload)
    except ValidationError as exc:
        raise TokenExchangeError(f"Invalid token response: {exc}") from exc


async def _post(client: httpx.AsyncClient, url: str, data: dict[str, str]) -> httpx.Response:
    return await client.post(url, data=data, headers={"Accept": "application/json"})
