"""Identity provider URL construction.

:func:`authorize_url` builds the ``oauth2/authorize`` URL the browser is sent
to; :func:`token_url` builds the endpoint the code is exchanged at. ADFS
authorities (alternate federation service) have no tenant segment.
"""

from __future__ import annotations

from urllib.parse import urlparse

from loopauth.login.state import encode_component


def is_adfs(endpoint: str) -> bool:
    """Return True when *endpoint* points at an ADFS authority (``/adfs`` path)."""
    path = (urlparse(endpoint).path or "").lower()
    return path == "/adfs" or path.startswith("/adfs/")


def _base(endpoint: str, tenant: str, adfs: bool) -> str:
    if not endpoint.endswith("/"):
        endpoint += "/"
    return endpoint if adfs else f"{endpoint}{tenant}/"


def authorize_url(
    endpoint: str,
    *,
    adfs: bool,
    client_id: str,
    tenant: str,
    redirect_url: str,
    resource: str,
    state: str,
    encode_redirect: bool,
) -> str:
    """Build the identity provider sign-in URL.

    Every query parameter is encoded on its own. The redirect URL is the
    exception: it is encoded only when *encode_redirect* is set (the
    no-local-server flow) and passed through raw for the loopback flow,
    which is what the redirect service expects.

    Args:
        endpoint: The authority base URL, e.g.
            ``https://login.microsoftonline.com/``.
        adfs: Whether the authority is ADFS (no tenant segment).
        client_id: The public client id.
        tenant: Tenant id or ``common``.
        redirect_url: The registered redirect URI.
        resource: The resource the token is requested for.
        state: The value from :func:`~loopauth.login.state.encode_state`.
        encode_redirect: See above.

    Returns:
        The complete authorization URL.
    """
    redirect = encode_component(redirect_url) if encode_redirect else redirect_url
    query = "&".join(
        [
            "response_type=code",
            f"client_id={encode_component(client_id)}",
            f"redirect_uri={redirect}",
            f"state={encode_component(state)}",
            f"resource={encode_component(resource)}",
            "prompt=select_account",
        ]
    )
    return f"{_base(endpoint, tenant, adfs)}oauth2/authorize?{query}"


def token_url(endpoint: str, *, adfs: bool, tenant: str) -> str:
    """Build the ``oauth2/token`` endpoint URL for the authority."""
    return f"{_base(endpoint, tenant, adfs)}oauth2/token"
