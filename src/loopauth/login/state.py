"""Nonce generation and the OAuth ``state`` parameter codec.

The ``state`` value sent to the identity provider has the shape::

    <callback-environment-tag><port>,<url-encoded-nonce>[,<url-encoded-extra>]

The redirect service reads the port from it to reach the loopback server,
and the loopback server reads the nonce back to reject forged callbacks.
The environment tag is only used by the no-local-server flow and, when
present, already carries its trailing comma (``"vso,"``).

Comparisons are deliberately lenient in two ways:

* Spaces are remapped to ``+``. Base64 nonces contain ``+``, which query
  string decoding turns into a space.
* One extra layer of percent-encoding is tolerated. Some hosts encode the
  state once more on the way back; the tolerance is limited to a single
  layer.
"""

from __future__ import annotations

import base64
import re
import secrets
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote, unquote_plus

from loopauth.models import CallbackQuery

NONCE_BYTES = 16

# Characters encodeURIComponent leaves alone besides the RFC 3986 unreserved set.
_COMPONENT_SAFE = "!~*'()"

_KNOWN_CALLBACK_AUTHORITIES = {
    "online.visualstudio.com": "vso,",
    "online-ppe.core.vsengsaas.visualstudio.com": "vsoppe,",
    "online.dev.core.vsengsaas.visualstudio.com": "vsodev,",
    "canary.online.visualstudio.com": "vsocanary,",
}

_HOST_PORT_RE = re.compile(r"^[^:]+:(\d+)$")


def make_nonce() -> str:
    """Return a fresh base64-encoded nonce of :data:`NONCE_BYTES` random bytes."""
    return base64.b64encode(secrets.token_bytes(NONCE_BYTES)).decode("ascii")


def encode_component(value: str) -> str:
    """Percent-encode *value* the way JavaScript's ``encodeURIComponent`` does."""
    return quote(value, safe=_COMPONENT_SAFE)


def encode_state(
    port: int | str,
    nonce: str,
    env_tag: str = "",
    extra: Optional[str] = None,
) -> str:
    """Build the ``state`` parameter.

    Args:
        port: The port the redirect service should send the browser to.
        nonce: The session nonce (encoded here).
        env_tag: Callback environment tag from :func:`callback_environment`,
            including its trailing comma, or ``""``.
        extra: Optional trailing segment (encoded here). The no-local-server
            flow passes the host callback URI's query.

    Returns:
        The comma-joined state string.
    """
    fields = [f"{env_tag}{port}", encode_component(nonce)]
    if extra is not None:
        fields.append(encode_component(extra))
    return ",".join(fields)


@dataclass
class DecodedState:
    """Fields recovered from a ``state`` value.

    ``nonce`` is returned exactly as found in the state; use
    :func:`nonce_matches` to compare it against the session nonce.
    """

    env_tag: str
    port: Optional[int]
    nonce: str
    extra: Optional[str] = None


def decode_state(state: str) -> DecodedState:
    """Split a ``state`` value into its fields.

    A leading field that is not a port number is taken as the environment
    tag. Missing fields decode as ``None`` or ``""``; this never raises.
    """
    fields = state.split(",")
    env_tag = ""
    if len(fields) > 2 and not fields[0].isdigit() and fields[1].isdigit():
        env_tag = fields[0] + ","
        fields = fields[1:]

    port = int(fields[0]) if fields[0].isdigit() else None
    nonce = fields[1] if len(fields) > 1 else ""
    extra = ",".join(fields[2:]) if len(fields) > 2 else None
    return DecodedState(env_tag=env_tag, port=port, nonce=nonce, extra=extra)


def nonce_matches(received: Optional[str], nonce: str) -> bool:
    """Compare a nonce that came back through the browser with the session nonce.

    Spaces are remapped to ``+`` first. The value matches when it equals the
    nonce as-is or after undoing one extra percent-encoding layer.
    """
    if not received:
        return False
    candidate = received.replace(" ", "+")
    return candidate == nonce or unquote(candidate) == nonce


def state_matches(received: Optional[str], expected: str) -> bool:
    """Compare a whole returned ``state`` with the one that was sent."""
    if not received:
        return False
    return received == expected or unquote(received) == expected


def callback_environment(authority: str) -> str:
    """Map the host callback authority to its state environment tag.

    Codespaces-style authorities are echoed back verbatim so the redirect
    service can reach them; a handful of known hosted editors get a short
    tag; everything else maps to ``""``.
    """
    if authority.endswith(".workspaces.github.com") or authority.endswith(".github.dev"):
        return f"{authority},"
    return _KNOWN_CALLBACK_AUTHORITIES.get(authority, "")


def port_from_host_header(host: Optional[str], default: int) -> int:
    """Return the port from a ``Host`` header value, or *default*.

    Port-forwarding hosts may rewrite the port the browser used to reach the
    loopback server; the redirect service must send the browser back there.
    """
    match = _HOST_PORT_RE.match(host or "")
    if match is None:
        return default
    return int(match.group(1))


def parse_query(query: Optional[str], *, decode: bool = True) -> CallbackQuery:
    """Parse a raw query string into a :class:`~loopauth.models.CallbackQuery`.

    Args:
        query: The query string without the leading ``?``. ``None`` and
            ``""`` are accepted.
        decode: When ``True`` (the default), keys and values are decoded
            like a form submission (``+`` becomes a space, ``%XX`` is
            unescaped). When ``False`` the raw text is kept, for callers
            that compare against a value they encoded themselves.

    Returns:
        The typed record. The first occurrence of a repeated key wins;
        empty values become ``None``.
    """
    values: dict[str, str] = {}
    for pair in (query or "").split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        if decode:
            key, value = unquote_plus(key), unquote_plus(value)
        values.setdefault(key, value)

    fields = {
        name: values.get(name) or None
        for name in ("code", "state", "error", "error_description", "nonce")
    }
    return CallbackQuery(**fields)
