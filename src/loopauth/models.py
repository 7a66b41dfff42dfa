"""Canonical Pydantic models shared across all loopauth modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config
directory: :class:`FlowTimeouts` and :class:`LoginConfig`.

**Protocol models** -- produced and consumed by the login flow:
:class:`AzureEnvironment`, :class:`CallbackQuery`, and
:class:`TokenResponse`.

All models use Pydantic v2. :class:`TokenResponse` uses ``extra="allow"`` so
that provider-specific fields are preserved in ``model_extra``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_CLIENT_ID = "aebc6443-996d-45c2-90f0-388ff96faa56"
"""Public client id used when none is configured."""

DEFAULT_REDIRECT_URL = "https://vscode-redirect.azurewebsites.net/"
"""Redirect service that forwards the provider's redirect to the loopback port."""

DEFAULT_ADFS_PORT = 19472
"""Fixed loopback port registered as the ADFS redirect URI."""


# --- Environments ---


class AzureEnvironment(BaseModel):
    """Identity provider endpoints for one cloud.

    ``active_directory_endpoint_url`` always ends with a slash so that the
    tenant segment and ``oauth2/...`` paths can be appended directly.
    """

    name: str
    active_directory_endpoint_url: str
    active_directory_resource_id: str

    @field_validator("active_directory_endpoint_url")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else value + "/"


BUILTIN_ENVIRONMENTS: dict[str, AzureEnvironment] = {
    env.name: env
    for env in (
        AzureEnvironment(
            name="AzureCloud",
            active_directory_endpoint_url="https://login.microsoftonline.com/",
            active_directory_resource_id="https://management.core.windows.net/",
        ),
        AzureEnvironment(
            name="AzureChinaCloud",
            active_directory_endpoint_url="https://login.chinacloudapi.cn/",
            active_directory_resource_id="https://management.core.chinacloudapi.cn/",
        ),
        AzureEnvironment(
            name="AzureUSGovernment",
            active_directory_endpoint_url="https://login.microsoftonline.us/",
            active_directory_resource_id="https://management.core.usgovcloudapi.net/",
        ),
        AzureEnvironment(
            name="AzureGermanCloud",
            active_directory_endpoint_url="https://login.microsoftonline.de/",
            active_directory_resource_id="https://management.core.cloudapi.de/",
        ),
    )
}


# --- Configuration ---


class FlowTimeouts(BaseModel):
    """Per-stage timeouts of the login flow, in seconds.

    The loopback flow bounds each stage on its own; only the
    no-local-server flow has a single end-to-end deadline (``login``).
    """

    port: float = Field(default=5.0, description="Wait for the loopback port")
    redirect_stall: float = Field(
        default=10.0,
        description="Notify when the browser has not reached /signin",
    )
    code: float = Field(default=300.0, description="Wait for /callback")
    login: float = Field(
        default=300.0, description="Overall deadline without a local server"
    )
    close_delay: float = Field(
        default=5.0, description="Grace period before the server closes"
    )


class LoginConfig(BaseModel):
    """User-wide login defaults persisted at ``~/.config/loopauth/config.json``.

    Loaded and saved by :func:`~loopauth.config.load_config` and
    :func:`~loopauth.config.save_config`. See
    :func:`~loopauth.config.resolve_config` for the precedence chain.
    """

    client_id: str = Field(default=DEFAULT_CLIENT_ID)
    tenant: str = Field(default="common")
    environment: str = Field(
        default="AzureCloud",
        description="Built-in environment name, or 'custom' to use the fields below",
    )
    custom_endpoint_url: Optional[str] = None
    custom_resource_id: Optional[str] = None
    adfs: Optional[bool] = Field(
        default=None,
        description="Force the ADFS variant; detected from the endpoint when unset",
    )
    redirect_url: str = Field(default=DEFAULT_REDIRECT_URL)
    adfs_port: int = Field(default=DEFAULT_ADFS_PORT)
    extension_id: str = Field(
        default="ms-vscode.azure-account",
        description="Authority of the host callback URI in the no-local-server flow",
    )
    timeouts: FlowTimeouts = Field(default_factory=FlowTimeouts)


# --- Protocol ---


class CallbackQuery(BaseModel):
    """Typed view of the query parameters the login flow cares about.

    Produced by :func:`loopauth.login.state.parse_query`. Absent or empty
    parameters are ``None``.
    """

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    nonce: Optional[str] = None

    @property
    def error_message(self) -> Optional[str]:
        """The provider's error text, preferring the description."""
        return self.error_description or self.error


class TokenResponse(BaseModel):
    """Token endpoint response for the authorization code grant.

    Numeric fields arrive as strings from some authorities and are coerced.
    Unknown fields are kept in ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    expires_on: Optional[int] = None
    resource: Optional[str] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None
