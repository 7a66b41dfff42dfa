"""Exception hierarchy for loopauth.

All exceptions inherit from :class:`LoopauthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`loopauth.exit_codes`.
The CLI entry point catches ``LoopauthError`` and exits with the matching
code; library callers catch the specific subclasses.

Subclass hierarchy::

    LoopauthError (exit 1)
    +-- ConfigError          (exit 1)
    +-- PortBindError        (exit 5)
    +-- ServerClosedError    (exit 5)
    +-- NonceMismatchError   (exit 3)
    +-- ProviderError        (exit 3)
    +-- TokenExchangeError   (exit 3)
    +-- CodeTimeoutError     (exit 4)
    +-- LoginTimeoutError    (exit 4)
    +-- UserCanceledError    (exit 130)
"""

from __future__ import annotations

from loopauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELED,
    EXIT_GENERIC_FAILURE,
    EXIT_SERVER_ERROR,
    EXIT_TIMEOUT,
)


class LoopauthError(Exception):
    """Base exception for all loopauth errors.

    Args:
        message: Human-readable error description. This is also the text
            shown on the local error page when the failure reaches the
            browser.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(LoopauthError):
    """Raised for configuration problems (invalid JSON, unknown environment)."""

    exit_code = EXIT_GENERIC_FAILURE


class PortBindError(LoopauthError):
    """Raised when the loopback port cannot be bound or binding times out."""

    exit_code = EXIT_SERVER_ERROR


class ServerClosedError(LoopauthError):
    """Raised when the loopback server closes before the awaited event arrived."""

    exit_code = EXIT_SERVER_ERROR


class NonceMismatchError(LoopauthError):
    """Raised when the nonce on ``/signin`` or inside ``state`` does not match."""

    exit_code = EXIT_AUTH_FAILURE


class ProviderError(LoopauthError):
    """Raised when the identity provider redirects back with an error."""

    exit_code = EXIT_AUTH_FAILURE


class TokenExchangeError(LoopauthError):
    """Raised when the token endpoint rejects the code or cannot be reached.

    Args:
        message: Human-readable description.
        error: The provider's ``error`` code, when one was returned.
        error_description: The provider's ``error_description``, when one
            was returned.
        exit_code: Optional override, used for transport failures.
    """

    exit_code = EXIT_AUTH_FAILURE

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message, exit_code)
        self.error = error
        self.error_description = error_description


class CodeTimeoutError(LoopauthError):
    """Raised when no ``/callback`` request arrives in time."""

    exit_code = EXIT_TIMEOUT


class LoginTimeoutError(LoopauthError):
    """Raised when the no-local-server login does not finish in time."""

    exit_code = EXIT_TIMEOUT


class UserCanceledError(LoopauthError):
    """Raised when the user declines to continue the login."""

    exit_code = EXIT_CANCELED
