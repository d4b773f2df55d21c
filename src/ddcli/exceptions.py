"""Exception hierarchy for ddcli.

All exceptions inherit from :class:`DDCliError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`ddcli.exit_codes`.
The ``auth`` commands catch ``DDCliError``, print its message (which always
names the remediation) and exit with that code, while unexpected exceptions
produce a crash log.

Subclass hierarchy::

    DDCliError (exit 1)
    +-- ConfigurationError
    +-- InvalidArgumentError
    +-- StorageError
    +-- AuthError
        +-- DCRError
        |   +-- DCRNotAvailableError
        +-- CallbackError
        |   +-- CallbackTimeoutError
        |   +-- CallbackStateMismatchError
        |   +-- CallbackPortUnavailableError
        +-- LoginError
        +-- TokenExchangeError
        +-- RefreshTokenExpiredError
        +-- NoTokensError
        +-- NoClientIdError

"Not found" outcomes of the storage layer are never exceptions; they are
reported as ``None`` or ``False``.
"""

from __future__ import annotations

from ddcli.exit_codes import EXIT_GENERIC_FAILURE

LOGIN_HINT = 'Run "ddcli auth login" to authenticate.'


class DDCliError(Exception):
    """Base exception for all ddcli errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(DDCliError):
    """Raised for a bad or missing site, an unknown storage override, or a forced backend that is unavailable."""


class InvalidArgumentError(DDCliError):
    """Raised when a caller passes an out-of-range value (e.g. a PKCE verifier length)."""


class StorageError(DDCliError):
    """Raised when the keychain or the token/client files cannot be read or written.

    Args:
        message: Human-readable description.
        operation: The storage operation that failed (``save``, ``get``,
            ``delete``, ``delete_all``, ``read``).
    """

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class AuthError(DDCliError):
    """Base class for failures of the OAuth flow itself."""


class DCRError(AuthError):
    """Raised when Dynamic Client Registration fails.

    Args:
        message: Human-readable description.
        status_code: HTTP status of the registration response, if any.
        error_code: The server's ``error`` field, or a local code such as
            ``network_error``, ``empty_response``, ``invalid_content_type``.
        retryable: Whether a single transparent retry is allowed.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.retryable = retryable


class DCRNotAvailableError(DCRError):
    """Raised when the registration endpoint returns HTTP 404 for a site."""

    def __init__(self, site: str):
        super().__init__(
            f'Dynamic Client Registration is not available for site "{site}". '
            "OAuth authentication requires a Datadog site with DCR support. "
            "Check DD_SITE or use API key authentication instead.",
            status_code=404,
            error_code="dcr_not_available",
        )
        self.site = site


class CallbackError(AuthError):
    """Base class for loopback callback server failures."""


class CallbackTimeoutError(CallbackError):
    """Raised when no authorization redirect arrives before the timeout."""


class CallbackStateMismatchError(CallbackError):
    """Raised when the callback ``state`` differs from the one sent (possible CSRF)."""


class CallbackPortUnavailableError(CallbackError):
    """Raised when none of the registered loopback ports can be bound."""

    def __init__(self, ports: list[int]):
        joined = ", ".join(str(p) for p in ports)
        super().__init__(
            f"No available ports for the OAuth callback. All registered ports "
            f"({joined}) are in use. Free one of these ports and try again."
        )
        self.ports = list(ports)


class LoginError(AuthError):
    """Raised when the authorization server reports an error on the redirect."""


class TokenExchangeError(AuthError):
    """Raised when a token, refresh, or revoke request fails.

    Args:
        message: Human-readable description.
        status_code: HTTP status, or ``None`` for transport failures.
        error_code: The server's ``error`` field (e.g. ``invalid_grant``).
        error_description: The server's ``error_description`` field.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        error_description: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.error_description = error_description


class RefreshTokenExpiredError(AuthError):
    """Raised when the refresh token is rejected and a new login is required."""

    def __init__(self) -> None:
        super().__init__(f"Refresh token has expired. {LOGIN_HINT}")


class NoTokensError(AuthError):
    """Raised when no OAuth tokens are stored for a site."""

    def __init__(self, site: str):
        super().__init__(f'No OAuth tokens found for site "{site}". {LOGIN_HINT}')
        self.site = site


class NoClientIdError(AuthError):
    """Raised when a refresh is needed but no registered client id is known."""

    def __init__(self, site: str):
        super().__init__(f'No OAuth client ID found for site "{site}". {LOGIN_HINT}')
        self.site = site
