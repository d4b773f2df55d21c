"""ddcli -- OAuth2/PKCE authentication for the Datadog command-line tool.

Users run ``ddcli auth login`` once per Datadog site. The CLI registers
itself with the site through Dynamic Client Registration, completes the
Authorization Code + PKCE flow through the browser and a loopback callback
server, then keeps the resulting tokens in the OS keychain (or a
``0600`` file when no keychain is available) and refreshes them on demand.

Modules:
    app: Typer application factory and CLI entry point.
    auth: Registration, callback server, storage, refresh, and orchestration.
    models: Pydantic models shared across the package.
    config: Environment resolution, storage directory, and atomic writes.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
