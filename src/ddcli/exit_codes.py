"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

The ``auth`` commands only distinguish success from failure, so every
:class:`~ddcli.exceptions.DDCliError` maps to :data:`EXIT_GENERIC_FAILURE`.
Shell wrappers can rely on ``0`` meaning the operation completed.

Example::

    $ ddcli auth refresh
    $ echo $?
    1   # EXIT_GENERIC_FAILURE -- refresh token expired, re-run login
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""Login, logout, refresh, or configuration failed."""

EXIT_CANCELLED = 130
"""The user interrupted the command with Ctrl-C."""
