"""Built-in CLI sub-commands for ddcli.

* :mod:`~ddcli.commands.auth` -- OAuth login, logout, status, refresh, and
  legacy token migration.

Each module exports a :class:`typer.Typer` sub-application registered on
the root app in :mod:`ddcli.app`.
"""
