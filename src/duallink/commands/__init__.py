"""Built-in CLI sub-commands for duallink.

* :mod:`~duallink.commands.auth` -- log in, show, refresh, and end the session.
* :mod:`~duallink.commands.config` -- view and modify user settings.

Each module exports a :class:`typer.Typer` sub-application that
:mod:`duallink.app` mounts on the root app.
"""
