"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~tadometrics.exceptions.TadoMetricsError` subclass.
Cron wrappers and alerting scripts can inspect the exit code to tell
"a human must authorize in a browser" apart from "the network is down"
without parsing stderr.

Example::

    $ tadometrics metrics
    $ echo $?
    8   # EXIT_HUMAN_ACTION -- open the verification URL and enter the code
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (bad configuration, unwritable state file)."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Token acquisition failed or the API rejected the bearer token."""

EXIT_NOT_FOUND = 4
"""The requested resource was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The API returned an error status or an undecodable body."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_HUMAN_ACTION = 8
"""A device code is waiting for a human to authorize it in a browser."""

EXIT_CANCELLED = 130
"""The operation was cancelled (Ctrl-C or a cancelled wait)."""
