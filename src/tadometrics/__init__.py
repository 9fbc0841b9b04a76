"""tadometrics -- export tado° thermostat metrics from a cron-friendly CLI.

This package keeps a tado° OAuth2 credential alive across process restarts
(device-code grant, refresh-token grant, persisted state) and uses it to
read zones, devices and live zone states from the tado° API, aggregating
them into a single metrics report.

Typical workflow::

    tadometrics --home-id 12345 auth login   # authorize once in a browser
    tadometrics --home-id 12345 metrics      # every minute from cron

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration and credential source resolution.
    auth: State store, grant strategies, device flow and token manager.
    client: Bearer-authenticated request executor.
    api: Read-only tado° resource getters.
    metrics: Home metrics aggregation.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
