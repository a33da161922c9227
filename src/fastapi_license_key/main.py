"""Command-line entry point: ``license-keys``.

Wraps the administration CLI bound to the configured database and adds a
``serve`` command running the HTTP service with uvicorn.
"""

from typing import Optional

import typer

from fastapi_license_key.app import create_app, create_service_factory
from fastapi_license_key.cli import create_license_keys_cli
from fastapi_license_key.config import get_settings
from fastapi_license_key.logger import configure_logging

app = typer.Typer(
    help="License key service.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show service logs on the console."),
) -> None:
    """Issue, validate and administer license keys."""
    configure_logging(log_level="DEBUG" if verbose else "WARNING", json_logs=False)


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind host (defaults to LICENSE_HOST)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", min=1, max=65535, help="Bind port."),
) -> None:
    """Run the HTTP service."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


create_license_keys_cli(create_service_factory(), app=app)


if __name__ == "__main__":
    app()
