"""Configure command for offlinesync CLI.

Commands:
- configure: Store the server URL and token
"""

from __future__ import annotations

import click

from offlinesync.client.cli.config import get_config_file, load_config, save_config


@click.command()
@click.option("--server-url", "-s", required=True, help="Base URL of the record server.")
@click.option("--token", "-t", default=None, help="Bearer token for the server.")
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds.")
def configure(server_url: str, token: str | None, timeout: float | None) -> None:
    """Point this client at a record server."""
    if not server_url.startswith(("http://", "https://")):
        raise click.BadParameter("must start with http:// or https://", param_hint="--server-url")

    config = load_config()
    config["server_url"] = server_url.rstrip("/")
    if token is not None:
        config["token"] = token
    if timeout is not None:
        config["timeout"] = timeout
    save_config(config)

    click.echo(f"Saved configuration to {get_config_file()}")
    if server_url.startswith("http://"):
        click.echo("Warning: the connection is not encrypted (http://).", err=True)
