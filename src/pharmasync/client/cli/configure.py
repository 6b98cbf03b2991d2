"""Configure command for PharmaSync CLI.

Commands:
- configure: Store backend connection settings
"""

from __future__ import annotations

import click
import httpx

from pharmasync.client.cli.config import get_config_file, load_config, save_config


def _check_url(value: str, param_hint: str) -> None:
    if not value.startswith(("http://", "https://")):
        raise click.BadParameter("URL must start with http:// or https://", param_hint=param_hint)
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as e:
        raise click.BadParameter(f"Invalid URL: {e}", param_hint=param_hint) from e
    if not url.host:
        raise click.BadParameter("URL has no host", param_hint=param_hint)
    if url.port is not None and not 0 < url.port < 65536:
        raise click.BadParameter(f"Invalid port: {url.port}", param_hint=param_hint)


@click.command()
@click.option("--url", "remote_url", required=True, help="Backend base URL.")
@click.option("--key", "api_key", required=True, help="Backend API key.")
@click.option("--client-id", default=None, help="Client (pharmacy) identifier.")
@click.option("--probe-url", default=None, help="Resource probed to confirm connectivity.")
def configure(
    remote_url: str,
    api_key: str,
    client_id: str | None,
    probe_url: str | None,
) -> None:
    """Store backend connection settings."""
    _check_url(remote_url, "--url")
    if probe_url:
        _check_url(probe_url, "--probe-url")

    config = load_config()
    config["remote_url"] = remote_url.rstrip("/")
    config["api_key"] = api_key
    if client_id:
        config["client_id"] = client_id
    if probe_url:
        config["probe_url"] = probe_url
    save_config(config)

    click.echo(f"Configuration saved to {get_config_file()}")
