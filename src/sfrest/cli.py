from __future__ import annotations

import logging
from typing import Optional, cast

import click
from click import Command

from . import __version__
from .command_apex import apex_cmd
from .command_common import connect_client, fail
from .command_files import download_cmd, upload_cmd
from .command_query import describe_cmd, query_cmd
from .env_loader import load_env_files
from .exceptions import SalesforceError
from .logging_config import configure_logging

_logger = logging.getLogger(__name__)

# Load .env very early, so everything else sees env vars
load_env_files()


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
    invoke_without_command=True,
)
@click.version_option(__version__, "--version", prog_name="sfrest")
@click.option(
    "-v",
    "--verbose",
    "loglevel",
    flag_value=logging.INFO,
    default=None,
    help="Enable INFO logs.",
)
@click.option(
    "-vv",
    "--very-verbose",
    "loglevel",
    flag_value=logging.DEBUG,
    help="Enable DEBUG logs.",
)
@click.pass_context
def cli(ctx: click.Context, loglevel: Optional[int]) -> None:
    """Salesforce REST CLI. Use subcommands like 'refresh' or 'query'."""
    configure_logging(loglevel)
    _logger.debug("CLI start, version=%s", __version__)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("refresh")
def cmd_refresh() -> None:
    """Exchange the refresh token for a new session and show it."""
    client = connect_client()
    try:
        # connect() only refreshes when no access token was configured
        if client.cfg.access_token and client.credentials.refresh_token:
            client.refresh_access_token()
        token = client.credentials.session_token or ""
        click.echo("✅  Salesforce session ready.")
        click.echo(f"Instance URL: {client.instance_url}")
        click.echo(f"API version: {client.api_version}")
        click.echo(f"Token preview: {token[:10]}...{token[-6:]}")
    except SalesforceError as e:
        raise fail(e) from e
    finally:
        client.close()


# Cast ensures IDE knows of the Command type
cli.add_command(cast(Command, query_cmd))
cli.add_command(cast(Command, describe_cmd))
cli.add_command(cast(Command, apex_cmd))
cli.add_command(cast(Command, upload_cmd))
cli.add_command(cast(Command, download_cmd))
