from __future__ import annotations

import json
from typing import Optional, Tuple

import click

from .command_common import connect_client, fail, parse_pairs
from .exceptions import SalesforceError


@click.command("apex")
@click.argument("path")
@click.option(
    "--method",
    "-X",
    default="GET",
    show_default=True,
    type=click.Choice(["GET", "POST", "PUT", "PATCH", "DELETE"], case_sensitive=False),
)
@click.option("--data", "-d", help="JSON body (or query string for GET).")
@click.option("--header", "-H", "headers", multiple=True, help="Extra header as KEY=VALUE.")
def apex_cmd(path: str, method: str, data: Optional[str], headers: Tuple[str, ...]) -> None:
    """Call a custom Apex REST endpoint, e.g. /MyService/v1."""
    if not path.startswith("/"):
        path = "/" + path
    extra = parse_pairs(headers, "--header")

    client = connect_client()
    try:
        res = client.apexrest(path, method, data, headers=extra)
    except SalesforceError as e:
        raise fail(e) from e
    finally:
        client.close()

    if res is not None:
        click.echo(json.dumps(res, indent=2))
