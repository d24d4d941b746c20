from __future__ import annotations

import json

import click

from .command_common import connect_client, fail
from .exceptions import SalesforceError


@click.command("query")
@click.argument("soql")
@click.option("--all", "follow", is_flag=True, help="Follow nextRecordsUrl and print every record.")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def query_cmd(soql: str, follow: bool, pretty: bool) -> None:
    """Run a SOQL query."""
    client = connect_client()
    indent = 2 if pretty else None
    try:
        if follow:
            for record in client.query_all_iter(soql):
                click.echo(json.dumps(record, indent=indent))
        else:
            click.echo(json.dumps(client.query(soql), indent=indent))
    except SalesforceError as e:
        raise fail(e) from e
    finally:
        client.close()


@click.command("describe")
@click.argument("objtype")
@click.option("--fields", "fields_only", is_flag=True, help="Only list field names.")
def describe_cmd(objtype: str, fields_only: bool) -> None:
    """Describe an sObject (e.g. Account)."""
    client = connect_client()
    try:
        res = client.describe(objtype)
    except SalesforceError as e:
        raise fail(e) from e
    finally:
        client.close()

    if fields_only:
        for name in sorted(f["name"] for f in res.get("fields", [])):
            click.echo(name)
    else:
        click.echo(json.dumps(res, indent=2))
