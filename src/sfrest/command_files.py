from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Tuple

import click

from .command_common import connect_client, fail, parse_pairs
from .exceptions import SalesforceError
from .progress import upload_progress_bar

_logger = logging.getLogger(__name__)


@click.command("upload")
@click.argument("objtype")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--field",
    "payload_field",
    default="VersionData",
    show_default=True,
    help="Blob field: VersionData for ContentVersion, Body for Document/Attachment.",
)
@click.option("--set", "values", multiple=True, help="Record field as KEY=VALUE.")
@click.option("--id", "record_id", help="Update this record instead of creating one.")
@click.option("--no-progress", is_flag=True, help="Hide the upload progress bar.")
def upload_cmd(
    objtype: str,
    file: Path,
    payload_field: str,
    values: Tuple[str, ...],
    record_id: Optional[str],
    no_progress: bool,
) -> None:
    """Upload FILE as the blob of an OBJTYPE record (default ContentVersion style)."""
    fields = parse_pairs(values, "--set")
    if objtype == "ContentVersion":
        fields.setdefault("PathOnClient", file.name)

    client = connect_client()
    try:
        with file.open("rb") as fh, upload_progress_bar(file.name, disable=no_progress) as observe:
            if record_id:
                res = client.update_blob(
                    objtype, record_id, fields, file.name, payload_field, fh, observe
                )
            else:
                res = client.create_blob(objtype, fields, file.name, payload_field, fh, observe)
    except SalesforceError as e:
        raise fail(e) from e
    finally:
        client.close()

    _logger.info("Uploaded %s to %s", file, objtype)
    if res is not None:
        click.echo(json.dumps(res, indent=2))
    else:
        click.echo(f"Updated {objtype} {record_id}")


@click.command("download")
@click.argument("path")
@click.argument("out", type=click.Path(dir_okay=False, path_type=Path))
def download_cmd(path: str, out: Path) -> None:
    """Download raw content, e.g. /services/data/v60.0/sobjects/ContentVersion/<Id>/VersionData."""
    client = connect_client()
    try:
        content = client.get_file(path)
    except SalesforceError as e:
        raise fail(e) from e
    finally:
        client.close()

    if content is None:
        raise click.ClickException(f"No content returned for {path}")
    if not isinstance(content, bytes):
        content = json.dumps(content, indent=2).encode("utf-8")

    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(content)
    click.echo(f"Wrote {len(content)} bytes to {out}")
