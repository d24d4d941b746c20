from __future__ import annotations

from typing import Dict, Iterable

import click

from .client import SalesforceClient
from .config import SFConfig
from .exceptions import MissingCredentialsError, SalesforceError, TransportError

_CREDENTIALS_HELP = (
    "Set these environment variables (or create a .env file), e.g.:\n"
    "  SF_CLIENT_ID=...             # Connected App Consumer Key\n"
    "  SF_REFRESH_TOKEN=...         # OAuth refresh token\n"
    "  SF_ACCESS_TOKEN=...          # optional; a current session token\n"
    "  SF_INSTANCE_URL=https://yourorg.my.salesforce.com\n"
    "  SF_LOGIN_URL=https://login.salesforce.com  # or your custom domain URL\n"
    "  SF_PROXY_URL=...             # optional forwarding proxy\n"
)


def connect_client() -> SalesforceClient:
    """Build a synchronous client from the environment and connect it."""
    cfg = SFConfig.from_env()
    cfg.async_requests = False
    client = SalesforceClient(cfg)
    try:
        client.connect()
    except MissingCredentialsError as e:
        needed = ", ".join(e.missing)
        raise click.ClickException(
            f"Missing Salesforce credentials: {needed}\n\n{_CREDENTIALS_HELP}"
        ) from e
    except SalesforceError as e:
        raise click.ClickException(f"Login failed: {e}") from e
    return client


def fail(e: SalesforceError) -> click.ClickException:
    """Turn an API error into a CLI error message."""
    if isinstance(e, TransportError) and e.status:
        return click.ClickException(f"HTTP {e.status} {e.reason}: {e.body}")
    return click.ClickException(str(e))


def parse_pairs(values: Iterable[str], option: str) -> Dict[str, str]:
    """Parse repeated KEY=VALUE options."""
    pairs: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint=option)
        pairs[key] = value
    return pairs
