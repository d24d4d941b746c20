from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .env_loader import env_flag, env_number

DEFAULT_LOGIN_URL = "https://login.salesforce.com"
DEFAULT_API_VERSION = "v31.0"


@dataclass
class SFConfig:
    """Configuration for a SalesforceClient."""

    # 'Consumer Key' of the connected app; needed for the refresh exchange
    client_id: Optional[str] = None

    # Base login URL (not the instance URL)
    login_url: str = DEFAULT_LOGIN_URL

    # Explicit forwarding proxy. Leave unset when running behind a hosted page
    # (the page's own /services/proxy is used) or as a packaged app.
    proxy_url: Optional[str] = None

    # URL of the hosting page, e.g. https://c.na1.visual.force.com/apex/Foo
    page_url: Optional[str] = None

    # Optional: pre-provided credentials (e.g. from an OAuth callback)
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    instance_url: Optional[str] = None

    api_version: Optional[str] = None

    # False makes every call block the calling thread until the transport
    # completes.
    async_requests: bool = True
    timeout: float = 30.0
    max_workers: int = 4

    @classmethod
    def from_env(cls) -> SFConfig:
        """Load configuration from environment variables."""
        return cls(
            client_id=os.getenv("SF_CLIENT_ID"),
            login_url=os.getenv("SF_LOGIN_URL", DEFAULT_LOGIN_URL),
            proxy_url=os.getenv("SF_PROXY_URL") or None,
            page_url=os.getenv("SF_PAGE_URL") or None,
            access_token=os.getenv("SF_ACCESS_TOKEN"),
            refresh_token=os.getenv("SF_REFRESH_TOKEN"),
            instance_url=os.getenv("SF_INSTANCE_URL"),
            api_version=os.getenv("SF_API_VERSION"),
            async_requests=env_flag("SF_ASYNC", True),
            timeout=env_number("SF_TIMEOUT", 30.0),
            max_workers=int(env_number("SF_MAX_WORKERS", 4)),
        )
