"""Execution-environment policy and proxy routing.

Three environments are recognised:

* hosted page: running behind a platform-served (Visualforce) page. The page
  origin serves the data API itself and exposes a forwarding proxy at
  ``<page origin>/services/proxy``.
* proxied: an explicit forwarding proxy URL was configured. Every request goes
  to the proxy, with the real target in the ``SalesforceProxy-Endpoint``
  header, and the credential travels in ``X-Authorization`` so the proxy does
  not consume it.
* packaged app: no proxy at all; requests go straight to the instance.

The policy is computed once per client and never changes afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional
from urllib.parse import urlsplit

PROXY_ENDPOINT_HEADER = "SalesforceProxy-Endpoint"
PAGE_PROXY_PATH = "/services/proxy"
INSTANCE_BASE_DOMAIN = "salesforce.com"
MY_DOMAIN_MARKER = "my"

# Page schemes that mean "packaged app" rather than a hosted page
_PACKAGED_SCHEMES = ("file", "ms-appx")


class Route(NamedTuple):
    """Where to send a request, and the real target when proxied."""

    url: str
    forward_to: Optional[str] = None


@dataclass(frozen=True)
class EnvironmentPolicy:
    hosted: bool = False
    page_origin: Optional[str] = None
    proxy_url: Optional[str] = None
    authz_header: str = "Authorization"

    @classmethod
    def detect(
        cls,
        page_url: Optional[str] = None,
        proxy_url: Optional[str] = None,
    ) -> EnvironmentPolicy:
        if proxy_url:
            return cls(hosted=False, proxy_url=proxy_url, authz_header="X-Authorization")

        if page_url:
            parts = urlsplit(page_url)
            if parts.scheme in ("http", "https") and parts.netloc:
                origin = f"{parts.scheme}://{parts.netloc}"
                return cls(
                    hosted=True,
                    page_origin=origin,
                    proxy_url=origin + PAGE_PROXY_PATH,
                )
            if parts.scheme not in _PACKAGED_SCHEMES:
                raise ValueError(f"Unsupported page URL: {page_url!r}")

        return cls()

    @property
    def page_hostname(self) -> Optional[str]:
        if self.page_origin is None:
            return None
        return urlsplit(self.page_origin).hostname


def route_request(
    policy: EnvironmentPolicy,
    target_url: str,
    *,
    always_proxy: bool = False,
) -> Route:
    """Decide whether ``target_url`` is sent directly or through the proxy.

    A hosted page talks to its own origin directly; everything else goes
    through the proxy when there is one. ``always_proxy`` forces the proxy
    whenever it exists, which the hosted page needs for cross-domain
    surfaces such as Apex REST.
    """
    if policy.proxy_url is not None and (always_proxy or not policy.hosted):
        return Route(policy.proxy_url, forward_to=target_url)
    return Route(target_url)


def instance_from_hostname(hostname: str) -> str:
    """Derive the instance name from a platform page host name.

    Host names come in three shapes and each is handled separately:

    * ``abc.my.salesforce.com`` (custom domain) -> ``abc.my``
    * ``na1.salesforce.com`` -> ``na1``
    * ``abc.na1.visual.force.com`` and anything else -> second label, ``na1``

    A single-label host (``localhost``) has no second label and raises
    ValueError.

    Keep this exact; the page host formats are an external contract.
    """
    labels = hostname.split(".")
    if len(labels) == 4 and labels[1] == MY_DOMAIN_MARKER:
        return labels[0] + "." + labels[1]
    if len(labels) == 3:
        return labels[0]
    if len(labels) < 2:
        raise ValueError(f"Cannot derive an instance from host name {hostname!r}")
    return labels[1]


def instance_origin_from_hostname(hostname: str) -> str:
    return f"https://{instance_from_hostname(hostname)}.{INSTANCE_BASE_DOMAIN}"
