"""Authenticated Salesforce REST client with transparent session refresh."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sfrest")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "unknown"
finally:
    del version, PackageNotFoundError

from .client import SalesforceClient  # noqa: E402
from .config import SFConfig  # noqa: E402
from .dispatcher import Dispatcher, PendingRequest, Surface  # noqa: E402
from .environment import EnvironmentPolicy  # noqa: E402
from .exceptions import (  # noqa: E402
    ApplicationError,
    AuthExpiredError,
    MissingCredentialsError,
    RefreshError,
    SalesforceError,
    TransportError,
)
from .session import CredentialStore  # noqa: E402

__all__ = [
    "ApplicationError",
    "AuthExpiredError",
    "CredentialStore",
    "Dispatcher",
    "EnvironmentPolicy",
    "MissingCredentialsError",
    "PendingRequest",
    "RefreshError",
    "SFConfig",
    "SalesforceClient",
    "SalesforceError",
    "Surface",
    "TransportError",
    "__version__",
]
