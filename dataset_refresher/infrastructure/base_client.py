"""Base class for async HTTP clients and credential checks."""

import logging
from typing import Dict, Optional

import httpx

from ..application.exceptions import ConfigurationError


def require_credential(owner: str, value: Optional[str]) -> str:
    """
    Return `value` if it looks like a real credential.

    Raises:
        ConfigurationError: If the credential is missing or appears to be
                            a placeholder.
    """

    if not value or "YOUR_" in str(value).upper():
        raise ConfigurationError(
            f"Credential for {owner} is missing or is a placeholder. "
            f"Please check your config files or environment."
        )
    return str(value)


class BaseClient:
    """A base client that handles an async client and optional token."""

    def __init__(self, client: httpx.AsyncClient, token: Optional[str] = None):
        """
        Initializes the base client.

        Args:
            client: An instance of httpx.AsyncClient.
            token: An optional bearer token; public sources need none.

        Raises:
            ConfigurationError: If a token is given but is a placeholder.
        """

        if token:
            token = require_credential(self.__class__.__name__, token)

        self.client = client
        self.token = token
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}
