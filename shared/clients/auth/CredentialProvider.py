"""Credential providers. The engine only asks them for headers; it never interprets or refreshes credentials."""

import base64
from abc import ABC, abstractmethod
from typing import Callable

from shared.helper.HelperConfig import HelperConfig


class CredentialProvider(ABC):
    @abstractmethod
    def get_auth_header(self) -> dict:
        """
        Returns the authentication header for the current request.

        Returns:
            dict: Header name → value. Empty if no credentials apply.
        """
        pass


class NoCredentials(CredentialProvider):
    def get_auth_header(self) -> dict:
        return {}


class BasicCredentials(CredentialProvider):
    def __init__(self, username: str, password: str):
        self._username = username
        self._password = password

    def get_auth_header(self) -> dict:
        token = base64.b64encode(f"{self._username}:{self._password}".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}


class BearerCredentials(CredentialProvider):
    """Bearer token auth. Accepts a fixed token or a callable returning the current token."""

    def __init__(self, token: str | Callable[[], str]):
        self._token = token

    def get_auth_header(self) -> dict:
        token = self._token() if callable(self._token) else self._token
        return {"Authorization": f"Bearer {token}"} if token else {}


def credentials_from_config(helper_config: HelperConfig, prefix: str) -> CredentialProvider:
    """Pick a credential provider from env configuration.

    Reads `<prefix>_API_KEY` (bearer) first, then `<prefix>_USERNAME`/`<prefix>_PASSWORD` (basic).

    Args:
        helper_config (HelperConfig): The configuration helper.
        prefix (str): Key prefix of the client, e.g. "SEARCH_GRAPHQL".

    Returns:
        CredentialProvider: The matching provider, NoCredentials if nothing is configured.
    """
    api_key = helper_config.get_string_val(f"{prefix}_API_KEY", default="")
    if api_key:
        return BearerCredentials(api_key)
    username = helper_config.get_string_val(f"{prefix}_USERNAME", default="")
    if username:
        password = helper_config.get_string_val(f"{prefix}_PASSWORD", default="")
        return BasicCredentials(username, password)
    return NoCredentials()
