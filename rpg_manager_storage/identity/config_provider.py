"""
Config file token provider.

Reads an access token from the local settings file or the environment,
for development and for setups where another tool runs the OAuth flow.
"""

import logging
import os
from pathlib import Path
from typing import Any

import aiohttp
import yaml

from ..config import DEFAULT_SETTINGS_PATH
from ..exceptions import AuthenticationRequiredError, TransportError
from .provider import AccessTokenProvider
from .types import DEFAULT_EXPIRES_IN, Credential

logger = logging.getLogger(__name__)

GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

TOKEN_ENV_VAR = "RPG_MANAGER_ACCESS_TOKEN"
EXPIRES_IN_ENV_VAR = "RPG_MANAGER_TOKEN_EXPIRES_IN"


class ConfigTokenProvider(AccessTokenProvider):
    """Token provider that reads from local config.

    Configuration in ~/.rpg_manager/settings.yaml:

    ```yaml
    identity:
      access_token: "ya29...."
      expires_in: 3599
    ```

    ``RPG_MANAGER_ACCESS_TOKEN`` and ``RPG_MANAGER_TOKEN_EXPIRES_IN`` take
    precedence over the file.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        revoke_url: str | None = GOOGLE_REVOKE_URL,
    ):
        """Initialize the config file provider.

        Args:
            config_path: Path to settings.yaml. Defaults to ~/.rpg_manager/settings.yaml
            revoke_url: Token revocation endpoint (None disables remote revocation)
        """
        self.config_path = config_path or DEFAULT_SETTINGS_PATH
        self.revoke_url = revoke_url

    @property
    def name(self) -> str:
        return "config"

    async def request_access_token(self) -> Credential:
        """Read the configured token.

        Raises:
            AuthenticationRequiredError: If no token is configured
        """
        token = os.environ.get(TOKEN_ENV_VAR)
        expires_in: Any = os.environ.get(EXPIRES_IN_ENV_VAR)

        if not token:
            identity_config = self._load_config().get("identity", {}) or {}
            token = identity_config.get("access_token")
            expires_in = identity_config.get("expires_in")

        if not token:
            raise AuthenticationRequiredError(
                f"No access token configured. Set {TOKEN_ENV_VAR} or identity.access_token "
                f"in {self.config_path}"
            )

        return Credential.from_token_response(
            {"access_token": token, "expires_in": expires_in or DEFAULT_EXPIRES_IN}
        )

    async def revoke(self, access_token: str) -> None:
        """Revoke the token at the identity provider.

        Raises:
            TransportError: If the revocation request fails
        """
        if not self.revoke_url:
            return

        try:
            async with aiohttp.ClientSession() as session:
                params = {"token": access_token}
                async with session.post(self.revoke_url, params=params) as response:
                    # 400 means the token was already invalid
                    if response.status >= 500:
                        raise TransportError("revoke", status=response.status)
        except aiohttp.ClientError as e:
            raise TransportError("revoke", cause=e) from e

        logger.info("Access token revoked")

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            return {}

        try:
            content = self.config_path.read_text()
            return yaml.safe_load(content) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read settings file {self.config_path}: {e}")
            return {}
