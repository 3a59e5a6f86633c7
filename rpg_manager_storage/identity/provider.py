"""
Access token provider abstract interface.

Defines the contract that identity providers must implement. The OAuth
flow itself lives outside this package; providers only hand out
credentials and revoke them.
"""

from abc import ABC, abstractmethod

from .types import Credential


class AccessTokenProvider(ABC):
    """Abstract access token provider.

    The provider is responsible for:
    - Obtaining a fresh access credential (prompting the user if needed)
    - Revoking a credential on sign out
    """

    @abstractmethod
    async def request_access_token(self) -> Credential:
        """Obtain a new access credential.

        Returns:
            Credential with its expiry

        Raises:
            AuthenticationRequiredError: If no credential can be obtained
        """
        ...

    @abstractmethod
    async def revoke(self, access_token: str) -> None:
        """Revoke an access token.

        After revocation the token is rejected by the remote store.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the provider name (for logs)."""
        ...
