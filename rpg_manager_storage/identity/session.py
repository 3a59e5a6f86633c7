"""
Authentication session.

Holds the credential currently used for remote calls. It replaces the
"is authenticated" flags a UI would otherwise keep globally: components
ask the session, and the session announces changes on the event bus.
"""

import logging
from datetime import timedelta

from ..events import EventBus, LoggedOut, LoginSucceeded, SessionExpired
from ..exceptions import AuthenticationRequiredError, TransportError
from .credential_cache import CredentialCache
from .provider import AccessTokenProvider
from .types import DEFAULT_SAFETY_MARGIN, Credential

logger = logging.getLogger(__name__)


class AuthSession:
    """Tracks the access credential for the remote store.

    Usage:
        session = AuthSession(provider, CredentialCache(path), events)
        if not await session.restore():
            await session.login()
        token = session.access_token
    """

    def __init__(
        self,
        provider: AccessTokenProvider,
        cache: CredentialCache,
        events: EventBus | None = None,
        margin: timedelta = DEFAULT_SAFETY_MARGIN,
    ):
        self.provider = provider
        self.cache = cache
        self.events = events
        self.margin = margin
        self._credential: Credential | None = None

    @property
    def is_authenticated(self) -> bool:
        """Check if a credential is held and outside the expiry margin."""
        return self._credential is not None and self._credential.is_valid(margin=self.margin)

    @property
    def credential(self) -> Credential | None:
        return self._credential

    @property
    def access_token(self) -> str:
        """Get the current access token.

        Raises:
            AuthenticationRequiredError: If not authenticated
        """
        credential = self._credential
        if credential is None or not credential.is_valid(margin=self.margin):
            raise AuthenticationRequiredError("Connect to the cloud storage first")
        return credential.access_token

    def _publish(self, event) -> None:
        if self.events is not None:
            self.events.publish(event)

    async def restore(self) -> bool:
        """Reuse a cached credential without prompting.

        Returns:
            True if a valid cached credential was restored
        """
        credential = await self.cache.load()
        if credential is None:
            return False

        self._credential = credential
        logger.info("Drive session restored from cache")
        self._publish(LoginSucceeded(restored=True))
        return True

    async def login(self) -> Credential:
        """Obtain a fresh credential from the provider and cache it."""
        credential = await self.provider.request_access_token()
        await self.cache.save(credential)
        self._credential = credential
        logger.info(f"Logged in via {self.provider.name} provider")
        self._publish(LoginSucceeded(restored=False))
        return credential

    async def ensure_authenticated(self) -> str:
        """Return a usable token, restoring from cache or logging in as needed."""
        if self.is_authenticated:
            return self.access_token
        if not await self.restore():
            await self.login()
        return self.access_token

    async def invalidate(self) -> None:
        """Drop the credential after the remote store rejected it."""
        self._credential = None
        await self.cache.clear()
        logger.warning("Remote store rejected the credential, session cleared")
        self._publish(SessionExpired())

    async def logout(self) -> None:
        """Revoke the credential and clear the cache."""
        credential = self._credential
        self._credential = None

        if credential is not None:
            try:
                await self.provider.revoke(credential.access_token)
            except TransportError as e:
                logger.warning(f"Token revocation failed, clearing local session anyway: {e}")

        await self.cache.clear()
        logger.info("Logged out of cloud storage")
        self._publish(LoggedOut())
