"""
Identity management for remote sync.

Provides the credential type, an on-disk credential cache, the token
provider abstraction and the session object that ties them together.
"""

from .config_provider import ConfigTokenProvider
from .credential_cache import CredentialCache
from .provider import AccessTokenProvider
from .session import AuthSession
from .types import DEFAULT_SAFETY_MARGIN, Credential

__all__ = [
    # Types
    "Credential",
    "DEFAULT_SAFETY_MARGIN",
    # Providers
    "AccessTokenProvider",
    "ConfigTokenProvider",
    # Session
    "CredentialCache",
    "AuthSession",
]
