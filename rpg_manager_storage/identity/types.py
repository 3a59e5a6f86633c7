"""
Credential types.

Defines the access credential handed out by an identity provider and the
expiry rules used to decide whether a cached one can be reused.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from ..exceptions import FormatError

DEFAULT_EXPIRES_IN = 3600
DEFAULT_SAFETY_MARGIN = timedelta(seconds=60)


@dataclass
class Credential:
    """An access token and the moment it stops being accepted.

    The token itself is kept out of ``repr`` so it never lands in logs.
    """

    access_token: str = field(repr=False)
    expiry: datetime

    @classmethod
    def from_token_response(
        cls,
        response: dict[str, Any],
        now: datetime | None = None,
    ) -> "Credential":
        """Build a credential from an OAuth token response.

        Args:
            response: Mapping with ``access_token`` and ``expires_in`` (seconds)
            now: Issue time (defaults to the current UTC time)
        """
        access_token = response.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise FormatError("Token response has no access_token")
        expires_in = int(response.get("expires_in", DEFAULT_EXPIRES_IN))
        issued = now or datetime.now(UTC)
        return cls(access_token=access_token, expiry=issued + timedelta(seconds=expires_in))

    def is_valid(
        self,
        now: datetime | None = None,
        margin: timedelta = DEFAULT_SAFETY_MARGIN,
    ) -> bool:
        """Check that the credential stays valid for at least ``margin``."""
        now = now or datetime.now(UTC)
        return now < self.expiry - margin

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (expiry as epoch milliseconds)."""
        return {
            "access_token": self.access_token,
            "expiry": int(self.expiry.timestamp() * 1000),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        """Deserialize from dictionary."""
        return cls(
            access_token=str(data["access_token"]),
            expiry=datetime.fromtimestamp(int(data["expiry"]) / 1000, tz=UTC),
        )
