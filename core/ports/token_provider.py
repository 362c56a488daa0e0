from __future__ import annotations

from datetime import datetime
from typing import Protocol


class TokenProvider(Protocol):
    """Source of a valid OAuth access token."""

    @property
    def expires_at(self) -> datetime:
        """Expiry of the cached access token."""

    async def get_valid_token(self) -> str:
        """Return an access token, refreshing it first when it is close to expiry."""

    async def close(self) -> None:
        """Close any underlying connections."""
