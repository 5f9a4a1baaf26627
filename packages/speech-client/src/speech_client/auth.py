"""Subscription key to bearer token exchange."""

import logging
import time
from typing import Callable, Optional

import httpx

from .config import AuthConfig, settings
from .errors import AuthError

logger = logging.getLogger(__name__)


class CredentialProvider:
    """Exchanges a subscription key for a short-lived bearer token.

    Each call to fetch_token() performs one HTTPS request; wrap the
    provider in CachedCredentialProvider to reuse tokens across sessions.
    """

    def __init__(
        self,
        config: Optional[AuthConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the provider.

        Args:
            config: Auth configuration. Uses global settings if not provided.
            client: HTTP client to reuse. A short-lived client is created per
                    request when omitted.
        """
        self.config = config or settings.auth
        self._client = client

    async def fetch_token(self, secret: str) -> str:
        """Exchange the subscription key for a bearer token.

        Raises:
            AuthError: If the key is empty or rejected, or the token
                endpoint cannot be reached.
        """
        if not secret:
            raise AuthError("Subscription key is empty")

        headers = {"Ocp-Apim-Subscription-Key": secret}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.config.token_url, headers=headers, timeout=self.config.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await client.post(self.config.token_url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AuthError(
                f"Token request rejected with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise AuthError(f"Token endpoint unreachable: {e}") from e

        token = response.text.strip()
        if not token:
            raise AuthError("Token endpoint returned an empty token")

        logger.debug("Fetched bearer token")
        return token


class CachedCredentialProvider:
    """Reuses tokens per subscription key until they are due for refresh."""

    def __init__(
        self,
        provider: Optional[CredentialProvider] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider or CredentialProvider()
        self.ttl = ttl if ttl is not None else settings.auth.token_ttl
        self._clock = clock
        self._tokens: dict[str, tuple[str, float]] = {}

    async def fetch_token(self, secret: str) -> str:
        """Return a cached token, refreshing it once its ttl has elapsed."""
        cached = self._tokens.get(secret)
        now = self._clock()
        if cached is not None and now < cached[1]:
            return cached[0]

        token = await self.provider.fetch_token(secret)
        self._tokens[secret] = (token, self._clock() + self.ttl)
        return token

    def invalidate(self, secret: Optional[str] = None) -> None:
        """Drop the cached token for one key, or all tokens."""
        if secret is None:
            self._tokens.clear()
        else:
            self._tokens.pop(secret, None)
