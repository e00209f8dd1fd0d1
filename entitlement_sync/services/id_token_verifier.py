"""
Google ID Token Verification - resolves the calling user from a bearer token.

The user id is the verified `sub` claim, never a value the caller chose.
Web and Android clients sign in with different client IDs, so each configured
ID is tried as the audience in turn.
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from typing import Any

from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from structlog import get_logger

from entitlement_sync.exceptions import AuthenticationError, RemoteNetworkError

logger = get_logger(__name__)

# Verified tokens are forgotten this long before they expire
EXPIRY_BUFFER_SECONDS = 60
DEFAULT_CACHE_SIZE = 10_000

TokenDecoder = Callable[[str, str], dict[str, Any]]


def verify_with_google(token: str, client_id: str) -> dict[str, Any]:
    """
    Check signature, expiry, issuer and audience against Google's public keys.

    Blocking: fetches Google's certificates over HTTP.
    """
    return id_token.verify_oauth2_token(  # type: ignore[no-any-return,no-untyped-call]
        token,
        google_requests.Request(),  # type: ignore[no-untyped-call]
        client_id,
    )


class GoogleIdTokenVerifier:
    """Verifies Google ID tokens and caches the result until shortly before expiry."""

    def __init__(
        self,
        client_ids: Sequence[str],
        decoder: TokenDecoder = verify_with_google,
        max_cached: int = DEFAULT_CACHE_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not client_ids:
            raise ValueError("At least one Google client ID required")
        self.client_ids = tuple(client_ids)
        self.decoder = decoder
        self.max_cached = max_cached
        self.clock = clock
        # token -> (user id, expiry), least recently used first
        self._cache: OrderedDict[str, tuple[str, float]] = OrderedDict()

    async def verify(self, token: str) -> str:
        """
        User id of the token's owner.

        Raises:
            AuthenticationError: If the token is invalid, expired or issued
                for another client
            RemoteNetworkError: If Google's keys could not be fetched
        """
        cached = self._cache.get(token)
        if cached is not None:
            user_id, expiry = cached
            if self.clock() < expiry:
                self._cache.move_to_end(token)
                return user_id
            del self._cache[token]

        claims = await asyncio.to_thread(self._decode, token)
        user_id = claims.get("sub")
        if not user_id:
            raise AuthenticationError("Token has no subject")

        expiry = float(claims.get("exp", self.clock() + 3600)) - EXPIRY_BUFFER_SECONDS
        self._remember(token, str(user_id), expiry)
        return str(user_id)

    def _decode(self, token: str) -> dict[str, Any]:
        last_error = "Invalid token"
        for client_id in self.client_ids:
            try:
                return self.decoder(token, client_id)
            except google_auth_exceptions.TransportError as exc:
                logger.error("google_certs_unavailable", error=str(exc))
                raise RemoteNetworkError("verify_id_token", str(exc)) from exc
            except (ValueError, google_auth_exceptions.GoogleAuthError) as exc:
                last_error = str(exc)
                # Wrong audience: the token may belong to the next client
                if "audience" not in last_error.lower():
                    break

        logger.warning("id_token_rejected", error=last_error)
        raise AuthenticationError(last_error)

    def _remember(self, token: str, user_id: str, expiry: float) -> None:
        self._cache[token] = (user_id, expiry)
        self._cache.move_to_end(token)
        while len(self._cache) > self.max_cached:
            self._cache.popitem(last=False)
