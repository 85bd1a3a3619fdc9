"""Zoom Server-to-Server OAuth token handling."""

import logging
import threading
import time
from typing import Callable, Optional

import requests

from zoom_archiver.errors import AuthError, UpstreamError
from zoom_archiver.models import Credential
from zoom_archiver.utils.http import request_once
from zoom_archiver.utils.retry import DEFAULT_POLICY, RetryPolicy, with_retry

logger = logging.getLogger(__name__)


class TokenManager:
    """Owns the access token for the Zoom API.

    ``get_token()`` returns the cached credential while it is valid and
    otherwise performs an ``account_credentials`` exchange. The check and the
    refresh happen under one lock, so concurrent callers share a single
    in-flight refresh instead of each requesting a token.
    """

    TOKEN_URL = "https://zoom.us/oauth/token"
    SAFETY_MARGIN = 60  # seconds

    def __init__(
        self,
        account_id: str,
        client_id: str,
        client_secret: str,
        session: Optional[requests.Session] = None,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the token manager.

        Args:
            account_id: Zoom account ID.
            client_id: Server-to-Server OAuth app client ID.
            client_secret: Server-to-Server OAuth app client secret.
            session: Optional HTTP session (shared with the API client).
            retry_policy: Retry settings for the token endpoint.
            clock: Returns the current epoch time in seconds.
        """
        self.account_id = account_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()
        self.clock = clock
        self._credential: Optional[Credential] = None
        self._lock = threading.Lock()
        self._request_token = with_retry(retry_policy)(self._request_token_once)

    def get_token(self) -> Credential:
        """Get a valid access token, requesting a new one if needed.

        Returns:
            Cached or freshly issued credential.

        Raises:
            AuthError: If Zoom rejects the credentials or cannot be reached.
        """
        with self._lock:
            credential = self._credential
            if credential is not None and credential.is_valid(self.clock()):
                logger.debug("Using cached access token")
                return credential

            logger.debug("Requesting new access token")
            self._credential = self._refresh()
            return self._credential

    def invalidate(self) -> None:
        """Drop the cached token so the next ``get_token()`` refreshes it."""
        with self._lock:
            self._credential = None
        logger.debug("Cleared cached access token")

    def _refresh(self) -> Credential:
        try:
            payload = self._request_token()
        except UpstreamError as e:
            logger.error(f"Failed to obtain OAuth token: {e}")
            raise AuthError("Failed to authenticate with Zoom API") from e

        if not isinstance(payload, dict):
            raise AuthError("Zoom token response was not a JSON object")

        access_token = payload.get("access_token")
        if not access_token:
            raise AuthError("Zoom token response did not contain an access token")

        expires_in = int(payload.get("expires_in", 3600))
        credential = Credential(
            value=access_token,
            expires_at=self.clock() + expires_in - self.SAFETY_MARGIN,
        )
        logger.info("Successfully obtained OAuth token")
        return credential

    def _request_token_once(self) -> dict:
        response = request_once(
            self.session,
            "POST",
            self.TOKEN_URL,
            params={"grant_type": "account_credentials", "account_id": self.account_id},
            auth=(self.client_id, self.client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Token endpoint returned invalid JSON", status=response.status_code) from e
