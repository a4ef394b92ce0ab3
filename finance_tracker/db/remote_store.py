"""Remote per-user document store (Firebase over REST)."""
import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Protocol

import requests

from finance_tracker.config import (
    FIRESTORE_URL,
    IDENTITY_TOOLKIT_URL,
    REMOTE_TIMEOUT_SECONDS,
)
from finance_tracker.core.exceptions import AuthFailure, RemoteUnavailable

logger = logging.getLogger(__name__)

SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"
DOCUMENT_ID = "data"
TOKEN_REFRESH_MARGIN_SECONDS = 60


class RemoteStore(Protocol):
    """One logical document per (user, dataset). Every call may fail."""

    refresh_token: Optional[str]

    async def sign_in_anonymously(self) -> str:
        """Establish a new anonymous identity and return its user id.

        Raises:
            AuthFailure: identity could not be established
        """
        ...

    async def restore_session(self, refresh_token: str) -> str:
        """Resume the identity a previous run saved and return its user id.

        Raises:
            AuthFailure: the stored session was rejected
            RemoteUnavailable: transport or server error
        """
        ...

    async def get_document(self, user_id: str, dataset: str) -> Optional[Any]:
        """Return the stored dataset value, or None if no document exists.

        Raises:
            RemoteUnavailable: transport or server error
        """
        ...

    async def set_document(self, user_id: str, dataset: str, value: Any) -> None:
        """Overwrite the dataset document, stamping a server-side lastUpdated.

        Raises:
            RemoteUnavailable: transport or server error
        """
        ...


class FirestoreRemoteStore:
    """Firebase Auth + Cloud Firestore through their REST APIs.

    Documents live at ``users/{uid}/{dataset}/data`` with two fields:
    ``data`` (the JSON text of the dataset) and ``lastUpdated`` (server
    timestamp). Blocking HTTP calls run in a worker thread so the event loop
    is never blocked.
    """

    def __init__(
        self,
        api_key: str,
        project_id: str,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Firebase web API key
            project_id: Firebase project id
            timeout: Per-request timeout in seconds
            session: Optional requests session (injected for testing)
        """
        self.api_key = api_key
        self.project_id = project_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self._id_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def _documents_root(self) -> str:
        return f"projects/{self.project_id}/databases/(default)/documents"

    def _document_name(self, user_id: str, dataset: str) -> str:
        return f"{self._documents_root}/users/{user_id}/{dataset}/{DOCUMENT_ID}"

    def _store_tokens(self, id_token: str, refresh_token: str, expires_in: Any) -> None:
        self._id_token = id_token
        self._refresh_token = refresh_token
        self._token_expires_at = time.time() + float(expires_in or 3600)

    # === Auth ===

    def _sign_up(self) -> str:
        try:
            response = self.session.post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:signUp",
                params={"key": self.api_key},
                json={"returnSecureToken": True},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise AuthFailure(f"Anonymous sign-in failed: {e}") from e

        try:
            self._store_tokens(payload["idToken"], payload["refreshToken"], payload.get("expiresIn"))
            return payload["localId"]
        except KeyError as e:
            raise AuthFailure(f"Unexpected sign-in response, missing {e}") from e

    def _refresh(self) -> str:
        """Exchange the refresh token for a new id token. Returns the user id."""
        try:
            response = self.session.post(
                SECURE_TOKEN_URL,
                params={"key": self.api_key},
                data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
                timeout=self.timeout,
            )
            if response.status_code in (400, 401, 403):
                raise AuthFailure(f"Refresh token rejected (HTTP {response.status_code})")
            response.raise_for_status()
            payload = response.json()
            self._store_tokens(payload["id_token"], payload["refresh_token"], payload.get("expires_in"))
            return payload["user_id"]
        except (requests.RequestException, ValueError, KeyError) as e:
            raise RemoteUnavailable(f"Token refresh failed: {e}") from e

    def _restore(self, refresh_token: str) -> str:
        self._refresh_token = refresh_token
        return self._refresh()

    @property
    def refresh_token(self) -> Optional[str]:
        return self._refresh_token

    def _auth_headers(self) -> Dict[str, str]:
        if self._id_token is None:
            raise RemoteUnavailable("Not signed in")
        if time.time() >= self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            logger.debug("Refreshing remote id token")
            self._refresh()
        return {"Authorization": f"Bearer {self._id_token}"}

    # === Documents ===

    def _get(self, user_id: str, dataset: str) -> Optional[Any]:
        url = f"{FIRESTORE_URL}/{self._document_name(user_id, dataset)}"
        try:
            response = self.session.get(url, headers=self._auth_headers(), timeout=self.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            fields = response.json().get("fields", {})
        except (requests.RequestException, ValueError) as e:
            raise RemoteUnavailable(f"Failed to read '{dataset}': {e}") from e

        if "data" not in fields:
            return None
        try:
            return json.loads(fields["data"]["stringValue"])
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteUnavailable(f"Unreadable remote '{dataset}' document: {e}") from e

    def _set(self, user_id: str, dataset: str, value: Any) -> None:
        body = {
            "writes": [
                {
                    "update": {
                        "name": self._document_name(user_id, dataset),
                        "fields": {"data": {"stringValue": json.dumps(value)}},
                    },
                    "updateTransforms": [
                        {"fieldPath": "lastUpdated", "setToServerValue": "REQUEST_TIME"}
                    ],
                }
            ]
        }
        try:
            response = self.session.post(
                f"{FIRESTORE_URL}/{self._documents_root}:commit",
                headers=self._auth_headers(),
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise RemoteUnavailable(f"Failed to write '{dataset}': {e}") from e

    async def sign_in_anonymously(self) -> str:
        return await asyncio.to_thread(self._sign_up)

    async def restore_session(self, refresh_token: str) -> str:
        return await asyncio.to_thread(self._restore, refresh_token)

    async def get_document(self, user_id: str, dataset: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get, user_id, dataset)

    async def set_document(self, user_id: str, dataset: str, value: Any) -> None:
        await asyncio.to_thread(self._set, user_id, dataset, value)
