"""Tests for the Firestore REST remote store."""
import asyncio
import json
from unittest.mock import MagicMock

import pytest
import requests

from finance_tracker.core.exceptions import AuthFailure, RemoteUnavailable
from finance_tracker.db.local_cache import LocalCache
from finance_tracker.db.remote_store import SECURE_TOKEN_URL, FirestoreRemoteStore
from finance_tracker.sync.coordinator import SyncCoordinator


def make_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.post.return_value = make_response(payload={
        "idToken": "id-token",
        "refreshToken": "refresh-token",
        "expiresIn": "3600",
        "localId": "uid-42",
    })
    return session


@pytest.fixture
def remote(session) -> FirestoreRemoteStore:
    return FirestoreRemoteStore("api-key", "demo-project", timeout=1, session=session)


class TestFirestoreRemoteStore:
    """Test cases for FirestoreRemoteStore with a mocked HTTP session."""

    def test_sign_in_anonymously(self, remote, session):
        """Anonymous sign-up returns the Firebase local id."""
        assert asyncio.run(remote.sign_in_anonymously()) == "uid-42"

        url = session.post.call_args.args[0]
        assert url.endswith("/accounts:signUp")
        assert session.post.call_args.kwargs["params"] == {"key": "api-key"}

    def test_sign_in_failure(self, remote, session):
        session.post.side_effect = requests.ConnectionError("no route")

        with pytest.raises(AuthFailure):
            asyncio.run(remote.sign_in_anonymously())

    def test_get_document(self, remote, session):
        """Documents are read from users/{uid}/{dataset}/data."""
        session.get.return_value = make_response(payload={
            "fields": {"data": {"stringValue": json.dumps({"2024-01": 5.0})}}
        })

        async def scenario():
            await remote.sign_in_anonymously()
            return await remote.get_document("uid-42", "budgets")

        assert asyncio.run(scenario()) == {"2024-01": 5.0}
        url = session.get.call_args.args[0]
        assert url.endswith("/projects/demo-project/databases/(default)/documents/users/uid-42/budgets/data")
        assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer id-token"}

    def test_missing_document_is_none(self, remote, session):
        session.get.return_value = make_response(status_code=404)

        async def scenario():
            await remote.sign_in_anonymously()
            return await remote.get_document("uid-42", "budgets")

        assert asyncio.run(scenario()) is None

    def test_get_server_error(self, remote, session):
        session.get.return_value = make_response(status_code=503)

        async def scenario():
            await remote.sign_in_anonymously()
            await remote.get_document("uid-42", "budgets")

        with pytest.raises(RemoteUnavailable):
            asyncio.run(scenario())

    def test_get_before_sign_in(self, remote):
        with pytest.raises(RemoteUnavailable):
            asyncio.run(remote.get_document("uid-42", "budgets"))

    def test_set_document_stamps_server_time(self, remote, session):
        """Writes carry the JSON data and a lastUpdated server timestamp."""
        async def scenario():
            await remote.sign_in_anonymously()
            await remote.set_document("uid-42", "transactions", [{"id": 1}])

        asyncio.run(scenario())

        url = session.post.call_args.args[0]
        body = session.post.call_args.kwargs["json"]
        write = body["writes"][0]
        assert url.endswith("/documents:commit")
        assert write["update"]["name"].endswith("/users/uid-42/transactions/data")
        assert json.loads(write["update"]["fields"]["data"]["stringValue"]) == [{"id": 1}]
        assert write["updateTransforms"] == [
            {"fieldPath": "lastUpdated", "setToServerValue": "REQUEST_TIME"}
        ]

    def test_set_failure(self, remote, session):
        async def scenario():
            await remote.sign_in_anonymously()
            session.post.return_value = make_response(status_code=403)
            await remote.set_document("uid-42", "budgets", {})

        with pytest.raises(RemoteUnavailable):
            asyncio.run(scenario())

    def test_expired_token_refreshed(self, remote, session):
        session.get.return_value = make_response(status_code=404)

        async def scenario():
            await remote.sign_in_anonymously()
            remote._token_expires_at = 0
            session.post.return_value = make_response(payload={
                "id_token": "fresh-token", "refresh_token": "r2", "expires_in": "3600", "user_id": "uid-42",
            })
            await remote.get_document("uid-42", "budgets")

        asyncio.run(scenario())

        assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer fresh-token"}

    def test_restore_session(self, remote, session):
        """A saved refresh token resumes the same user without signing up."""
        session.post.return_value = make_response(payload={
            "id_token": "id-2", "refresh_token": "refresh-token", "expires_in": "3600", "user_id": "uid-42",
        })

        assert asyncio.run(remote.restore_session("refresh-token")) == "uid-42"
        assert session.post.call_args.args[0] == SECURE_TOKEN_URL
        assert session.post.call_args.kwargs["data"]["refresh_token"] == "refresh-token"
        assert remote.refresh_token == "refresh-token"

    def test_restore_session_rejected(self, remote, session):
        session.post.return_value = make_response(status_code=400)

        with pytest.raises(AuthFailure):
            asyncio.run(remote.restore_session("revoked"))


def firebase_session():
    """Mocked HTTP session that issues a new uid per sign-up and honors refresh tokens."""
    session = MagicMock(spec=requests.Session)
    sign_ups = []

    def post(url, **kwargs):
        if url.endswith("/accounts:signUp"):
            sign_ups.append(url)
            uid = f"uid-{len(sign_ups)}"
            return make_response(payload={
                "idToken": f"id-{uid}", "refreshToken": f"rt-{uid}", "expiresIn": "3600", "localId": uid,
            })
        if url == SECURE_TOKEN_URL:
            token = kwargs["data"]["refresh_token"]
            if not token.startswith("rt-"):
                return make_response(status_code=400)
            return make_response(payload={
                "id_token": f"id-{token[3:]}", "refresh_token": token, "expires_in": "3600",
                "user_id": token[3:],
            })
        return make_response()

    session.post.side_effect = post
    session.get.return_value = make_response(status_code=404)
    return session, sign_ups


class TestFirestoreIdentityAcrossRuns:
    """The anonymous Firebase identity is kept between app starts."""

    def test_same_user_across_app_starts(self, temp_db_path):
        """Two coordinators sharing one cache resolve to the same Firebase user."""
        session, sign_ups = firebase_session()

        user_ids = []
        for _ in range(2):
            remote = FirestoreRemoteStore("api-key", "demo-project", session=session)
            with LocalCache(temp_db_path) as cache:
                user_ids.append(asyncio.run(SyncCoordinator(cache, remote).authenticate()))

        assert user_ids == ["uid-1", "uid-1"]
        assert len(sign_ups) == 1

    def test_second_start_reads_first_users_documents(self, temp_db_path):
        session, _ = firebase_session()

        with LocalCache(temp_db_path) as cache:
            remote = FirestoreRemoteStore("api-key", "demo-project", session=session)
            asyncio.run(SyncCoordinator(cache, remote).authenticate())

        async def load_budgets(coordinator):
            await coordinator.authenticate()
            return await coordinator.load("budgets")

        with LocalCache(temp_db_path) as cache:
            remote = FirestoreRemoteStore("api-key", "demo-project", session=session)
            asyncio.run(load_budgets(SyncCoordinator(cache, remote)))

        url = session.get.call_args.args[0]
        assert url.endswith("/users/uid-1/budgets/data")
