"""
Pytest configuration and shared fixtures.
"""
import asyncio
import copy
from pathlib import Path

import pytest

from finance_tracker.core.exceptions import AuthFailure, RemoteUnavailable


class FakeRemoteStore:
    """In-memory RemoteStore with switches for simulating failures and latency."""

    def __init__(self, user_id: str = "remote-user-1"):
        self.user_id = user_id
        self.documents = {}
        self.fail_auth = False
        self.fail_reads = False
        self.fail_writes = False
        self.read_delay = 0.0
        self.write_delays = []
        self.sign_ins = 0
        self.restores = 0
        self.sessions = {}
        self.refresh_token = None
        self.reads = []
        self.writes = []

    async def sign_in_anonymously(self) -> str:
        self.sign_ins += 1
        if self.fail_auth:
            raise AuthFailure("anonymous sign-in disabled")
        self.refresh_token = f"refresh-{self.sign_ins}"
        self.sessions[self.refresh_token] = self.user_id
        return self.user_id

    async def restore_session(self, refresh_token: str) -> str:
        self.restores += 1
        if self.fail_auth or refresh_token not in self.sessions:
            raise AuthFailure("session rejected")
        self.refresh_token = refresh_token
        return self.sessions[refresh_token]

    async def get_document(self, user_id, dataset):
        self.reads.append(dataset)
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if self.fail_reads:
            raise RemoteUnavailable(f"cannot read {dataset}")
        return copy.deepcopy(self.documents.get((user_id, dataset)))

    async def set_document(self, user_id, dataset, value):
        if self.write_delays:
            await asyncio.sleep(self.write_delays.pop(0))
        if self.fail_writes:
            raise RemoteUnavailable(f"cannot write {dataset}")
        self.documents[(user_id, dataset)] = copy.deepcopy(value)
        self.writes.append((dataset, copy.deepcopy(value)))

    def document(self, dataset):
        return self.documents.get((self.user_id, dataset))


@pytest.fixture
def temp_db_path(tmp_path) -> Path:
    """Path to a fresh local cache database."""
    return tmp_path / "cache.db"


@pytest.fixture
def fake_remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def sample_transactions() -> list:
    """Stored transaction records (camelCase, as kept in the datasets)."""
    return [
        {"id": 1001, "description": "Salary", "amount": 5000.0, "type": "income",
         "categoryId": 1, "date": "2024-03-05", "recurringRule": "none"},
        {"id": 1002, "description": "Groceries", "amount": 320.5, "type": "expense",
         "categoryId": 6, "date": "2024-03-08", "recurringRule": "none"},
        {"id": 1003, "description": "Rent", "amount": 1500.0, "type": "expense",
         "categoryId": 7, "date": "2024-03-10", "recurringRule": "none"},
        {"id": 1004, "description": "Fuel", "amount": 80.0, "type": "expense",
         "categoryId": 9, "date": "2024-03-15", "recurringRule": "none"},
        {"id": 1005, "description": "Dinner out", "amount": 95.0, "type": "expense",
         "categoryId": 16, "date": "2024-04-02", "recurringRule": "none"},
        {"id": 1006, "description": "Freelance gig", "amount": 700.0, "type": "income",
         "categoryId": 2, "date": "2024-04-12", "recurringRule": "none"},
    ]


@pytest.fixture
def sample_categories() -> list:
    return [
        {"id": 1, "name": "Salary", "type": "income", "color": "#27ae60"},
        {"id": 6, "name": "Food", "type": "expense", "color": "#e74c3c"},
        {"id": 7, "name": "Housing", "type": "expense", "color": "#8e44ad"},
    ]
