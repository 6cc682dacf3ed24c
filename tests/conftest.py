"""Shared fixtures: an in-memory identity store, token minting and a fresh hub per test."""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
import pytest

from realtime.auth import Identity
from realtime.hub import RealtimeHub

JWT_SECRET = "test-secret"

ALICE = Identity(user_id="u1", email="alice@example.com", name="Alice")
BOB = Identity(user_id="u2", email="bob@example.com", name="Bob")


class FakeIdentityStore:
    def __init__(self, *identities: Identity):
        self.identities: Dict[str, Identity] = {i.user_id: i for i in identities}
        self.lookups = []

    def find_identity_by_id(self, user_id: str) -> Optional[Identity]:
        self.lookups.append(user_id)
        return self.identities.get(user_id)


class FakePortfolioAccessStore:
    def __init__(self, portfolios: Optional[dict] = None):
        self.portfolios = portfolios or {}

    def get_portfolio_access(self, portfolio_id: str) -> Optional[dict]:
        return self.portfolios.get(portfolio_id)


def make_token(user_id: str = "u1", secret: str = JWT_SECRET, expires_in: int = 3600, **claims) -> str:
    payload = {"user_id": user_id, "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def identity_store() -> FakeIdentityStore:
    return FakeIdentityStore(ALICE, BOB)


@pytest.fixture
def hub(identity_store: FakeIdentityStore) -> RealtimeHub:
    return RealtimeHub(identity_store=identity_store, jwt_secret=JWT_SECRET, outbound_queue_size=10)


def drain(channel) -> list:
    """Everything currently queued on an outbound channel."""
    messages = []
    while channel.pending():
        messages.append(channel.get_nowait())
    return messages
