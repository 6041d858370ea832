"""Shared pytest fixtures for wallet connect tests."""

import pytest

from paygate.client import NwcClient
from paygate.keys import generate_keypair
from paygate.uri import ConnectionParams

from .fakes import FakeRelay, FakeWallet


@pytest.fixture
def wallet_keys() -> tuple[bytes, bytes]:
    """Key pair of the wallet service."""
    return generate_keypair()


@pytest.fixture
def client_keys() -> tuple[bytes, bytes]:
    """Key pair of the connecting app."""
    return generate_keypair()


@pytest.fixture
def params(wallet_keys, client_keys) -> ConnectionParams:
    return ConnectionParams(
        wallet_pubkey=wallet_keys[1].hex(),
        relay_url="wss://relay.example.com",
        secret=client_keys[0].hex(),
    )


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def wallet(relay, wallet_keys) -> FakeWallet:
    return FakeWallet(relay, wallet_keys[0])


@pytest.fixture
def client(params, relay, wallet) -> NwcClient:
    """Client wired to the in-memory relay, with the wallet listening."""
    return NwcClient(params, transport=relay, request_timeout=2.0)
