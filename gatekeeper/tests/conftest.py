"""
Shared fixtures: keys generated once per session, a controllable clock, and a
services registry with one RSA service and one EC service.
"""
from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from gatekeeper.keys import serialize_public_key
from gatekeeper.registry import load_registry

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def public_pem(private_key) -> str:
    return serialize_public_key(private_key.public_key())


@pytest.fixture(scope="session")
def rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def other_rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1(), default_backend())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(rsa_key, ec_key):
    return load_registry(
        [
            {"id": "svc-a", "paths": ["/api/"], "public_keys": [public_pem(rsa_key)]},
            {"id": "svc-ec", "paths": ["ec", "/shared/v1"], "public_keys": [public_pem(ec_key)]},
        ]
    )
