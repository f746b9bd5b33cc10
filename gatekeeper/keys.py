"""
Key material for token verification. A trusted public key is either RSA or EC; the kind is
fixed at parse time and decides which JWT algorithms the key may verify.
Private-key helpers are only used by the token-issuance tool.
"""
from dataclasses import dataclass
from enum import Enum

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from jwt.algorithms import get_default_algorithms
from jwt.exceptions import PyJWTError

RSA_ALGORITHMS = ("RS256", "RS384", "RS512")
EC_ALGORITHMS = ("ES256", "ES384", "ES512")
# Asymmetric only: HS* and "none" are never accepted, not even for an unverified parse
ACCEPTED_ALGORITHMS = RSA_ALGORITHMS + EC_ALGORITHMS

_ALGORITHMS = {
    name: alg for name, alg in get_default_algorithms().items() if name in ACCEPTED_ALGORITHMS
}


class KeyKind(str, Enum):
    RSA = "rsa"
    ECDSA = "ecdsa"


_KIND_ALGORITHMS = {
    KeyKind.RSA: RSA_ALGORITHMS,
    KeyKind.ECDSA: EC_ALGORITHMS,
}


@dataclass(frozen=True)
class PublicKey:
    """A trusted verification key tagged with its kind."""

    kind: KeyKind
    key: RSAPublicKey | EllipticCurvePublicKey

    @property
    def algorithms(self) -> tuple[str, ...]:
        return _KIND_ALGORITHMS[self.kind]

    def verify_signature(self, signing_input: bytes, signature: bytes, algorithm: str) -> bool:
        """
        True if signature is valid for signing_input under this key with the given JWT alg.
        An alg from the other key family (or outside the allow-list) never verifies.
        """
        if algorithm not in self.algorithms:
            return False
        try:
            return _ALGORITHMS[algorithm].verify(signing_input, self.key, signature)
        except (ValueError, PyJWTError):
            # e.g. an ES384 signature presented to a P-256 key
            return False


def _to_bytes(pem: str | bytes) -> bytes:
    return pem.encode("utf-8") if isinstance(pem, str) else pem


def _load_rsa(pem: bytes) -> RSAPublicKey:
    key = serialization.load_pem_public_key(pem, backend=default_backend())
    if not isinstance(key, RSAPublicKey):
        raise ValueError("Not an RSA public key")
    return key


def _load_ec(pem: bytes) -> EllipticCurvePublicKey:
    key = serialization.load_pem_public_key(pem, backend=default_backend())
    if not isinstance(key, EllipticCurvePublicKey):
        raise ValueError("Not an EC public key")
    return key


_LOADERS = (
    (KeyKind.RSA, _load_rsa),
    (KeyKind.ECDSA, _load_ec),
)


def parse_public_key_from_pem(pem: str | bytes) -> PublicKey:
    """
    Parse a PEM public key, trying RSA first and then EC. The first loader that succeeds
    decides the key kind. Raises ValueError if neither does.
    """
    data = _to_bytes(pem)
    last_error: Exception | None = None
    for kind, loader in _LOADERS:
        try:
            return PublicKey(kind=kind, key=loader(data))
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            last_error = e
    raise ValueError(f"Could not parse public key: {last_error}") from last_error


def load_private_key_from_pem(pem: str | bytes):
    """Load an unencrypted PEM private key (RSA or EC) for signing."""
    return serialization.load_pem_private_key(_to_bytes(pem), password=None, backend=default_backend())


def serialize_public_key(public_key) -> str:
    """PEM (SubjectPublicKeyInfo) text for a public key, as it goes into the services file."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
