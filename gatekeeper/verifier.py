"""
Bearer token verification in two phases with separate trust levels:

1. extract_subject_unchecked: decode without checking the signature, only to learn which
   service the token claims to be. Nothing read here is trusted.
2. verify_and_extract_claims: check the signature with one of that service's keys, then
   enforce exp, nbf and iat (not in the future, not older than the freshness window) on the
   now-trusted claims.

TokenVerifier.verify decodes the token once and tries the service's keys in registration
order (key rotation).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt

from gatekeeper.errors import (
    MalformedTokenError,
    MissingTokenError,
    NoSubjectError,
    SignatureInvalidError,
    TokenExpiredError,
    TokenNotYetValidError,
    TokenTooOldError,
    VerificationError,
)
from gatekeeper.keys import ACCEPTED_ALGORITHMS, PublicKey
from gatekeeper.registry import Registry, Service

logger = logging.getLogger(__name__)

# Claims are checked here, against an injectable clock, not inside PyJWT
_NO_CLAIM_CHECKS = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UnverifiedToken:
    """A decoded but untrusted token: header and payload plus what the signature covers."""

    header: dict
    payload: dict
    signing_input: bytes
    signature: bytes

    @property
    def algorithm(self) -> str:
        return self.header["alg"]


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class VerifiedToken:
    service: Service
    claims: TokenClaims


def decode_unverified(token: str) -> UnverifiedToken:
    """Decode a token without verifying anything. Raises MalformedTokenError."""
    try:
        decoded = jwt.decode_complete(token, options=dict(_NO_CLAIM_CHECKS))
    except jwt.InvalidTokenError as e:
        raise MalformedTokenError(f"Token is malformed: {e}") from e
    alg = decoded["header"].get("alg")
    if alg not in ACCEPTED_ALGORITHMS:
        raise MalformedTokenError(f"Signing method {alg!r} is not accepted")
    return UnverifiedToken(
        header=decoded["header"],
        payload=decoded["payload"],
        signing_input=token.rpartition(".")[0].encode("utf-8"),
        signature=decoded["signature"],
    )


def _as_unverified(token: str | UnverifiedToken) -> UnverifiedToken:
    return decode_unverified(token) if isinstance(token, str) else token


def extract_subject_unchecked(token: str | UnverifiedToken) -> str:
    """
    Read the sub claim of an unverified token. Only asymmetric algs are accepted even here.
    Raises MalformedTokenError or NoSubjectError.
    """
    subject = _as_unverified(token).payload.get("sub")
    if subject is None or subject == "":
        raise NoSubjectError("No sub in payload")
    if not isinstance(subject, str):
        raise MalformedTokenError("sub must be a string")
    return subject


def _time_claim(payload: dict, name: str) -> datetime | None:
    """NumericDate claim as an aware datetime; None when absent or not a number."""
    value = payload.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value, timezone.utc)
    except (OverflowError, ValueError, OSError) as e:
        raise MalformedTokenError(f"{name} is out of range") from e


def verify_and_extract_claims(
    token: str | UnverifiedToken,
    public_key: PublicKey,
    *,
    now: datetime,
    freshness: timedelta,
) -> TokenClaims:
    """
    Verify the token signature with public_key, then require exp > now, nbf <= now (when
    present) and now - freshness <= iat <= now.
    Raises SignatureInvalidError, TokenExpiredError, TokenNotYetValidError, TokenTooOldError
    or MalformedTokenError.
    """
    unverified = _as_unverified(token)
    if not public_key.verify_signature(unverified.signing_input, unverified.signature, unverified.algorithm):
        raise SignatureInvalidError(f"Token is invalid for {public_key.kind.value} key")

    # Signature checked above; the payload is trusted from here on
    payload = unverified.payload

    expires_at = _time_claim(payload, "exp")
    if expires_at is None or expires_at <= now:
        raise TokenExpiredError("Token is expired")
    if "nbf" in payload:
        not_before = _time_claim(payload, "nbf")
        if not_before is None:
            raise MalformedTokenError("nbf must be a number")
        if not_before > now:
            raise TokenNotYetValidError("Token is not valid yet")
    issued_at = _time_claim(payload, "iat")
    if issued_at is None or issued_at < now - freshness:
        raise TokenTooOldError("Token is too old")
    if issued_at > now:
        raise TokenNotYetValidError("Token used before issued")

    return TokenClaims(
        subject=payload.get("sub", ""),
        issued_at=issued_at,
        expires_at=expires_at,
    )


class TokenVerifier:
    def __init__(
        self,
        registry: Registry,
        freshness: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.freshness = freshness
        self.clock = clock

    def verify(self, token: str) -> VerifiedToken:
        """
        Resolve the token's service and verify it against each of the service's keys in order.
        The first key that verifies wins. If none does, the last key's error is raised, with
        the first key's error kept as its first_error attribute for logging.
        """
        if not token:
            raise MissingTokenError("No token")
        unverified = decode_unverified(token)
        subject = extract_subject_unchecked(unverified)
        service = self.registry.get_service(subject)

        first_error: VerificationError | None = None
        last_error: VerificationError | None = None
        for i, key in enumerate(service.keys):
            try:
                claims = verify_and_extract_claims(unverified, key, now=self.clock(), freshness=self.freshness)
            except VerificationError as e:
                logger.debug("Key #%d of %s rejected token: %s", i, service.id, e)
                if first_error is None:
                    first_error = e
                last_error = e
                continue
            return VerifiedToken(service=service, claims=claims)

        last_error.first_error = first_error
        raise last_error
