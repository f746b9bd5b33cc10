"""Tests for two-phase token verification: unverified subject, then per-key verified claims."""
from datetime import timedelta

import jwt
import pytest

from conftest import NOW, public_pem
from gatekeeper.errors import (
    MalformedTokenError,
    MissingTokenError,
    NoSubjectError,
    ServiceNotFoundError,
    SignatureInvalidError,
    TokenExpiredError,
    TokenNotYetValidError,
    TokenTooOldError,
)
from gatekeeper.jwtgen import issue_token
from gatekeeper.keys import parse_public_key_from_pem
from gatekeeper.registry import load_registry
from gatekeeper.verifier import (
    TokenVerifier,
    decode_unverified,
    extract_subject_unchecked,
    verify_and_extract_claims,
)

FRESHNESS = timedelta(hours=1)


def _token(key, sub="svc-a", *, iat=None, exp=None, algorithm="RS256", extra=None):
    iat = NOW if iat is None else iat
    exp = iat + timedelta(hours=1) if exp is None else exp
    payload = {"sub": sub, "iat": int(iat.timestamp()), "exp": int(exp.timestamp())}
    payload.update(extra or {})
    return jwt.encode(payload, key, algorithm=algorithm)


@pytest.fixture
def verifier(registry, clock):
    return TokenVerifier(registry, FRESHNESS, clock=clock)


# --- extract_subject_unchecked ---


def test_extract_subject_ignores_signature(other_rsa_key):
    assert extract_subject_unchecked(_token(other_rsa_key, "anyone")) == "anyone"


def test_extract_subject_malformed():
    with pytest.raises(MalformedTokenError):
        extract_subject_unchecked("not-a-jwt")


def test_extract_subject_rejects_symmetric_alg():
    token = jwt.encode({"sub": "svc-a"}, "a-shared-secret-of-sufficient-length!", algorithm="HS256")
    with pytest.raises(MalformedTokenError, match="HS256"):
        extract_subject_unchecked(token)


def test_extract_subject_rejects_none_alg():
    token = jwt.encode({"sub": "svc-a"}, None, algorithm="none")
    with pytest.raises(MalformedTokenError):
        extract_subject_unchecked(token)


@pytest.mark.parametrize("extra", [{"sub": ""}, {}])
def test_extract_subject_missing(rsa_key, extra):
    token = jwt.encode({"iat": 1, **extra}, rsa_key, algorithm="RS256")
    with pytest.raises(NoSubjectError):
        extract_subject_unchecked(token)


# --- verify_and_extract_claims ---


def test_verify_and_extract_claims(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    claims = verify_and_extract_claims(_token(rsa_key), key, now=NOW, freshness=FRESHNESS)
    assert claims.subject == "svc-a"
    assert claims.issued_at == NOW
    assert claims.expires_at == NOW + timedelta(hours=1)


def test_verify_with_wrong_key_is_signature_error(rsa_key, other_rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    with pytest.raises(SignatureInvalidError):
        verify_and_extract_claims(_token(other_rsa_key), key, now=NOW, freshness=FRESHNESS)


def test_verify_tampered_payload_is_signature_error(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    header, _, sig = _token(rsa_key).split(".")
    forged_payload = _token(rsa_key, "svc-ec").split(".")[1]
    with pytest.raises(SignatureInvalidError):
        verify_and_extract_claims(f"{header}.{forged_payload}.{sig}", key, now=NOW, freshness=FRESHNESS)


def test_expiry_is_strict(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = _token(rsa_key, iat=NOW - timedelta(minutes=10), exp=NOW)
    with pytest.raises(TokenExpiredError):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


def test_missing_exp_is_expired(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = jwt.encode({"sub": "svc-a", "iat": int(NOW.timestamp())}, rsa_key, algorithm="RS256")
    with pytest.raises(TokenExpiredError):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


def test_stale_iat_is_too_old_even_with_future_exp(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = _token(rsa_key, iat=NOW - timedelta(hours=2), exp=NOW + timedelta(days=1))
    with pytest.raises(TokenTooOldError):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


def test_iat_at_freshness_boundary_is_accepted(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = _token(rsa_key, iat=NOW - FRESHNESS, exp=NOW + timedelta(hours=1))
    assert verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS).subject == "svc-a"


def test_future_iat_is_rejected(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    iat = NOW + timedelta(days=3650)
    token = _token(rsa_key, iat=iat, exp=iat + timedelta(hours=1))
    with pytest.raises(TokenNotYetValidError):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


def test_iat_one_second_ahead_is_rejected(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = _token(rsa_key, iat=NOW + timedelta(seconds=1))
    with pytest.raises(TokenNotYetValidError):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


def test_future_nbf_is_rejected(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = _token(rsa_key, extra={"nbf": int((NOW + timedelta(minutes=30)).timestamp())})
    with pytest.raises(TokenNotYetValidError):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


def test_past_nbf_is_accepted(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = _token(rsa_key, extra={"nbf": int(NOW.timestamp())})
    assert verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS).subject == "svc-a"


def test_non_numeric_nbf_is_malformed(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = _token(rsa_key, extra={"nbf": "soon"})
    with pytest.raises(MalformedTokenError):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


@pytest.mark.parametrize("claim", ["exp", "nbf"])
def test_out_of_range_timestamp_is_malformed(rsa_key, claim):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = _token(rsa_key, extra={claim: 10**12})
    with pytest.raises(MalformedTokenError, match="out of range"):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


def test_accepts_predecoded_token(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    unverified = decode_unverified(_token(rsa_key))
    assert extract_subject_unchecked(unverified) == "svc-a"
    assert verify_and_extract_claims(unverified, key, now=NOW, freshness=FRESHNESS).subject == "svc-a"


def test_missing_iat_is_too_old(rsa_key):
    key = parse_public_key_from_pem(public_pem(rsa_key))
    token = jwt.encode({"sub": "svc-a", "exp": int(NOW.timestamp()) + 60}, rsa_key, algorithm="RS256")
    with pytest.raises(TokenTooOldError):
        verify_and_extract_claims(token, key, now=NOW, freshness=FRESHNESS)


# --- TokenVerifier.verify ---


def test_verify_rsa_service(verifier, rsa_key):
    result = verifier.verify(_token(rsa_key))
    assert result.service.id == "svc-a"
    assert result.claims.expires_at == NOW + timedelta(hours=1)


def test_verify_ec_service(verifier, ec_key):
    result = verifier.verify(issue_token(ec_key, "svc-ec", timedelta(minutes=5), now=NOW))
    assert result.service.id == "svc-ec"


def test_verify_empty_token(verifier):
    with pytest.raises(MissingTokenError):
        verifier.verify("")


def test_verify_unknown_subject(verifier, rsa_key):
    with pytest.raises(ServiceNotFoundError):
        verifier.verify(_token(rsa_key, "svc-unknown"))


def test_verify_unregistered_key(verifier, other_rsa_key):
    with pytest.raises(SignatureInvalidError):
        verifier.verify(_token(other_rsa_key))


def test_verify_rs_token_against_ec_service_fails(verifier, rsa_key):
    with pytest.raises(SignatureInvalidError):
        verifier.verify(_token(rsa_key, "svc-ec"))


def test_verify_expired(verifier, rsa_key):
    token = _token(rsa_key, iat=NOW - timedelta(minutes=30), exp=NOW - timedelta(seconds=1))
    with pytest.raises(TokenExpiredError):
        verifier.verify(token)


def test_verify_too_old(verifier, rsa_key):
    token = _token(rsa_key, iat=NOW - timedelta(hours=1, seconds=1), exp=NOW + timedelta(hours=5))
    with pytest.raises(TokenTooOldError):
        verifier.verify(token)


def test_multi_key_fallback(rsa_key, other_rsa_key, ec_key, clock):
    registry = load_registry(
        [
            {
                "id": "svc-a",
                "paths": ["/"],
                "public_keys": [public_pem(ec_key), public_pem(other_rsa_key), public_pem(rsa_key)],
            }
        ]
    )
    verifier = TokenVerifier(registry, FRESHNESS, clock=clock)
    assert verifier.verify(_token(rsa_key)).service.id == "svc-a"
    assert verifier.verify(_token(other_rsa_key)).service.id == "svc-a"
    assert verifier.verify(_token(ec_key, algorithm="ES256")).service.id == "svc-a"


def test_all_keys_fail_raises_last_error(rsa_key, other_rsa_key, clock):
    registry = load_registry(
        [{"id": "svc-a", "paths": ["/"], "public_keys": [public_pem(rsa_key), public_pem(other_rsa_key)]}]
    )
    verifier = TokenVerifier(registry, FRESHNESS, clock=clock)
    # Valid signature under the first key but expired; the second key then rejects the signature
    token = _token(rsa_key, iat=NOW - timedelta(minutes=30), exp=NOW - timedelta(seconds=1))
    with pytest.raises(SignatureInvalidError) as exc:
        verifier.verify(token)
    assert isinstance(exc.value.first_error, TokenExpiredError)


def test_verify_uses_clock(verifier, rsa_key, clock):
    token = _token(rsa_key)
    assert verifier.verify(token).service.id == "svc-a"
    clock.advance(3600)
    with pytest.raises(TokenExpiredError):
        verifier.verify(token)
