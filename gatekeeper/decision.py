"""
Authorization decision: verified token (cache first) -> path check -> allow or deny.
This is the one entry point the HTTP layer calls. Error detail is logged here and never
returned; callers only see unauthorized or forbidden.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from gatekeeper.cache import VerificationCache
from gatekeeper.errors import AuthError, PathError, VerificationError
from gatekeeper.paths import authorize_path
from gatekeeper.registry import Registry
from gatekeeper.verifier import TokenVerifier, utcnow

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "Bearer "


class DenyReason(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    service_id: str | None = None
    reason: DenyReason | None = None
    # Originating error, for logging only
    error: AuthError | None = field(default=None, compare=False, repr=False)

    @classmethod
    def allow(cls, service_id: str) -> "Decision":
        return cls(allowed=True, service_id=service_id)

    @classmethod
    def deny(cls, reason: DenyReason, error: AuthError) -> "Decision":
        return cls(allowed=False, reason=reason, error=error)


def bearer_token(authorization: str | None) -> str:
    """Token from an Authorization header value; "" when the header is missing or blank."""
    if not authorization:
        return ""
    return authorization.strip().removeprefix(_BEARER_PREFIX).strip()


def _describe(error: Exception) -> str:
    first = getattr(error, "first_error", None)
    if first is not None and first is not error:
        return f"{type(error).__name__}: {error} (first key: {type(first).__name__}: {first})"
    return f"{type(error).__name__}: {error}"


class Gatekeeper:
    def __init__(self, verifier: TokenVerifier, cache: VerificationCache):
        self.verifier = verifier
        self.cache = cache

    @property
    def registry(self) -> Registry:
        return self.verifier.registry

    def decide(self, token: str, request_path: str | None) -> Decision:
        try:
            service = self.cache.get_or_verify(token, self.verifier.verify)
        except VerificationError as e:
            logger.warning("Failed to authorize token: %s path=%s", _describe(e), request_path)
            return Decision.deny(DenyReason.UNAUTHORIZED, e)

        try:
            authorize_path(request_path, service)
        except PathError as e:
            logger.warning("Not allowed access: %s service=%s path=%s", _describe(e), service.id, request_path)
            return Decision.deny(DenyReason.FORBIDDEN, e)

        logger.info("Authorized service=%s path=%s", service.id, request_path)
        return Decision.allow(service.id)


def build_gatekeeper(
    registry: Registry,
    freshness: timedelta,
    cache_size: int,
    prune_size: int,
    clock: Callable[[], datetime] = utcnow,
) -> Gatekeeper:
    verifier = TokenVerifier(registry, freshness, clock=clock)
    cache = VerificationCache(cache_size, prune_size, clock=clock)
    return Gatekeeper(verifier, cache)
