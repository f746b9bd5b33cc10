"""
Error taxonomy. ConfigError is fatal at startup; everything under AuthError is a
per-request failure that the orchestrator turns into a deny decision.
"""


class ConfigError(Exception):
    """Services configuration is malformed, incomplete, or has unparsable keys."""


class AuthError(Exception):
    """Base class for per-request authorization failures."""


class VerificationError(AuthError):
    """Token could not be verified. Surfaced to the caller as unauthorized."""


class MissingTokenError(VerificationError):
    pass


class MalformedTokenError(VerificationError):
    pass


class NoSubjectError(VerificationError):
    pass


class ServiceNotFoundError(VerificationError, LookupError):
    pass


class SignatureInvalidError(VerificationError):
    pass


class TokenExpiredError(VerificationError):
    pass


class TokenTooOldError(VerificationError):
    pass


class TokenNotYetValidError(VerificationError):
    """iat or nbf lies in the future."""


class PathError(AuthError):
    """Request path is not allowed for the service. Surfaced as forbidden."""


class EmptyPathError(PathError):
    pass


class PathDeniedError(PathError):
    pass
