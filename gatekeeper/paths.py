"""
Path normalization and prefix authorization. Configured prefixes and request paths are
normalized the same way (leading and trailing "/") so "api" and "/api/" are equivalent.
"""
from gatekeeper.errors import EmptyPathError, PathDeniedError


def normalize_path(path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    if not path.endswith("/"):
        path = path + "/"
    return path


def authorize_path(request_path: str | None, service) -> None:
    """
    Allow request_path (query string ignored) if it starts with one of the service's
    prefixes. Raises EmptyPathError or PathDeniedError.
    """
    if not request_path:
        raise EmptyPathError("No original URI")
    path = normalize_path(request_path.split("?", 1)[0])
    for prefix in service.paths:
        if path.startswith(prefix):
            return
    raise PathDeniedError(f"Path {path} not allowed for service {service.id}")
